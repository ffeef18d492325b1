"""
Document Compressor Protocol for Folio

Defines the contract that all whole-document compression tools must implement,
and the fixed set of quality presets they accept.
"""

from enum import Enum
from pathlib import Path
from typing import Protocol, Sequence, Union

from errors import InvalidInput


class CompressionPreset(str, Enum):
    """
    Named size/quality tradeoff levels.

    - SCREEN: smallest output, low resolution images
    - EBOOK: medium
    - PRINTER: high quality
    - PREPRESS: maximum quality
    - DEFAULT: the tool's general-purpose settings
    """

    SCREEN = "screen"
    EBOOK = "ebook"
    PRINTER = "printer"
    PREPRESS = "prepress"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: Union[str, "CompressionPreset"]) -> "CompressionPreset":
        """
        Resolve a caller-supplied preset name.

        Accepts any case and an optional leading '/' (the Ghostscript spelling).

        Raises:
            InvalidInput: If the value does not name a known preset
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise InvalidInput("Missing compression preset")

        name = value.strip().lower().lstrip('/')
        try:
            return cls(name)
        except ValueError:
            available = ', '.join(p.value for p in cls)
            raise InvalidInput(
                f"Unknown compression preset: '{value}'",
                detail=f"Available presets: {available}"
            )


class DocumentCompressor(Protocol):
    """
    Protocol for document compressors.

    Compressors are responsible for:
    - Building the tool's argument list from a preset
    - Running the tool and mapping its exit status to success/failure
    - Never reading the output file unless the tool succeeded
    """

    def compress(
        self,
        input_paths: Union[Path, Sequence[Path]],
        output_path: Path,
        preset: CompressionPreset
    ) -> None:
        """
        Compress one or more PDFs into output_path.

        Several inputs are concatenated in order.

        Raises:
            ToolUnavailable: If the tool cannot be spawned
            CompressionFailed: If the tool exits non-zero or times out
            IOFailure: If the tool succeeded but produced no output
        """
        ...

    @property
    def name(self) -> str:
        """Compressor identifier for logging and debugging (e.g. 'ghostscript')."""
        ...

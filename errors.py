"""
Error taxonomy for Folio.

Every failure surfaced to a caller is a FolioError carrying a stable `kind`,
a human-readable message and an optional detail string (stderr text, the
offending token, ...). `to_dict()` gives the structured form returned by
FolioPipeline.run().

The classes also inherit from the matching built-in exception so callers
that only know about ValueError / RuntimeError / OSError still catch them.
"""

from typing import Optional


class FolioError(Exception):
    """Base class for all pipeline errors."""

    kind = "FolioError"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'message': self.message,
            'detail': self.detail,
        }

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class InvalidInput(FolioError, ValueError):
    """Missing file, malformed page range or order, or unknown preset. Raised before any tool runs."""

    kind = "InvalidInput"


class InvalidRange(InvalidInput):
    """A page range token could not be parsed."""

    kind = "InvalidRange"


class EmptyInput(InvalidInput):
    """No source documents were supplied."""

    kind = "EmptyInput"


class OutOfBounds(FolioError, IndexError):
    """A page or source index lies outside the document."""

    kind = "OutOfBounds"


class ToolUnavailable(FolioError, RuntimeError):
    """The compression binary could not be spawned."""

    kind = "ToolUnavailable"


class CompressionFailed(FolioError, RuntimeError):
    """The compression subprocess exited non-zero (or was killed on timeout)."""

    kind = "CompressionFailed"

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message, detail=stderr or None)
        self.exit_code = exit_code
        self.stderr = stderr

    def to_dict(self) -> dict:
        result = super().to_dict()
        result['exit_code'] = self.exit_code
        return result


class OCREngineUnavailable(FolioError, RuntimeError):
    """The OCR engine could not be initialized (binary or language data missing)."""

    kind = "OCREngineUnavailable"


class IOFailure(FolioError, OSError):
    """Reading or writing a temporary artifact failed."""

    kind = "IOFailure"

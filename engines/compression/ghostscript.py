"""
Ghostscript document compressor for Folio

Rewrites PDFs through Ghostscript's pdfwrite device using one of the
standard PDFSETTINGS presets (/screen, /ebook, /printer, /prepress, /default).

Invocation shape (fixed, only the preset and paths vary):

    gs -sDEVICE=pdfwrite -dCompatibilityLevel=1.4 -dPDFSETTINGS=/<preset>
       -dNOPAUSE -dQUIET -dBATCH <fixed flags> -sOutputFile=<out> <in...>

Font and downsampling flags are constants so every preset behaves the same
way apart from the preset itself. Interpreter messages are redirected to
stderr (-sstdout=%stderr) and stderr is drained on a reader thread while we
wait for exit, so a chatty Ghostscript can never fill the pipe and block.

Requirements:
- Ghostscript: brew install ghostscript (macOS) or apt-get install ghostscript (Linux)
"""

import subprocess
import sys
import threading
from pathlib import Path
from typing import List, Optional, Sequence, Union

from . import register_compressor
from .base import CompressionPreset
from errors import CompressionFailed, IOFailure, ToolUnavailable
from utilities import Print, format_size


# Not user-configurable
FIXED_FLAGS = [
    '-dEmbedAllFonts=true',
    '-dSubsetFonts=true',
    '-dCompressFonts=true',
    '-dDetectDuplicateImages=true',
    '-dColorImageDownsampleType=/Bicubic',
    '-dGrayImageDownsampleType=/Bicubic',
    '-dMonoImageDownsampleType=/Subsample',
    '-sstdout=%stderr',
]


def default_binary() -> str:
    """Ghostscript's console binary name differs on Windows."""
    if sys.platform == 'win32':
        return 'gswin64c'
    return 'gs'


@register_compressor("ghostscript")
class GhostscriptCompressorFactory:
    """Factory for creating Ghostscript compressor instances."""

    @staticmethod
    def create(config: dict) -> "GhostscriptCompressor":
        return GhostscriptCompressor(config)


class GhostscriptCompressor:
    """
    Runs Ghostscript as a subprocess to shrink PDFs.

    Attributes:
        binary_path: Ghostscript executable
        compatibility_level: PDF version written by pdfwrite
        timeout: Seconds before the process is killed (None = wait forever)
    """

    def __init__(self, config: dict):
        """
        Initialize compressor with configuration.

        Args:
            config: Configuration dictionary with optional keys:
                - binary_path: str - Ghostscript executable (default: platform specific)
                - compatibility_level: str - PDF version (default: '1.4')
                - timeout: float - Process timeout in seconds (default: none)
        """
        self.binary_path = config.get('binary_path') or default_binary()
        self.compatibility_level = str(config.get('compatibility_level', '1.4'))
        self.timeout = config.get('timeout')
        self._version = None

    def build_arguments(
        self,
        input_paths: Sequence[Path],
        output_path: Path,
        preset: CompressionPreset
    ) -> List[str]:
        """Full argv for one Ghostscript run, binary first."""
        preset = CompressionPreset.parse(preset)
        return [
            self.binary_path,
            '-sDEVICE=pdfwrite',
            f'-dCompatibilityLevel={self.compatibility_level}',
            f'-dPDFSETTINGS=/{preset.value}',
            '-dNOPAUSE',
            '-dQUIET',
            '-dBATCH',
            *FIXED_FLAGS,
            f'-sOutputFile={output_path}',
            *[str(p) for p in input_paths],
        ]

    def compress(
        self,
        input_paths: Union[Path, Sequence[Path]],
        output_path: Path,
        preset: CompressionPreset
    ) -> None:
        """
        Run Ghostscript over input_paths, writing output_path.

        Args:
            input_paths: One PDF path or several (concatenated in order)
            output_path: Destination PDF path
            preset: Compression preset

        Raises:
            ToolUnavailable: If Ghostscript cannot be spawned
            CompressionFailed: On non-zero exit or timeout (carries stderr)
            IOFailure: If Ghostscript exited 0 but wrote nothing
        """
        if isinstance(input_paths, (str, Path)):
            input_paths = [Path(input_paths)]
        output_path = Path(output_path)

        cmd = self.build_arguments(input_paths, output_path, preset)
        Print("DEBUG", f"Running: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE
            )
        except OSError as e:
            raise ToolUnavailable(
                f"Ghostscript not available at '{self.binary_path}'",
                detail=f"{e}. Install: brew install ghostscript (macOS) or apt-get install ghostscript (Linux)"
            )

        stderr_lines: List[str] = []
        reader = threading.Thread(
            target=self._drain_stderr,
            args=(process.stderr, stderr_lines),
            daemon=True
        )
        reader.start()

        try:
            exit_code = process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            reader.join()
            stderr_text = ''.join(stderr_lines).strip()
            Print("FAILURE", f"Ghostscript timed out after {self.timeout} seconds, process killed")
            raise CompressionFailed(
                f"Ghostscript timed out after {self.timeout} seconds",
                exit_code=None,
                stderr=stderr_text
            )
        except BaseException:
            # Caller gave up (KeyboardInterrupt, thread cancellation); do not leave gs running
            process.kill()
            process.wait()
            reader.join()
            raise

        reader.join()
        stderr_text = ''.join(stderr_lines).strip()
        if stderr_text:
            Print("DEBUG", f"Ghostscript stderr ({len(stderr_lines)} lines): {stderr_text[-500:]}")

        if exit_code != 0:
            Print("FAILURE", f"Ghostscript exited with code {exit_code}")
            raise CompressionFailed(
                f"Ghostscript compression failed with exit code {exit_code}",
                exit_code=exit_code,
                stderr=stderr_text
            )

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise IOFailure(
                f"Ghostscript did not produce expected output: {output_path}",
                detail=stderr_text or None
            )

        Print("DEBUG", f"Ghostscript wrote {output_path.name} ({format_size(output_path.stat().st_size)})")

    def _drain_stderr(self, stream, sink: List[str]) -> None:
        """Read stderr to EOF, keeping every line for diagnostics."""
        with stream:
            for raw in iter(stream.readline, b''):
                sink.append(raw.decode('utf-8', errors='replace'))

    def version(self) -> str:
        """
        Return the Ghostscript version string.

        Raises:
            ToolUnavailable: If Ghostscript is missing or does not answer
        """
        if self._version:
            return self._version
        try:
            result = subprocess.run(
                [self.binary_path, '--version'],
                capture_output=True,
                text=True,
                check=True,
                timeout=10
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ToolUnavailable(f"Ghostscript not available at '{self.binary_path}'", detail=str(e))

        self._version = result.stdout.strip()
        return self._version

    @property
    def name(self) -> str:
        """Compressor identifier."""
        return "ghostscript"

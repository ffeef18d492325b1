"""
Temporary artifact management for Folio.

Subprocesses (Ghostscript, Tesseract) exchange data with the pipeline through
files. Each file is a TempArtifact owned by exactly one request:

- acquire() creates the file atomically (tempfile.mkstemp), so two concurrent
  requests can never be handed the same path
- release() is idempotent and never raises; a file that cannot be deleted
  is logged and left for sweep()
- scoped() wraps acquire/release in a context manager so every exit path
  (return, exception) releases exactly once

Usage:
    store = TempArtifactStore(Path("/tmp/folio"))
    with store.scoped(".pdf") as artifact:
        artifact.path.write_bytes(data)
        ...
"""

import os
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from errors import IOFailure
from utilities import Print


class TempArtifact:
    """A temporary file path owned by a single request."""

    def __init__(self, path: Path):
        self.path = path
        self.released = False

    def read_bytes(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise IOFailure(f"Could not read temporary file {self.path.name}", detail=str(e))

    def write_bytes(self, data: bytes) -> None:
        try:
            self.path.write_bytes(data)
        except OSError as e:
            raise IOFailure(f"Could not write temporary file {self.path.name}", detail=str(e))

    def __fspath__(self) -> str:
        return str(self.path)

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"TempArtifact({self.path}, {state})"


class TempArtifactStore:
    """
    Allocates request-unique temporary files under a base directory.

    The store holds no per-request state; it is safe to share one instance
    between threads.

    Attributes:
        base_dir: Directory holding the artifacts
        prefix: Filename prefix, also used by sweep() to recognise our files
    """

    def __init__(self, base_dir: Optional[Path] = None, prefix: str = "folio"):
        if base_dir is None:
            base_dir = Path(tempfile.gettempdir()) / "folio"
        self.base_dir = Path(base_dir)
        self.prefix = prefix
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Could not create temp directory {self.base_dir}", detail=str(e))

    def acquire(self, suffix: str = "") -> TempArtifact:
        """
        Create a new empty temporary file and return it as an artifact.

        Args:
            suffix: File extension including the dot (e.g. '.pdf')

        Returns:
            TempArtifact whose path exists and is unique to this call

        Raises:
            IOFailure: If the file cannot be created
        """
        stamp = datetime.now().strftime('%Y%m%d%H%M%S')
        try:
            fd, name = tempfile.mkstemp(
                suffix=suffix,
                prefix=f"{self.prefix}-{stamp}-",
                dir=str(self.base_dir)
            )
        except OSError as e:
            raise IOFailure("Could not allocate temporary file", detail=str(e))
        os.close(fd)

        artifact = TempArtifact(Path(name))
        Print("DEBUG", f"Acquired {artifact.path.name}")
        return artifact

    def release(self, artifact: TempArtifact) -> None:
        """Delete the artifact's file. Safe to call twice or after external deletion."""
        if artifact.released:
            return
        artifact.released = True
        try:
            artifact.path.unlink(missing_ok=True)
            Print("DEBUG", f"Released {artifact.path.name}")
        except OSError as e:
            Print("WARNING", f"Could not delete temporary file {artifact.path}: {e}")

    @contextmanager
    def scoped(self, suffix: str = "") -> Iterator[TempArtifact]:
        artifact = self.acquire(suffix)
        try:
            yield artifact
        finally:
            self.release(artifact)

    def sweep(self, max_age_seconds: float) -> int:
        """
        Remove orphaned artifacts older than max_age_seconds.

        Orphans appear when a process dies between acquire() and release().

        Returns:
            Number of files removed
        """
        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in self.base_dir.glob(f"{self.prefix}-*"):
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                Print("WARNING", f"Could not sweep {path.name}: {e}")

        if removed:
            Print("INFO", f"Swept {removed} orphaned temporary file{'s' if removed != 1 else ''}")
        return removed

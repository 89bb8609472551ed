"""Atomic file writing for persisted stores and downloads."""

import hashlib
import tempfile
from dataclasses import dataclass
from pathlib import Path

import structlog


logger = structlog.get_logger()


@dataclass(frozen=True)
class WrittenFile:
    """Summary of a completed write."""

    path: Path
    bytes_written: int
    sha256: str


class AtomicWriter:
    """Provides atomic file writing operations.

    Writes content to a uniquely named temporary file beside the target,
    then renames it over the final path. Concurrent writers to the same
    path never share a temporary file; the last rename wins.
    Readers see either the complete old file or the complete new file.
    """

    def __init__(self, component: str = "atomic_writer") -> None:
        self._log = logger.bind(component=component)

    def write_bytes(self, path: Path, content: bytes) -> WrittenFile:
        """Write bytes to a file with atomic semantics.

        Args:
            path: Target file path. Parent directories are created.
            content: Content to write.

        Returns:
            WrittenFile with path, size and checksum.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=path.parent, prefix=f"{path.name}.", suffix=".tmp", delete=False
        ) as handle:
            temp_path = Path(handle.name)
        try:
            temp_path.write_bytes(content)
            temp_path.replace(path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

        sha256 = hashlib.sha256(content).hexdigest()
        self._log.debug(
            "file_written",
            path=str(path),
            bytes=len(content),
            sha256=sha256[:12],
        )
        return WrittenFile(path=path, bytes_written=len(content), sha256=sha256)

    def write_text(self, path: Path, content: str) -> WrittenFile:
        """Write UTF-8 text to a file with atomic semantics."""
        return self.write_bytes(path, content.encode("utf-8"))

"""Staging area for uploaded bytes.

Holds each ingested part in its own file until the saga finalizes it into
the object store or discards it. Staged files are not content-addressed;
a leftover file is garbage, never data.
"""

import os
import tempfile
from pathlib import Path
from typing import BinaryIO

import structlog

logger = structlog.get_logger()


class StagingArea:
    """Local directory of staged upload files."""

    def __init__(self, root: Path) -> None:
        """Initialize staging area, creating the directory if needed.

        Args:
            root: Directory staged files are written to.
        """
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def create(self) -> tuple[Path, BinaryIO]:
        """Create an empty staged file.

        Returns:
            Path of the file and a binary handle open for writing.
        """
        fd, name = tempfile.mkstemp(prefix="upload-", dir=self.root)
        return Path(name), os.fdopen(fd, "wb")

    def open(self, path: Path) -> BinaryIO:
        """Open a staged file for reading."""
        return open(path, "rb")

    def exists(self, path: Path | str | None) -> bool:
        return path is not None and Path(path).is_file()

    def discard(self, path: Path | str | None) -> None:
        """Remove a staged file. Failures are logged, never raised."""
        if path is None:
            return
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to discard staged upload", path=str(path), error=str(e))

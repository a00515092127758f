"""
Local file store for task attachments.

Files live under UPLOAD_DIR in one sub-directory per uploading user. Paths
handed out by the store are relative to the root so the database never
records absolute locations; every path is resolved and checked to stay
inside the root before it is touched.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from fastapi import UploadFile

from errors import ValidationError

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", "./uploads"))

try:
    MAX_FILE_UPLOAD = int(os.environ.get("MAX_FILE_UPLOAD", str(5 * 1024 * 1024)))
except ValueError:
    logger.warning("⚠️  Invalid MAX_FILE_UPLOAD value in environment. Using default of 5MB.")
    MAX_FILE_UPLOAD = 5 * 1024 * 1024

CHUNK_SIZE = 1024 * 1024  # 1MB chunks (max memory footprint)


@dataclass(frozen=True)
class StoredFile:
    filename: str
    path: str
    size: int


class LocalFileStore:
    """Stores, streams and deletes files below a root directory."""

    def __init__(self, root: Path, max_file_size: int = MAX_FILE_UPLOAD):
        self.root = Path(root)
        self.max_file_size = max_file_size

    def resolve(self, path: str) -> Path:
        root = self.root.resolve()
        full = (root / path).resolve()
        if full != root and root not in full.parents:
            raise ValidationError(f"Invalid file path: {path}")
        return full

    def _new_target(self, subdir: str, suffix: str) -> tuple[str, Path]:
        directory = self.resolve(subdir)
        directory.mkdir(parents=True, exist_ok=True)
        filename = f"attachments-{uuid.uuid4().hex}{suffix.lower()}"
        return filename, directory / filename

    def store(self, data: bytes, suffix: str = "", subdir: str = "") -> StoredFile:
        """Write `data` to a new uniquely named file and return its location."""
        if len(data) > self.max_file_size:
            raise ValidationError(self._too_large_message())
        filename, target = self._new_target(subdir, suffix)
        target.write_bytes(data)
        relative = target.relative_to(self.root.resolve()).as_posix()
        logger.debug(f"Stored {len(data)} bytes at {relative}")
        return StoredFile(filename=filename, path=relative, size=len(data))

    async def save_upload(self, upload: UploadFile, subdir: str = "") -> StoredFile:
        """
        Save an uploaded file using chunked streaming.

        Reads the upload in 1MB chunks, validating size incrementally, and
        removes the partial file as soon as the size limit is exceeded.
        """
        filename, target = self._new_target(subdir, Path(upload.filename or "").suffix)
        total_size = 0
        try:
            with open(target, "wb") as f:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    total_size += len(chunk)
                    if total_size > self.max_file_size:
                        raise ValidationError(self._too_large_message())
                    f.write(chunk)
        except Exception:
            target.unlink(missing_ok=True)
            raise

        relative = target.relative_to(self.root.resolve()).as_posix()
        logger.debug(f"Saved upload '{upload.filename}' ({total_size} bytes) at {relative}")
        return StoredFile(filename=filename, path=relative, size=total_size)

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def open(self, path: str) -> BinaryIO:
        return open(self.resolve(path), "rb")

    def delete(self, path: str) -> bool:
        """Delete a stored file. Returns False if it was already gone."""
        target = self.resolve(path)
        if not target.exists():
            logger.debug(f"File already absent, nothing to delete: {path}")
            return False
        target.unlink()
        logger.debug(f"Deleted file: {path}")
        return True

    def _too_large_message(self) -> str:
        return f"File too large. Maximum size is {self.max_file_size / (1024 * 1024):.0f}MB"


_default_store = None


def get_file_store() -> LocalFileStore:
    """FastAPI dependency returning the process-wide file store."""
    global _default_store
    if _default_store is None:
        _default_store = LocalFileStore(UPLOAD_DIR)
    return _default_store

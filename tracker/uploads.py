"""
Attachment files on disk.

Uploads are stored flat in one directory as ``<base>-<ms timestamp><ext>``
and referenced from the database by their public path ``/uploads/<name>``.
"""
import logging
import time
from pathlib import Path
from typing import Tuple

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from .errors import StorageFailure, ValidationError

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads/"


def stored_name(original: str, timestamp_ms: int = None) -> str:
    """Unique on-disk name derived from the uploaded filename."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    safe = secure_filename(original) or "upload"
    path = Path(safe)
    return f"{path.stem}-{timestamp_ms}{path.suffix}"


class UploadStore:
    """Saves and removes attachment files under a single directory."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def save(self, upload: FileStorage) -> Tuple[str, int]:
        """Write an upload to disk. Returns (public path, size in bytes)."""
        if upload is None or not upload.filename:
            raise ValidationError("File and task_id are required")
        name = stored_name(upload.filename)
        target = self.directory / name
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            upload.save(str(target))
        except OSError as e:
            logger.error(f"Failed to store upload {upload.filename!r}: {e}")
            raise StorageFailure(f"Could not store {upload.filename}") from e
        size = target.stat().st_size
        logger.info(f"Stored upload {upload.filename!r} as {name} ({size} bytes)")
        return PUBLIC_PREFIX + name, size

    def path_for(self, public_path: str) -> Path:
        """Map ``/uploads/<name>`` back to the file on disk (basename only)."""
        return self.directory / Path(public_path).name

    def delete(self, public_path: str) -> bool:
        """Remove a stored file if present. Returns True when a file was deleted."""
        target = self.path_for(public_path)
        if not target.exists():
            return False
        try:
            target.unlink()
        except OSError as e:
            logger.error(f"Failed to delete {target}: {e}")
            raise StorageFailure(f"Could not delete {public_path}") from e
        return True

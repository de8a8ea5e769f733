"""File store for file-upload sub-blocks.

Files are written to a local directory under a key made of a UUID and the
sanitized original filename, and are served back by that key.
"""

import logging
import mimetypes
import re
import uuid
from datetime import UTC, datetime
from pathlib import Path

from app.config import MAX_UPLOAD_SIZE_MB, UPLOAD_PATH
from app.models.workflow import CamelModel

logger = logging.getLogger(__name__)

SERVE_PREFIX = "/api/files/serve/"


class StoredFile(CamelModel):
    """Information about a stored file, as returned to clients."""

    name: str
    path: str
    key: str
    size: int
    type: str
    uploaded_at: str


class FileStore:
    """Stores uploaded files on the local filesystem."""

    def __init__(self, upload_dir: Path | None = None, max_size_mb: int = MAX_UPLOAD_SIZE_MB):
        """Initialize the file store.

        Args:
            upload_dir: Override the default upload directory.
            max_size_mb: Per-file size limit in megabytes.
        """
        self.upload_dir = upload_dir or Path(UPLOAD_PATH)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.max_size = max_size_mb * 1024 * 1024

    def _sanitize_filename(self, filename: str) -> str:
        """Sanitize a filename to prevent path traversal attacks.

        Args:
            filename: The original filename.

        Returns:
            A safe filename with only alphanumeric characters, dots, dashes, and underscores.
        """
        # Get just the basename (no path components)
        name = Path(filename.replace("\\", "/")).name

        safe_name = re.sub(r"[^a-zA-Z0-9._-]", "_", name)

        # Ensure it doesn't start with a dot (hidden file)
        if safe_name.startswith("."):
            safe_name = "_" + safe_name[1:]

        if not safe_name or safe_name in (".", ".."):
            safe_name = "file"

        return safe_name

    def _path_for(self, key: str) -> Path:
        """Resolve a key to a path inside the upload directory.

        Raises:
            FileNotFoundError: If the key does not name a file in the directory.
        """
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise FileNotFoundError(f"File {key} not found")
        return self.upload_dir / key

    async def save(
        self, filename: str, content: bytes, content_type: str | None = None
    ) -> StoredFile:
        """Store a file.

        Raises:
            ValueError: If the file exceeds the size limit.
        """
        if len(content) > self.max_size:
            raise ValueError(
                f"File too large ({len(content) / 1024 / 1024:.1f}MB). "
                f"Maximum size is {self.max_size / 1024 / 1024:.0f}MB."
            )

        safe_name = self._sanitize_filename(filename)
        key = f"{uuid.uuid4()}-{safe_name}"
        (self.upload_dir / key).write_bytes(content)

        logger.info(f"Stored file {key} ({len(content)} bytes)")
        return StoredFile(
            name=filename,
            path=f"{SERVE_PREFIX}{key}",
            key=key,
            size=len(content),
            type=content_type or "application/octet-stream",
            uploaded_at=datetime.now(UTC).isoformat(),
        )

    async def get_path(self, key: str) -> Path:
        """Get the path of a stored file.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        path = self._path_for(key)
        if not path.is_file():
            raise FileNotFoundError(f"File {key} not found")
        return path

    def guess_type(self, key: str) -> str:
        return mimetypes.guess_type(key)[0] or "application/octet-stream"

    async def delete(self, key: str) -> bool:
        """Delete a stored file.

        Returns:
            Whether a file was removed.
        """
        try:
            path = self._path_for(key)
        except FileNotFoundError:
            return False
        if not path.is_file():
            return False
        path.unlink()
        logger.info(f"Deleted file {key}")
        return True


def key_from_path(file_path: str) -> str:
    """Extract the storage key from a serve path or a bare key."""
    if file_path.startswith(SERVE_PREFIX):
        return file_path[len(SERVE_PREFIX):]
    return file_path.rsplit("/", 1)[-1]


# Global instance for dependency injection
_file_store: FileStore | None = None


def get_file_store() -> FileStore:
    """Get the global file store instance."""
    global _file_store
    if _file_store is None:
        _file_store = FileStore()
    return _file_store

"""Storage module for uploaded files."""

from app.storage.file_store import FileStore, StoredFile, get_file_store, key_from_path

__all__ = ["FileStore", "StoredFile", "get_file_store", "key_from_path"]

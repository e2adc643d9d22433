"""Local filesystem object storage for uploaded document bytes."""

from __future__ import annotations

from pathlib import Path

import structlog

log = structlog.get_logger(__name__)


class StorageError(OSError):
    """An object could not be stored, read, or removed."""


class LocalObjectStorage:
    """Key/value blob store rooted at a directory.

    Keys are relative POSIX-style paths (``documents/<uuid>.pdf``). A key that
    would resolve outside the root is rejected.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def upload(self, key: str, data: bytes) -> str:
        """Write *data* under *key*, replacing any existing object. Returns the key."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.debug("storage.uploaded", key=key, size=len(data))
        return key

    def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"Object not found: '{key}'") from exc

    def remove(self, key: str) -> bool:
        """Delete the object under *key*. Returns False if it did not exist."""
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise StorageError(f"Invalid storage key: '{key}'")
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root):
            raise StorageError(f"Storage key escapes the storage root: '{key}'")
        return path

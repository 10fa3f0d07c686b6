from __future__ import annotations

import mimetypes
import re
from pathlib import Path
from uuid import uuid4

from rtocomply.core.config import get_settings
from rtocomply.core.errors import StorageError


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def guess_mime_type(file_name: str) -> str:
    mime_type, _ = mimetypes.guess_type(file_name)
    return mime_type or "application/pdf"


class DocumentStorage:
    """Filesystem-backed document storage rooted at ``settings.storage_dir``.

    Storage paths are always relative to the root so rows stay portable when
    the root is remounted.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root or get_settings().storage_dir).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, storage_path: str) -> Path:
        # Reject absolute paths and parent traversal outside the storage root.
        candidate = (self._root / storage_path).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise StorageError(f"Storage path escapes storage root: {storage_path}")
        return candidate

    def save(self, *, rto_code: str, file_name: str, content: bytes) -> str:
        safe_name = _UNSAFE_CHARS.sub("_", file_name).strip("._") or "upload"
        storage_path = f"{rto_code.lower()}/{uuid4().hex}-{safe_name}"
        path = self.resolve(storage_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            raise StorageError(f"Failed to store document {file_name}: {exc}") from exc
        return storage_path

    def delete(self, storage_path: str) -> None:
        path = self.resolve(storage_path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete file: {exc}") from exc

    def read(self, storage_path: str) -> bytes:
        path = self.resolve(storage_path)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"Failed to download file: {storage_path} not found") from exc
        except OSError as exc:
            raise StorageError(f"Failed to download file: {exc}") from exc


def get_document_storage() -> DocumentStorage:
    return DocumentStorage()

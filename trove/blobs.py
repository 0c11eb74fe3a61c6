"""
trove/blobs.py — Local filesystem blob store.

Storage paths are POSIX-style keys relative to the blob root, e.g.
  {uploaded_by}/{asset_id}/original.png
  {uploaded_by}/{asset_id}/thumbnail.webp
Keys that would escape the root are rejected.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class BlobNotFoundError(FileNotFoundError):
    """Raised when a storage path has no stored bytes."""


class BlobStore:
    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        p = (self.root / key).resolve()
        if p != self.root and self.root not in p.parents:
            raise ValueError(f"Storage path escapes blob root: {key}")
        return p

    def upload_bytes(self, key: str, data: bytes, *, overwrite: bool = False) -> None:
        p = self._path(key)
        if p.exists() and not overwrite:
            raise FileExistsError(f"Blob already exists: {key}")
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_name(p.name + ".part")
        tmp.write_bytes(data)
        tmp.replace(p)

    def download_bytes(self, key: str) -> bytes:
        p = self._path(key)
        if not p.is_file():
            raise BlobNotFoundError(f"Blob not found: {key}")
        return p.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def remove(self, keys: list[str]) -> None:
        """Delete blobs; missing keys are ignored. Empty parent dirs are pruned."""
        for key in keys:
            p = self._path(key)
            try:
                p.unlink()
            except FileNotFoundError:
                continue
            parent = p.parent
            while parent != self.root and not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent

"""
Blob storage for partner files.

Folder convention (key prefixes):
- incoming/                  files and packages as uploaded
- processing/<batch_id>/     entries of a registered package
- processing/                single files being processed
- archive/<batch_id>/        completed files (archive/ for single files)
- rejected/<batch_id>/       rejected files (rejected/ for single files)
- archive/packages/          zip packages once their entries are queued
- rejected/packages/         zip packages that could not be registered
"""

import os
import shutil
import threading
from pathlib import Path
from typing import Protocol

from partner_etl.core.errors import StorageUnavailable
from partner_etl.utils.validation import validate_blob_path

INCOMING = "incoming"
PROCESSING = "processing"
ARCHIVE = "archive"
REJECTED = "rejected"
PACKAGES = "packages"


def blob_key(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p)


class BlobStore(Protocol):
    def open(self, name: str) -> bytes: ...

    def save(self, name: str, content: bytes) -> None: ...

    def move(self, src: str, dst: str) -> None: ...

    def list(self, folder: str) -> list[str]:
        """Keys directly under folder (not recursive), sorted."""


class LocalBlobStore:
    """Blob store rooted at a local directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        return self.root / validate_blob_path(name)

    def open(self, name: str) -> bytes:
        try:
            return self._path(name).read_bytes()
        except OSError as e:
            raise StorageUnavailable(f"Cannot open blob '{name}': {e}") from e

    def save(self, name: str, content: bytes) -> None:
        path = self._path(name)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(content)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageUnavailable(f"Cannot save blob '{name}': {e}") from e

    def move(self, src: str, dst: str) -> None:
        source, target = self._path(src), self._path(dst)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(source, target)
        except OSError as e:
            raise StorageUnavailable(f"Cannot move blob '{src}' to '{dst}': {e}") from e

    def list(self, folder: str) -> list[str]:
        directory = self._path(folder)
        if not directory.is_dir():
            return []
        try:
            return sorted(
                blob_key(folder, p.name)
                for p in directory.iterdir()
                if p.is_file() and not p.name.startswith(".")
            )
        except OSError as e:
            raise StorageUnavailable(f"Cannot list '{folder}': {e}") from e


class InMemoryBlobStore:
    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def open(self, name: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[validate_blob_path(name)]
            except KeyError as e:
                raise StorageUnavailable(f"Blob '{name}' not found") from e

    def save(self, name: str, content: bytes) -> None:
        with self._lock:
            self._blobs[validate_blob_path(name)] = bytes(content)

    def move(self, src: str, dst: str) -> None:
        with self._lock:
            try:
                content = self._blobs.pop(validate_blob_path(src))
            except KeyError as e:
                raise StorageUnavailable(f"Blob '{src}' not found") from e
            self._blobs[validate_blob_path(dst)] = content

    def list(self, folder: str) -> list[str]:
        prefix = folder.strip("/") + "/"
        with self._lock:
            return sorted(k for k in self._blobs if k.startswith(prefix) and "/" not in k[len(prefix):])

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._blobs

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import json
from pathlib import Path
from typing import Iterator, Protocol

from logosophe.core.config import get_settings
from logosophe.core.errors import ObjectNotFoundError, StorageError


_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    content_type: str


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> ObjectInfo: ...

    def head(self, key: str) -> ObjectInfo | None: ...

    def iter_bytes(self, key: str, *, offset: int = 0, length: int | None = None) -> Iterator[bytes]: ...

    def delete(self, key: str) -> bool: ...


class LocalObjectStore:
    """Filesystem-backed object store keyed like a bucket.

    Each object is stored as ``<root>/<key>`` with a ``.meta.json`` sidecar
    holding the content type.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        # Keys must stay under the root; reject traversal and absolute keys.
        if not key or key.startswith("/") or ".." in Path(key).parts:
            raise StorageError(f"Invalid object key: {key!r}")
        return self.root / key

    def _meta_path(self, key: str) -> Path:
        path = self._path(key)
        return path.with_name(path.name + ".meta.json")

    def put(self, key: str, data: bytes, content_type: str) -> ObjectInfo:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            self._meta_path(key).write_text(json.dumps({"content_type": content_type}))
        except OSError as exc:
            raise StorageError(f"Failed to write object {key}") from exc
        return ObjectInfo(key=key, size=len(data), content_type=content_type)

    def head(self, key: str) -> ObjectInfo | None:
        path = self._path(key)
        if not path.is_file():
            return None
        content_type = "application/octet-stream"
        meta_path = self._meta_path(key)
        if meta_path.is_file():
            content_type = json.loads(meta_path.read_text()).get("content_type") or content_type
        return ObjectInfo(key=key, size=path.stat().st_size, content_type=content_type)

    def iter_bytes(self, key: str, *, offset: int = 0, length: int | None = None) -> Iterator[bytes]:
        # Read exactly `length` bytes from `offset` so range bodies match Content-Length.
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        remaining = length
        with path.open("rb") as handle:
            handle.seek(offset)
            while remaining is None or remaining > 0:
                size = _CHUNK_SIZE if remaining is None else min(_CHUNK_SIZE, remaining)
                chunk = handle.read(size)
                if not chunk:
                    break
                if remaining is not None:
                    remaining -= len(chunk)
                yield chunk

    def read(self, key: str, *, offset: int = 0, length: int | None = None) -> bytes:
        return b"".join(self.iter_bytes(key, offset=offset, length=length))

    def delete(self, key: str) -> bool:
        path = self._path(key)
        existed = path.is_file()
        path.unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)
        return existed


@lru_cache
def get_object_store() -> LocalObjectStore:
    return LocalObjectStore(get_settings().media_storage_dir)

"""Durable key-value store with per-key atomic writes.

Every key maps to one file under the store root. Writes go through a
temporary file that is fsynced and renamed over the target, so a crash
mid-write leaves either the previous value or the new one on disk. There
are no cross-key transactions; callers order their writes instead.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Iterator, Protocol
from urllib.parse import quote, unquote

from fieldsync.common.errors import StorageError
from fieldsync.common.fs import atomic_write_bytes, dump_json_bytes, ensure_dir, load_json_bytes
from fieldsync.common.logging import log_event

logger = logging.getLogger(__name__)

VALUE_SUFFIX = ".val"


class KeyValueStore(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...

    def contains(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class FileKeyValueStore:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        try:
            ensure_dir(self.root)
        except OSError as exc:
            raise StorageError(f"Cannot create store directory {self.root}: {exc}") from exc

    def _path(self, key: str) -> Path:
        if not key:
            raise ValueError("Store keys must be non-empty")
        return self.root / f"{quote(key, safe='._-')}{VALUE_SUFFIX}"

    def _fail(self, action: str, key: str, exc: OSError) -> StorageError:
        log_event(
            logger,
            f"store {action} failed for {key}: {exc}",
            level=logging.ERROR,
            component="storage",
            event="STORE_FAIL",
            status="error",
            error_code=StorageError.error_code,
        )
        return StorageError(f"Cannot {action} key {key!r}: {exc}")

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise self._fail("read", key, exc) from exc

    def set(self, key: str, value: bytes) -> None:
        try:
            atomic_write_bytes(self._path(key), value)
        except OSError as exc:
            raise self._fail("write", key, exc) from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise self._fail("delete", key, exc) from exc

    def contains(self, key: str) -> bool:
        return self._path(key).exists()

    def _iter_keys(self) -> Iterator[str]:
        try:
            names = os.listdir(self.root)
        except OSError as exc:
            raise self._fail("list", str(self.root), exc) from exc
        for name in names:
            if name.endswith(VALUE_SUFFIX):
                yield unquote(name[: -len(VALUE_SUFFIX)])

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._iter_keys() if key.startswith(prefix))

    def delete_prefix(self, prefix: str) -> int:
        removed = 0
        for key in self.keys(prefix):
            self.delete(key)
            removed += 1
        return removed


def get_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    return load_json_bytes(store.get(key), default)


def set_json(store: KeyValueStore, key: str, payload: Any) -> None:
    store.set(key, dump_json_bytes(payload))

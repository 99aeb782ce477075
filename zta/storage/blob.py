"""
Key-value persistence for account and configuration records.

Records are JSON documents grouped into named stores ("users", "sites",
"goals", ...). Secondary indexes are plain JSON lists kept under their own
keys and maintained by the callers. Writes are last-write-wins.

Redis backs production; the in-memory implementation serves tests and
local runs.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Protocol, Tuple

import redis

from zta.config import settings

logger = logging.getLogger("ZTA.Blob")


class BlobStore(Protocol):
    """Minimal interface shared by both backends."""

    def get(self, store: str, key: str) -> Optional[Any]:
        ...

    def set(self, store: str, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    def delete(self, store: str, key: str) -> None:
        ...

    def ping(self) -> bool:
        ...


class InMemoryBlobStore:
    """Process-local store for tests/dev. Values are copied through JSON."""

    def __init__(self):
        self._data: Dict[Tuple[str, str], Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, store: str, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get((store, key))
            if entry is None:
                return None
            raw, expires_at = entry
            if expires_at is not None and expires_at <= time.time():
                del self._data[(store, key)]
                return None
        return json.loads(raw)

    def set(self, store: str, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = time.time() + ttl if ttl else None
        raw = json.dumps(value, default=str)
        with self._lock:
            self._data[(store, key)] = (raw, expires_at)

    def delete(self, store: str, key: str) -> None:
        with self._lock:
            self._data.pop((store, key), None)

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisBlobStore:
    """Redis-backed store, one string key per record."""

    def __init__(self, url: str, namespace: str = "zta"):
        self.namespace = namespace
        self.redis = redis.from_url(url, decode_responses=True)

    def _key(self, store: str, key: str) -> str:
        return f"{self.namespace}:{store}:{key}"

    def get(self, store: str, key: str) -> Optional[Any]:
        raw = self.redis.get(self._key(store, key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, store: str, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.redis.set(self._key(store, key), json.dumps(value, default=str), ex=ttl)

    def delete(self, store: str, key: str) -> None:
        self.redis.delete(self._key(store, key))

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """
    Return a singleton store so records persist across requests.
    """
    global _blob_store
    if _blob_store is not None:
        return _blob_store

    if settings.BLOB_BACKEND == "memory":
        logger.info("Using in-memory blob store")
        _blob_store = InMemoryBlobStore()
    else:
        logger.info("Using Redis blob store")
        _blob_store = RedisBlobStore(settings.REDIS_URL, settings.BLOB_NAMESPACE)
    return _blob_store


def set_blob_store(store: Optional[BlobStore]):
    """Swaps the global store, used by tests."""
    global _blob_store
    _blob_store = store


def read_index(blob: BlobStore, store: str, key: str) -> list:
    return blob.get(store, key) or []


def add_to_index(
    blob: BlobStore,
    store: str,
    key: str,
    value: Any,
    limit: Optional[int] = None,
    prepend: bool = False,
) -> list:
    """Adds value to an index list once. With a limit, the oldest entries drop off."""
    items = [item for item in read_index(blob, store, key) if item != value]
    if prepend:
        items.insert(0, value)
        if limit:
            items = items[:limit]
    else:
        items.append(value)
        if limit:
            items = items[-limit:]
    blob.set(store, key, items)
    return items


def remove_from_index(blob: BlobStore, store: str, key: str, value: Any) -> list:
    items = [item for item in read_index(blob, store, key) if item != value]
    blob.set(store, key, items)
    return items

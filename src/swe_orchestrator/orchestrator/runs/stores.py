"""Key-value stores backing the run registry.

Every store offers an atomic create-if-absent (`put_if_absent`) and an atomic
read-modify-write (`update`). Values are JSON-compatible dictionaries.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

StoredValue = dict[str, Any]
Updater = Callable[[StoredValue], StoredValue]


class KeyValueStore(Protocol):
    def get(self, key: str) -> StoredValue | None: ...

    def put_if_absent(self, key: str, value: StoredValue) -> bool:
        """Write `value` only if `key` has no value yet.

        Returns True when this call performed the write.
        """
        ...

    def update(self, key: str, updater: Updater) -> StoredValue:
        """Atomically replace the value under `key` with `updater(current)`.

        Raises KeyError when the key does not exist.
        """
        ...

    def values(self) -> list[StoredValue]: ...


class InMemoryKeyValueStore:
    """Process-local store, mainly for tests and single-shot CLI runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, StoredValue] = {}

    def get(self, key: str) -> StoredValue | None:
        with self._lock:
            value = self._data.get(key)
            return dict(value) if value is not None else None

    def put_if_absent(self, key: str, value: StoredValue) -> bool:
        with self._lock:
            if key in self._data:
                return False
            self._data[key] = dict(value)
            return True

    def update(self, key: str, updater: Updater) -> StoredValue:
        with self._lock:
            if key not in self._data:
                raise KeyError(key)
            updated = updater(dict(self._data[key]))
            self._data[key] = dict(updated)
            return dict(updated)

    def values(self) -> list[StoredValue]:
        with self._lock:
            return [dict(v) for v in self._data.values()]


@dataclass
class JsonFileKeyValueStore:
    """A JSON object on disk, keyed by run key.

    Writes go to a temporary file that is then moved into place, so a crash
    mid-write never leaves a truncated store behind. The lock serialises writers
    within one process; the file is not meant to be shared between processes.
    """

    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> dict[str, StoredValue]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Run store is not valid JSON; starting empty", extra={"path": str(self.path)})
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, dict)}

    def _save_unlocked(self, data: dict[str, StoredValue]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> StoredValue | None:
        with self._lock:
            return self._load_unlocked().get(key)

    def put_if_absent(self, key: str, value: StoredValue) -> bool:
        with self._lock:
            data = self._load_unlocked()
            if key in data:
                return False
            data[key] = value
            self._save_unlocked(data)
            return True

    def update(self, key: str, updater: Updater) -> StoredValue:
        with self._lock:
            data = self._load_unlocked()
            if key not in data:
                raise KeyError(key)
            updated = updater(dict(data[key]))
            data[key] = updated
            self._save_unlocked(data)
            return updated

    def values(self) -> list[StoredValue]:
        with self._lock:
            return list(self._load_unlocked().values())


class RedisKeyValueStore:
    """Redis-backed store, safe to share between processes.

    `put_if_absent` is a single `SET NX`; `update` uses optimistic locking with
    `WATCH`/`MULTI` and retries when another writer got in first.
    """

    def __init__(
        self,
        url: str,
        *,
        namespace: str = "swe-orchestrator:runs",
        max_update_attempts: int = 10,
        client: Any | None = None,
    ) -> None:
        if client is None:
            client = redis.Redis.from_url(url, decode_responses=True)

        self._redis = client
        self._namespace = namespace
        self._max_update_attempts = max_update_attempts

    def _redis_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> StoredValue | None:
        raw = self._redis.get(self._redis_key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def put_if_absent(self, key: str, value: StoredValue) -> bool:
        written = self._redis.set(self._redis_key(key), json.dumps(value), nx=True)
        return bool(written)

    def update(self, key: str, updater: Updater) -> StoredValue:
        redis_key = self._redis_key(key)
        for _ in range(self._max_update_attempts):
            with self._redis.pipeline() as pipe:
                try:
                    pipe.watch(redis_key)
                    raw = pipe.get(redis_key)
                    if raw is None:
                        raise KeyError(key)
                    updated = updater(json.loads(raw))
                    pipe.multi()
                    pipe.set(redis_key, json.dumps(updated))
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    logger.debug("Concurrent update detected; retrying", extra={"key": key})
                    continue
        raise RuntimeError(f"Could not update {key!r} after {self._max_update_attempts} attempts")

    def values(self) -> list[StoredValue]:
        out: list[StoredValue] = []
        for redis_key in self._redis.scan_iter(match=f"{self._namespace}:*"):
            raw = self._redis.get(redis_key)
            if raw is not None:
                out.append(json.loads(raw))
        return out

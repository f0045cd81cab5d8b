import json
import os
import shutil
import time
from hashlib import sha1
from pathlib import Path
from typing import Any, Callable

from lifesim.domain.repositories import KeyValueCache


DEFAULT_CACHE_DATA_VERSION = "0.1.0"
_MANIFEST_FILENAME = "manifest.json"


def _is_fresh(stored_at: Any, ttl_seconds: int | None, now: float) -> bool:
    if ttl_seconds is None:
        return True
    try:
        age_seconds = now - float(stored_at)
    except (TypeError, ValueError):
        return False
    return age_seconds <= max(0, int(ttl_seconds))


class MemoryKeyValueCache(KeyValueCache):
    """Per-session cache; gone when the process exits."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._clock = clock

    def get(self, key: str, *, ttl_seconds: int | None = None, allow_stale: bool = False) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, payload = entry
        if allow_stale or _is_fresh(stored_at, ttl_seconds, self._clock()):
            return json.loads(payload)
        return None

    def set(self, key: str, value: Any) -> None:
        # stored serialised so callers never share mutable state with the cache
        self._entries[key] = (self._clock(), json.dumps(value, ensure_ascii=False))

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class FileKeyValueCache(KeyValueCache):
    """Per-device cache of JSON files, wiped when the data version changes."""

    def __init__(
        self,
        root_dir: str | Path,
        *,
        data_version: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root_dir = Path(root_dir).expanduser()
        configured_version = str(data_version or os.getenv("LIFESIM_CACHE_DATA_VERSION", DEFAULT_CACHE_DATA_VERSION)).strip()
        self.data_version = configured_version or DEFAULT_CACHE_DATA_VERSION
        self._manifest_path = self.root_dir / _MANIFEST_FILENAME
        self._clock = clock
        self._ensure_cache_version()

    def _ensure_cache_version(self) -> None:
        manifest_version = self._read_manifest_version()
        if manifest_version == self.data_version and self.root_dir.exists():
            return

        if self.root_dir.exists():
            shutil.rmtree(self.root_dir, ignore_errors=True)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._write_manifest()

    def _read_manifest_version(self) -> str | None:
        if not self._manifest_path.exists():
            return None
        try:
            payload = json.loads(self._manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(payload, dict):
            return None
        value = str(payload.get("data_version", "")).strip()
        return value or None

    def _write_manifest(self) -> None:
        envelope = {
            "data_version": self.data_version,
            "updated_at": int(self._clock()),
        }
        tmp_path = self._manifest_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(envelope, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self._manifest_path)

    def _path_for_key(self, cache_key: str) -> Path:
        key_hash = sha1(cache_key.encode("utf-8")).hexdigest()
        return self.root_dir / f"{key_hash}.json"

    def set(self, cache_key: str, value: Any) -> None:
        path = self._path_for_key(cache_key)
        envelope = {
            "key": cache_key,
            "stored_at": self._clock(),
            "payload": value,
        }
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(envelope, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)

    def get(self, cache_key: str, *, ttl_seconds: int | None = None, allow_stale: bool = False) -> Any:
        path = self._path_for_key(cache_key)
        if not path.exists():
            return None
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(envelope, dict) or "payload" not in envelope:
            return None
        if allow_stale or _is_fresh(envelope.get("stored_at"), ttl_seconds, self._clock()):
            return envelope["payload"]
        return None

    def delete(self, cache_key: str) -> None:
        path = self._path_for_key(cache_key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass

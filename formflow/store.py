from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import redis

from formflow.errors import NotFound

log = logging.getLogger(__name__)

FORM_STORE_BACKEND = os.getenv("FORM_STORE_BACKEND", "memory").strip().lower()
FORM_STORE_DIR = Path(os.getenv("FORM_STORE_DIR", "data/forms"))
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")


class FormStore:
    """Keyed JSON-document store. Values are plain dicts; callers get copies."""

    kind = "Form"

    def put(self, key: str, value: Dict[str, Any]) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def list(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def clear(self) -> int:
        raise NotImplementedError

    def require(self, key: str) -> Dict[str, Any]:
        value = self.get(key)
        if value is None:
            raise NotFound(self.kind, key)
        return value

    def __len__(self) -> int:
        return len(self.list())


class MemoryStore(FormStore):
    def __init__(self, kind: str = "Form") -> None:
        self.kind = kind
        self._items: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            self._items[key] = copy.deepcopy(value)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            value = self._items.get(key)
            return copy.deepcopy(value) if value is not None else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(v) for v in self._items.values()]

    def clear(self) -> int:
        with self._lock:
            n = len(self._items)
            self._items.clear()
            return n

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class FileStore(FormStore):
    """One JSON file per key under `root`, written via tmp-file replace."""

    def __init__(self, root: Path, kind: str = "Form") -> None:
        self.kind = kind
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{hashlib.sha256(key.encode('utf-8')).hexdigest()}.json"

    def put(self, key: str, value: Dict[str, Any]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump({"key": key, "value": value}, f, ensure_ascii=False, separators=(",", ":"))
        tmp.replace(path)

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f).get("value")
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            log.warning("store: unreadable entry %s: %r", path.name, e)
            return None

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return self._read(self._path(key))

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def _files(self) -> List[Path]:
        if not self.root.exists():
            return []
        return sorted(self.root.glob("*.json"), key=lambda p: p.stat().st_mtime)

    def list(self) -> List[Dict[str, Any]]:
        out = []
        for path in self._files():
            value = self._read(path)
            if value is not None:
                out.append(value)
        return out

    def clear(self) -> int:
        n = 0
        for path in self._files():
            try:
                path.unlink()
                n += 1
            except FileNotFoundError:
                continue
        return n


class RedisStore(FormStore):
    """All entries of one namespace live in a single Redis hash."""

    def __init__(self, namespace: str, client=None, kind: str = "Form") -> None:
        self.kind = kind
        self.name = f"formflow:{namespace}"
        self._redis = client if client is not None else redis.from_url(REDIS_URL, decode_responses=True)

    def put(self, key: str, value: Dict[str, Any]) -> None:
        self._redis.hset(self.name, key, json.dumps(value, separators=(",", ":"), ensure_ascii=False))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._redis.hget(self.name, key)
        return json.loads(raw) if raw else None

    def delete(self, key: str) -> bool:
        return bool(self._redis.hdel(self.name, key))

    def list(self) -> List[Dict[str, Any]]:
        return [json.loads(raw) for raw in self._redis.hvals(self.name) if raw]

    def clear(self) -> int:
        n = int(self._redis.hlen(self.name) or 0)
        self._redis.delete(self.name)
        return n

    def __len__(self) -> int:
        return int(self._redis.hlen(self.name) or 0)


def get_store(namespace: str, kind: str = "Form") -> FormStore:
    """Build the configured backend for `namespace` (e.g. "forms", "submissions")."""
    backend = FORM_STORE_BACKEND
    if backend == "file":
        return FileStore(FORM_STORE_DIR / namespace, kind=kind)
    if backend == "redis":
        return RedisStore(namespace, kind=kind)
    if backend not in ("", "memory"):
        log.warning("unknown FORM_STORE_BACKEND %r; using memory", backend)
    return MemoryStore(kind=kind)

"""
State persistence for quoting loops.

Snapshots are plain JSON-compatible dicts keyed by (user_id, instrument_id).
JsonFileStateStore writes one file per key, `<user>_<instrument>.json`, via
a temp file and os.replace so a crash mid-write never leaves a torn file.
"""
import json
import os
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

Key = Tuple[str, str]

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class StateStore:
    """Abstract base class for snapshot storage."""

    def load(self, user_id: str, instrument_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def save(self, user_id: str, instrument_id: str, snapshot: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, user_id: str, instrument_id: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[Key]:
        raise NotImplementedError


class InMemoryStateStore(StateStore):
    """Dict-backed store; snapshots are deep-copied through JSON."""

    def __init__(self):
        self._data: Dict[Key, str] = {}
        self._lock = threading.Lock()

    def load(self, user_id: str, instrument_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._data.get((user_id, instrument_id))
        return json.loads(raw) if raw is not None else None

    def save(self, user_id: str, instrument_id: str, snapshot: Dict[str, Any]) -> None:
        raw = json.dumps(snapshot)
        with self._lock:
            self._data[(user_id, instrument_id)] = raw

    def delete(self, user_id: str, instrument_id: str) -> None:
        with self._lock:
            self._data.pop((user_id, instrument_id), None)

    def keys(self) -> List[Key]:
        with self._lock:
            return sorted(self._data)


class JsonFileStateStore(StateStore):
    """One JSON file per (user, instrument) under `directory`."""

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)
        self._locks: Dict[Key, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, key: Key) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def path_for(self, user_id: str, instrument_id: str) -> str:
        name = f"{_UNSAFE.sub('-', user_id)}_{_UNSAFE.sub('-', instrument_id)}.json"
        return os.path.join(self.directory, name)

    def load(self, user_id: str, instrument_id: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(user_id, instrument_id)
        with self._lock((user_id, instrument_id)):
            if not os.path.exists(path):
                return None
            with open(path, "r") as fp:
                return json.load(fp)

    def save(self, user_id: str, instrument_id: str, snapshot: Dict[str, Any]) -> None:
        path = self.path_for(user_id, instrument_id)
        tmp = f"{path}.tmp"
        doc = dict(snapshot, user_id=user_id, instrument_id=instrument_id)
        with self._lock((user_id, instrument_id)):
            with open(tmp, "w") as fp:
                json.dump(doc, fp, indent=2)
            os.replace(tmp, path)

    def delete(self, user_id: str, instrument_id: str) -> None:
        path = self.path_for(user_id, instrument_id)
        with self._lock((user_id, instrument_id)):
            if os.path.exists(path):
                os.remove(path)

    def keys(self) -> List[Key]:
        out = []
        for name in sorted(os.listdir(self.directory)):
            if not name.endswith(".json"):
                continue
            try:
                with open(os.path.join(self.directory, name), "r") as fp:
                    doc = json.load(fp)
            except (OSError, ValueError):
                continue
            if "user_id" in doc and "instrument_id" in doc:
                out.append((doc["user_id"], doc["instrument_id"]))
        return out

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("addonmgr.state")

_MISSING = object()


class StateStore:
    """
    Process-wide key-value store persisted as one JSON document.

    Holds the chosen game path, the activation order and the workshop
    metadata cache. Every write replaces the file atomically (tmp + replace).
    An unreadable document is logged and treated as empty.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._data: Optional[Dict[str, Any]] = None

    def _read(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data

        if not self.path.exists():
            logger.debug(f"State file does not exist yet: {self.path}")
            self._data = {}
            return self._data

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read state file {self.path}: {e}; starting empty")
            raw = {}

        if not isinstance(raw, dict):
            logger.error(f"State file {self.path} is not a JSON object; starting empty")
            raw = {}

        self._data = raw
        return self._data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._read().get(key, _MISSING)
        if value is _MISSING:
            return default
        # hand out a detached copy so callers cannot mutate the cached document
        return json.loads(json.dumps(value))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = dict(self._read())
            data[key] = json.loads(json.dumps(value))
            self._write(data)
            self._data = data
            logger.debug(f"Stored key {key!r} in {self.path}")

    def delete(self, key: str) -> None:
        with self._lock:
            data = dict(self._read())
            if key not in data:
                return
            del data[key]
            self._write(data)
            self._data = data
            logger.debug(f"Deleted key {key!r} from {self.path}")

    def reload(self) -> None:
        """Drop the in-memory copy so the next access re-reads the file."""
        with self._lock:
            self._data = None


# Internal singleton (created on first use)
_state_store: StateStore | None = None


def get_state_store() -> StateStore:
    global _state_store
    if _state_store is None:
        from ..config import config

        _state_store = StateStore(config.state_path)
        logger.info(f"StateStore initialized, path={config.state_path}")
    return _state_store

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from ..state_store import load_state, save_state

logger = logging.getLogger(__name__)


def _normalize(key: str) -> str:
    return key.strip().replace("/", "\\").strip("\\").lower()


class PresenceRegistry:
    """File-backed stand-in for the registry keys components leave behind.

    Keys are case-insensitive and ``/`` and ``\\`` are equivalent separators.
    Without a path the registry lives in memory only.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}
        if path and Path(path).exists():
            self._data = load_state(path)
        self._data.setdefault("keys", {})

    def key_present(self, key: str) -> bool:
        if not key or not key.strip():
            return False
        with self._lock:
            return _normalize(key) in self._data["keys"]

    def mark_present(self, key: str, value: Any = True) -> None:
        if not key or not key.strip():
            return
        with self._lock:
            self._data["keys"][_normalize(key)] = value
            if self.path:
                save_state(self.path, self._data)
        logger.info("Presence key set: %s", key)


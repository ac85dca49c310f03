"""
Durable client-local key/value storage.

A small JSON file stands in for the browser's local storage. Values are
strings; the file is rewritten atomically on every change.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

WATCHED_ORDER_KEY = "current_order_id"
APP_STATE_KEY = "app_state"


class LocalStorage:
    def __init__(self, path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Error loading local storage from %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


@dataclass(frozen=True)
class AppState:
    """Menu view state restored across visits."""

    selected_category: str = "all"
    search_query: str = ""

    def select_category(self, category_id: str) -> "AppState":
        return replace(self, selected_category=category_id, search_query="")

    def search(self, query: str) -> "AppState":
        # Searching always looks across every category.
        if query.strip():
            return replace(self, search_query=query, selected_category="all")
        return replace(self, search_query=query)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "AppState":
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
        except ValueError:
            logger.error("Error loading app state: %r", raw)
            return cls()
        if not isinstance(data, dict):
            return cls()
        return cls(
            selected_category=data.get("selectedCategory") or data.get("selected_category") or "all",
            search_query=data.get("searchQuery") or data.get("search_query") or "",
        )


def load_app_state(storage: LocalStorage) -> AppState:
    return AppState.from_json(storage.get(APP_STATE_KEY))


def save_app_state(storage: LocalStorage, state: AppState) -> None:
    storage.set(APP_STATE_KEY, state.to_json())

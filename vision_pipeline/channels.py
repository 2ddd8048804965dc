# channels.py
"""In-process stand-ins for the two outbound channels: a namespaced
key/value table (NetworkTables-style) and the UI broadcast."""
from __future__ import annotations

import sys
import threading
from typing import Any, Callable, Dict, List, Optional

Listener = Callable[[str, Any], None]
Subscriber = Callable[[Dict[str, Any]], None]


class KeyValueTable:
    """
    One camera's namespace. Local writes (:meth:`put`) never notify;
    inbound writes from the controller side (:meth:`receive`) notify the
    listeners registered for that key.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._values: Dict[str, Any] = {}
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._values

    def add_listener(self, key: str, listener: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(key, []).append(listener)

    def receive(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            listeners = list(self._listeners.get(key, ()))
        # Outside the lock: listeners write back into this table
        for listener in listeners:
            listener(key, value)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._values)

    def __repr__(self) -> str:
        return f"<KeyValueTable {self.path!r} keys={sorted(self.snapshot())}>"


class TableStore:
    def __init__(self, root: str = "/chameleon-vision") -> None:
        self.root = root.rstrip("/")
        self._tables: Dict[str, KeyValueTable] = {}
        self._lock = threading.Lock()

    def table(self, name: str) -> KeyValueTable:
        path = f"{self.root}/{name}"
        with self._lock:
            tbl = self._tables.get(path)
            if tbl is None:
                tbl = self._tables[path] = KeyValueTable(path)
            return tbl


class UIBroadcaster:
    """Fire-and-forget fan-out of dict messages to UI subscribers."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def broadcast(self, message: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for sub in subscribers:
            try:
                sub(message)
            except Exception as exc:  # noqa: BLE001
                print(f"[UI] Subscriber error: {exc}", file=sys.stderr)

    def send_full_settings(self, settings: Optional[Dict[str, Any]]) -> None:
        if settings is not None:
            self.broadcast({"full_settings": settings})

"""
Hierarchical key-value backends for the realtime tree.

Both backends expose the same blocking API (read, replace, multi-path merge,
delete, listen); ``RealtimeDB`` runs them off the event loop. Writing
``None`` deletes a node and empty objects are never stored, matching the
Realtime Database.
"""

import copy
import random
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from firebase_admin import db as firebase_db
import structlog

logger = structlog.get_logger()

Listener = Callable[[Any], None]

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def split_path(path: str) -> list[str]:
    return [segment for segment in (path or "").strip("/").split("/") if segment]


class PushIdGenerator:
    """Chronologically ordered 20-character keys (push-id format).

    8 chars of millisecond timestamp followed by 12 random chars; within the
    same millisecond the random part is incremented so keys stay ordered.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last_ts = 0
        self._last_rand = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now = int(time.time() * 1000)
            duplicate = now == self._last_ts
            self._last_ts = now

            ts_chars = []
            for _ in range(8):
                ts_chars.append(PUSH_CHARS[now % 64])
                now //= 64
            prefix = "".join(reversed(ts_chars))

            if not duplicate:
                self._last_rand = [random.randrange(64) for _ in range(12)]
            else:
                i = 11
                while i >= 0 and self._last_rand[i] == 63:
                    self._last_rand[i] = 0
                    i -= 1
                if i >= 0:
                    self._last_rand[i] += 1

            return prefix + "".join(PUSH_CHARS[r] for r in self._last_rand)


class Subscription:
    """A live listener on one path.

    Closing is idempotent. Owners should hold it in a ``with`` / ``async with``
    block so the listener cannot outlive them.
    """

    def __init__(self, path: str, closer: Callable[[], None]):
        self.path = path
        self._closer = closer
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._closer()
        logger.debug("subscription_closed", path=self.path)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class TreeBackend(ABC):
    def __init__(self):
        self._push_id = PushIdGenerator()

    def push_key(self, path: str) -> str:
        """New child key for ``path``; generated locally, nothing is written."""
        return self._push_id()

    @abstractmethod
    def get(self, path: str) -> Any: ...

    @abstractmethod
    def set(self, path: str, value: Any) -> None: ...

    @abstractmethod
    def update(self, path: str, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into ``path``. Keys may be slash-separated sub-paths."""

    @abstractmethod
    def delete(self, path: str) -> None: ...

    @abstractmethod
    def listen(self, path: str, callback: Listener) -> Subscription:
        """Call ``callback`` with the full value at ``path`` now and on every change."""


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned = {str(k): _normalize(v) for k, v in value.items()}
        cleaned = {k: v for k, v in cleaned.items() if v is not None}
        return cleaned or None
    if isinstance(value, (list, tuple)):
        cleaned = [_normalize(v) for v in value]
        if all(v is None for v in cleaned):
            return None
        return cleaned
    return value


class MemoryTreeBackend(TreeBackend):
    """In-process tree. Used for local development and tests."""

    def __init__(self, initial: Optional[dict] = None):
        super().__init__()
        self._root: dict = _normalize(copy.deepcopy(initial)) or {}
        self._lock = threading.RLock()
        self._listeners: dict[int, tuple[list[str], Listener]] = {}
        self._next_listener_id = 0

    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._lookup(split_path(path)))

    def set(self, path: str, value: Any) -> None:
        segments = split_path(path)
        with self._lock:
            self._write(segments, _normalize(copy.deepcopy(value)))
        self._notify([segments])

    def update(self, path: str, fields: dict[str, Any]) -> None:
        base = split_path(path)
        changed = []
        with self._lock:
            for key, value in fields.items():
                segments = base + split_path(key)
                self._write(segments, _normalize(copy.deepcopy(value)))
                changed.append(segments)
        self._notify(changed)

    def delete(self, path: str) -> None:
        self.set(path, None)

    def listen(self, path: str, callback: Listener) -> Subscription:
        segments = split_path(path)
        with self._lock:
            listener_id = self._next_listener_id
            self._next_listener_id += 1
            self._listeners[listener_id] = (segments, callback)

        def _remove():
            with self._lock:
                self._listeners.pop(listener_id, None)

        try:
            callback(self.get(path))
        except Exception:
            _remove()
            raise
        return Subscription(path, _remove)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _lookup(self, segments: list[str]) -> Any:
        node: Any = self._root
        for segment in segments:
            if isinstance(node, list):
                try:
                    node = node[int(segment)]
                except (ValueError, IndexError):
                    return None
            elif isinstance(node, dict) and segment in node:
                node = node[segment]
            else:
                return None
        return node

    def _write(self, segments: list[str], value: Any) -> None:
        if not segments:
            self._root = value if isinstance(value, dict) else {}
            return

        node = self._root
        trail = []
        for segment in segments[:-1]:
            child = node.get(segment)
            if isinstance(child, list):
                child = {str(i): v for i, v in enumerate(child) if v is not None}
                node[segment] = child
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[segment] = child
            trail.append((node, segment))
            node = child

        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = value

        for parent, key in reversed(trail):
            if parent[key]:
                break
            del parent[key]

    def _notify(self, changed: list[list[str]]) -> None:
        with self._lock:
            listeners = list(self._listeners.values())

        for segments, callback in listeners:
            affected = any(
                c[: len(segments)] == segments or segments[: len(c)] == c
                for c in changed
            )
            if not affected:
                continue
            try:
                callback(self.get("/".join(segments)))
            except Exception:
                logger.exception("tree_listener_failed", path="/".join(segments))


class FirebaseTreeBackend(TreeBackend):
    """Firebase Realtime Database through the Admin SDK."""

    def __init__(self, app=None):
        super().__init__()
        self._app = app

    def _ref(self, path: str):
        return firebase_db.reference("/" + "/".join(split_path(path)), app=self._app)

    def get(self, path: str) -> Any:
        return self._ref(path).get()

    def set(self, path: str, value: Any) -> None:
        if value is None:
            self._ref(path).delete()
        else:
            self._ref(path).set(value)

    def update(self, path: str, fields: dict[str, Any]) -> None:
        if fields:
            self._ref(path).update(fields)

    def delete(self, path: str) -> None:
        self._ref(path).delete()

    def listen(self, path: str, callback: Listener) -> Subscription:
        ref = self._ref(path)

        # Callbacks receive the full value at ``path``, not the event delta.
        def _on_event(event):
            try:
                callback(ref.get())
            except Exception:
                logger.exception("tree_listener_failed", path=path)

        registration = ref.listen(_on_event)
        return Subscription(path, registration.close)

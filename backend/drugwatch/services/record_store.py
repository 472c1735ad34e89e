"""
DrugWatch - Record Store Accessor

Thin wrapper over the realtime database: point read/write, partial patch,
ordered range query, atomic read-modify-write and live subscription.

Two backends share one interface:
    FirebaseRecordStore  -> firebase_admin.db (production)
    InMemoryRecordStore  -> process-local tree (local runs, tests)

Every inspection record carries a ``revision`` counter. ``patch_record``
checks it before applying a patch, so concurrent edits to the same record
fail with ``StaleRecordError`` instead of silently overwriting each other.
"""

import asyncio
import contextlib
import copy
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

import firebase_admin
from firebase_admin import db as firebase_db
from firebase_admin import exceptions as firebase_exceptions

from drugwatch.core.config import settings
from drugwatch.core.exceptions import RecordNotFound, StaleRecordError, StoreWriteError
from drugwatch.models.inspection import to_int

logger = logging.getLogger(__name__)

Row = tuple[str, Any]
SnapshotCallback = Callable[[list[Row]], None]


# ============ Path / ordering helpers ============

def split_path(path: str) -> list[str]:
    return [p for p in path.strip("/").split("/") if p]


def child_value(value: Any, child_path: Optional[str]) -> Any:
    """Read a nested child (``meta/createdAt``) of a stored value."""
    if child_path is None:
        return value
    for part in split_path(child_path):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def order_key(value: Any) -> tuple:
    """Realtime-database ordering: null < false < true < numbers < strings < objects."""
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, 0)


def apply_patch(target: dict, patch: dict[str, Any]) -> dict:
    """Apply a multi-location patch in place; ``None`` deletes the key."""
    for key, value in patch.items():
        parts = split_path(key)
        node = target
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)
    return target


def newest_first(rows: list[Row], order_by: Optional[str]) -> list[Row]:
    return sorted(rows, key=lambda r: (order_key(child_value(r[1], order_by)), r[0]), reverse=True)


class Subscription:
    """Handle for a live listener. ``close`` only detaches the listener."""

    def __init__(self, closer: Callable[[], None]):
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


# ============ Interface ============

class RecordStore(ABC):
    """Hierarchical key/value store operations used by the application."""

    @abstractmethod
    def get(self, path: str) -> Any:
        ...

    @abstractmethod
    def set(self, path: str, value: Any) -> None:
        ...

    @abstractmethod
    def push(self, path: str, value: Any) -> str:
        """Write ``value`` under a new store-assigned, time-ordered key."""

    @abstractmethod
    def update(self, path: str, patch: dict[str, Any]) -> None:
        """Multi-location partial patch, atomic per call."""

    @abstractmethod
    def query(
        self,
        path: str,
        order_by: str,
        end_at: Any = None,
        limit_to_last: Optional[int] = None,
    ) -> list[Row]:
        """Children ordered ascending by ``order_by`` (ties by key)."""

    @abstractmethod
    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> Any:
        """Atomic read-modify-write. Exceptions from ``update_fn`` abort it."""

    @abstractmethod
    def _watch(self, path: str, on_change: Callable[[], None]) -> Callable[[], None]:
        """Register a change hook; returns the function that removes it."""

    # ---- Derived operations ----

    def snapshot(self, path: str, order_by: Optional[str] = None) -> list[Row]:
        """Full current set under ``path``, newest first."""
        value = self.get(path) or {}
        if not isinstance(value, dict):
            return []
        return newest_first(list(value.items()), order_by)

    def listen(self, path: str, callback: SnapshotCallback, order_by: Optional[str] = None) -> Subscription:
        """Deliver the full matching set on subscribe and after every change.

        Callers receive a fresh snapshot, never a diff.
        """
        def deliver() -> None:
            if subscription.closed:
                return
            try:
                callback(self.snapshot(path, order_by))
            except Exception as e:
                logger.error(f"[STORE] Listener callback failed for {path}: {e}")

        subscription = Subscription(lambda: remove())
        remove = self._watch(path, deliver)
        return subscription

    def patch_record(
        self,
        path: str,
        patch: dict[str, Any],
        expected_revision: Optional[int] = None,
        precondition: Optional[Callable[[dict], None]] = None,
    ) -> dict:
        """Patch a record under a revision check; returns the new record value.

        ``precondition`` receives the current value and may raise to abort
        before anything is written.
        """
        def apply(current: Any) -> dict:
            if not isinstance(current, dict):
                raise RecordNotFound(f"Record not found: {path}")
            revision = to_int(current.get("revision", 0))
            if expected_revision is not None and revision != expected_revision:
                raise StaleRecordError(expected=expected_revision, actual=revision)
            if precondition is not None:
                precondition(current)
            updated = apply_patch(copy.deepcopy(current), patch)
            updated["revision"] = revision + 1
            return updated

        return self.transaction(path, apply)

    def reserve_sequence(self, name: str) -> int:
        """Atomically increment ``counters/{name}`` and return the new value."""
        return self.transaction(f"counters/{name}", lambda current: to_int(current) + 1)


async def run_write(fn: Callable[..., Any], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> Any:
    """Run a blocking store write off the event loop, racing a timeout.

    A write that loses the race may still commit later; only the caller's
    wait is abandoned.
    """
    timeout = timeout if timeout is not None else settings.STORE_WRITE_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"[STORE] Write timed out after {timeout}s")
        raise StoreWriteError("The save took too long. Check your connection and try again.", 504)


# ============ In-memory backend ============

class InMemoryRecordStore(RecordStore):
    """Process-local store with realtime-database semantics."""

    def __init__(self, initial: Optional[dict] = None):
        self._root: dict = copy.deepcopy(initial) if initial else {}
        self._lock = threading.RLock()
        self._watchers: dict[int, tuple[list[str], Callable[[], None]]] = {}
        self._ids = itertools.count(1)
        self._push_seq = itertools.count()

    def _node(self, parts: list[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict):
                return None
            node = node.get(part)
        return node

    def _write(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = copy.deepcopy(value) if isinstance(value, dict) else {}
            return
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)

    def _notify(self, changed: list[str]) -> None:
        with self._lock:
            watchers = list(self._watchers.values())
        for parts, hook in watchers:
            n = min(len(parts), len(changed))
            if parts[:n] == changed[:n]:
                hook()

    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._node(split_path(path)))

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        with self._lock:
            self._write(parts, value)
        self._notify(parts)

    def push(self, path: str, value: Any) -> str:
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        key = f"-{now_ms:013d}{next(self._push_seq):06d}"
        self.set(f"{path.strip('/')}/{key}", value)
        return key

    def update(self, path: str, patch: dict[str, Any]) -> None:
        parts = split_path(path)
        with self._lock:
            current = self._node(parts)
            base = copy.deepcopy(current) if isinstance(current, dict) else {}
            self._write(parts, apply_patch(base, patch))
        self._notify(parts)

    def query(
        self,
        path: str,
        order_by: str,
        end_at: Any = None,
        limit_to_last: Optional[int] = None,
    ) -> list[Row]:
        value = self.get(path) or {}
        if not isinstance(value, dict):
            return []
        rows = sorted(value.items(), key=lambda r: (order_key(child_value(r[1], order_by)), r[0]))
        if end_at is not None:
            bound = order_key(end_at)
            rows = [r for r in rows if order_key(child_value(r[1], order_by)) <= bound]
        if limit_to_last is not None:
            rows = rows[-limit_to_last:] if limit_to_last > 0 else []
        return rows

    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> Any:
        parts = split_path(path)
        with self._lock:
            current = copy.deepcopy(self._node(parts))
            new_value = update_fn(current)
            self._write(parts, new_value)
        self._notify(parts)
        return copy.deepcopy(new_value)

    def _watch(self, path: str, on_change: Callable[[], None]) -> Callable[[], None]:
        watcher_id = next(self._ids)
        with self._lock:
            self._watchers[watcher_id] = (split_path(path), on_change)
        on_change()

        def remove() -> None:
            with self._lock:
                self._watchers.pop(watcher_id, None)

        return remove


# ============ Firebase backend ============

@contextlib.contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """Map Firebase failures to human-readable ``StoreWriteError`` messages."""
    try:
        yield
    except (firebase_exceptions.PermissionDeniedError, firebase_exceptions.UnauthenticatedError) as e:
        logger.warning(f"[STORE] {action} denied: {e}")
        raise StoreWriteError("Permission denied. Your account may not be allowed to write here.", 403)
    except firebase_exceptions.UnavailableError as e:
        logger.warning(f"[STORE] {action} unavailable: {e}")
        raise StoreWriteError("The database is unreachable. Check your connection and try again.", 503)
    except firebase_exceptions.DeadlineExceededError as e:
        logger.warning(f"[STORE] {action} timed out: {e}")
        raise StoreWriteError("The save took too long. Check your connection and try again.", 504)
    except firebase_db.TransactionAbortedError as e:
        logger.warning(f"[STORE] {action} aborted: {e}")
        raise StoreWriteError("Too many simultaneous edits to this record. Please try again.", 409)
    except firebase_exceptions.FirebaseError as e:
        logger.error(f"[STORE] {action} failed: {e}")
        raise StoreWriteError(str(e) or f"{action} failed.")


class FirebaseRecordStore(RecordStore):
    """Realtime database backend via the Firebase Admin SDK."""

    def __init__(self, app: Optional[firebase_admin.App] = None):
        self._app = app

    def _ref(self, path: str) -> firebase_db.Reference:
        return firebase_db.reference("/" + "/".join(split_path(path)), app=self._app)

    def get(self, path: str) -> Any:
        with translate_errors("Read"):
            return self._ref(path).get()

    def set(self, path: str, value: Any) -> None:
        with translate_errors("Write"):
            self._ref(path).set(value)

    def push(self, path: str, value: Any) -> str:
        with translate_errors("Write"):
            return self._ref(path).push(value).key

    def update(self, path: str, patch: dict[str, Any]) -> None:
        with translate_errors("Update"):
            self._ref(path).update(patch)

    def query(
        self,
        path: str,
        order_by: str,
        end_at: Any = None,
        limit_to_last: Optional[int] = None,
    ) -> list[Row]:
        q = self._ref(path).order_by_child(order_by)
        if end_at is not None:
            q = q.end_at(end_at)
        if limit_to_last is not None:
            q = q.limit_to_last(limit_to_last)
        with translate_errors("Query"):
            result = q.get() or {}
        return sorted(result.items(), key=lambda r: (order_key(child_value(r[1], order_by)), r[0]))

    def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> Any:
        with translate_errors("Transaction"):
            return self._ref(path).transaction(update_fn)

    def _watch(self, path: str, on_change: Callable[[], None]) -> Callable[[], None]:
        # The SDK streams diffs; every event triggers a full re-read instead.
        with translate_errors("Subscribe"):
            registration = self._ref(path).listen(lambda event: on_change())
        return registration.close

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, Type, TypeVar

from .errors import NotFoundError, VersionConflictError
from .models import AGGREGATES, Board, BoardList, Card, User

A = TypeVar("A", User, Board, BoardList, Card)

RESOURCE_NAMES: Dict[type, str] = {
    User: "User",
    Board: "Board",
    BoardList: "List",
    Card: "Card",
}


def resource_name(kind: type) -> str:
    return RESOURCE_NAMES.get(kind, kind.__name__)


class Store(Protocol):
    """Persistence facade used by the engine.

    ``load`` returns an independent copy; changes are only visible to others
    after ``save``. ``load_many`` reads all of its aggregates from one
    snapshot. ``save`` writes every aggregate it is given and removes every
    ``(kind, id)`` in ``deleted``, or does none of it. It raises
    ``VersionConflictError`` when an aggregate was saved by someone else
    since it was loaded.
    """

    def load(self, kind: Type[A], aggregate_id: str) -> A: ...

    def load_many(self, kind: Type[A], aggregate_ids: Sequence[str]) -> List[A]: ...

    def save(self, *aggregates: object, deleted: Sequence[Tuple[type, str]] = ()) -> None: ...

    def delete(self, kind: type, aggregate_id: str) -> None: ...

    def find_user_by_email(self, email: str) -> Optional[User]: ...

    def list_users(self) -> List[User]: ...


class MemoryStore:
    """In-memory store: one arena per aggregate type, keyed by id."""

    def __init__(self) -> None:
        self._arenas: Dict[type, Dict[str, object]] = {kind: {} for kind in AGGREGATES}
        self._lock = threading.RLock()

    # === Facade ===
    def load(self, kind: Type[A], aggregate_id: str) -> A:
        with self._lock:
            found = self._arenas[kind].get(aggregate_id) if aggregate_id else None
            if found is None:
                raise NotFoundError(resource_name(kind), aggregate_id)
            return copy.deepcopy(found)

    def load_many(self, kind: Type[A], aggregate_ids: Sequence[str]) -> List[A]:
        with self._lock:
            return [self.load(kind, aggregate_id) for aggregate_id in aggregate_ids]

    def save(self, *aggregates: object, deleted: Sequence[Tuple[type, str]] = ()) -> None:
        with self._lock:
            for aggregate in aggregates:
                self._check_version(aggregate)
            for kind, aggregate_id in deleted:
                if aggregate_id not in self._arenas[kind]:
                    raise NotFoundError(resource_name(kind), aggregate_id)
            for aggregate in aggregates:
                aggregate.version += 1
                self._arenas[type(aggregate)][aggregate.id] = copy.deepcopy(aggregate)
            for kind, aggregate_id in deleted:
                del self._arenas[kind][aggregate_id]

    def delete(self, kind: type, aggregate_id: str) -> None:
        self.save(deleted=[(kind, aggregate_id)])

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        with self._lock:
            for user in self._arenas[User].values():
                if user.email.lower() == wanted:
                    return copy.deepcopy(user)
        return None

    def list_users(self) -> List[User]:
        with self._lock:
            return [copy.deepcopy(u) for u in self._arenas[User].values()]

    # === Helpers ===
    def _check_version(self, aggregate: object) -> None:
        kind = type(aggregate)
        if kind not in self._arenas:
            raise TypeError(f"not an aggregate: {kind.__name__}")
        stored = self._arenas[kind].get(aggregate.id)
        stored_version = stored.version if stored is not None else 0
        if stored_version != aggregate.version:
            raise VersionConflictError(resource_name(kind), aggregate.id)


class LockRegistry:
    """Per-aggregate mutual exclusion within one process.

    Locks are keyed by ``(resource, id)`` and created on first use.
    """

    def __init__(self) -> None:
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def _get(self, key: Tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *keys: Tuple[str, str]) -> Iterator[None]:
        """Acquire the locks for ``keys`` in the order given."""
        acquired: List[threading.Lock] = []
        try:
            for key in dict.fromkeys(keys):
                lock = self._get(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def __len__(self) -> int:
        return len(self._locks)


def board_key(board_id: str) -> Tuple[str, str]:
    return ("board", board_id)


def user_key(user_id: str) -> Tuple[str, str]:
    return ("user", user_id)

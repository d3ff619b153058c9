"""Holding place for live ceremonies.

A RandomnessCoordinator is not thread-safe on its own. The registry
hands each ceremony out only inside `session()`, which holds that
ceremony's lock, so concurrent commits and reveals for one game are
serialised while different games proceed independently.

Storage is in memory only. The store protocol is the seam where a
durable backend would plug in.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

from fairdeck.engine.coordinator import RandomnessCoordinator


CoordinatorFactory = Callable[[], RandomnessCoordinator]


class CeremonyStore(Protocol):
    def get(self, ceremony_id: str) -> Optional[RandomnessCoordinator]: ...

    def put(self, ceremony_id: str, coordinator: RandomnessCoordinator) -> None: ...

    def delete(self, ceremony_id: str) -> None: ...

    def ids(self) -> list[str]: ...


class InMemoryCeremonyStore:
    """Dict-backed store. Contents are lost with the process."""

    def __init__(self) -> None:
        self._items: dict[str, RandomnessCoordinator] = {}

    def get(self, ceremony_id: str) -> Optional[RandomnessCoordinator]:
        return self._items.get(ceremony_id)

    def put(self, ceremony_id: str, coordinator: RandomnessCoordinator) -> None:
        self._items[ceremony_id] = coordinator

    def delete(self, ceremony_id: str) -> None:
        self._items.pop(ceremony_id, None)

    def ids(self) -> list[str]:
        return sorted(self._items)


class CeremonyRegistry:
    """Opens, serialises access to, and closes ceremonies.

    Usage:
        registry = CeremonyRegistry()
        registry.open("game-1")
        with registry.session("game-1") as coord:
            coord.commit_player_seed("alice", commitment)
        registry.close("game-1")
    """

    def __init__(
        self,
        store: Optional[CeremonyStore] = None,
        factory: Optional[CoordinatorFactory] = None,
    ) -> None:
        self._store: CeremonyStore = store if store is not None else InMemoryCeremonyStore()
        self._factory: CoordinatorFactory = factory or RandomnessCoordinator
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def open(self, ceremony_id: str) -> RandomnessCoordinator:
        """Create a fresh ceremony. Raises ValueError if the id is in use."""
        with self._guard:
            if self._store.get(ceremony_id) is not None:
                raise ValueError(f"Ceremony already open: {ceremony_id}")
            coordinator = self._factory()
            self._store.put(ceremony_id, coordinator)
            self._locks[ceremony_id] = threading.RLock()
            return coordinator

    @contextmanager
    def session(self, ceremony_id: str) -> Iterator[RandomnessCoordinator]:
        """Yield the ceremony while holding its lock.

        Raises KeyError for an unknown ceremony id.
        """
        with self._guard:
            lock = self._locks.get(ceremony_id)
        if lock is None:
            raise KeyError(f"Unknown ceremony: {ceremony_id}")

        with lock:
            coordinator = self._store.get(ceremony_id)
            if coordinator is None:
                raise KeyError(f"Unknown ceremony: {ceremony_id}")
            yield coordinator

    def get(self, ceremony_id: str) -> Optional[RandomnessCoordinator]:
        return self._store.get(ceremony_id)

    def close(self, ceremony_id: str) -> bool:
        """Discard a ceremony. Returns False if it was not open."""
        with self._guard:
            lock = self._locks.pop(ceremony_id, None)
        if lock is None:
            return False
        with lock:
            self._store.delete(ceremony_id)
        return True

    def ids(self) -> list[str]:
        return self._store.ids()

"""Persistence port for lockout records.

A store owns one ``LockoutRecord`` per normalized credential and offers a
single-key atomic read-modify-write. ``update`` hands the current record (or
``None``) to ``mutate``, which returns ``(new_record, result)``; a ``None``
record means nothing is written. Optimistic stores may call ``mutate`` more
than once, so it must not have side effects.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, TypeVar

from lockout_guard.models import LockoutRecord

T = TypeVar("T")

Mutator = Callable[[LockoutRecord | None], tuple[LockoutRecord | None, T]]


class LockoutStore(ABC):
    @abstractmethod
    def get(self, credential: str) -> LockoutRecord | None:
        """Plain read; may be stale."""

    @abstractmethod
    def update(self, credential: str, mutate: Mutator) -> T:
        """Atomically apply ``mutate`` to the record keyed by ``credential``."""


class InMemoryLockoutStore(LockoutStore):
    """Single-node store: a dict of records guarded by a fixed set of lock stripes.

    A credential always maps to the same stripe, so updates to one key are
    serialized. The stripe count does not grow with the keys seen.
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self.records: dict[str, LockoutRecord] = {}
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, credential: str) -> threading.Lock:
        return self._locks[hash(credential) % len(self._locks)]

    def get(self, credential: str) -> LockoutRecord | None:
        record = self.records.get(credential)
        return record.model_copy() if record else None

    def update(self, credential: str, mutate: Mutator) -> T:
        with self._lock_for(credential):
            current = self.records.get(credential)
            new_record, result = mutate(current.model_copy() if current else None)
            if new_record is not None:
                version = current.version + 1 if current else 1
                self.records[credential] = new_record.model_copy(update={"version": version})
            return result

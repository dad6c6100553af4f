"""
Attempt record storage for the login security guard.

The guard only talks to an AttemptStore. MemoryAttemptStore keeps records
in process memory, which is correct for a single-instance deployment
(one gunicorn worker) and for tests. Multi-worker or multi-host
deployments need an implementation backed by a shared store with atomic
increments and TTLs.
"""

from dataclasses import dataclass
from typing import Dict, Generic, Iterator, Optional, Protocol, Tuple, TypeVar


@dataclass
class FailedAttemptRecord:
    """Failed-login bookkeeping for one account identifier."""

    count: int
    window_start: float
    last_attempt: float
    locked: bool = False
    lock_expires_at: Optional[float] = None
    # Drives progressive lockout durations; survives successful logins.
    consecutive_lockouts: int = 0


@dataclass
class IPRecord:
    """Failed-login bookkeeping for one source address, across accounts."""

    count: int
    window_start: float
    last_attempt: float
    locked: bool = False
    lock_expires_at: Optional[float] = None
    # Incremented each time a block is applied; never reset by unblocking.
    block_count: int = 0


R = TypeVar('R')


class AttemptStore(Protocol[R]):
    """Keyed record storage used by the guard."""

    def get(self, key: str) -> Optional[R]: ...

    def put(self, key: str, record: R) -> None: ...

    def delete(self, key: str) -> None: ...

    def items(self) -> Iterator[Tuple[str, R]]: ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...


class MemoryAttemptStore(Generic[R]):
    """
    Dict-backed AttemptStore.

    Not synchronized on its own; LoginSecurityGuard serializes every
    read-modify-write sequence under its lock.
    """

    def __init__(self) -> None:
        self._records: Dict[str, R] = {}

    def get(self, key: str) -> Optional[R]:
        return self._records.get(key)

    def put(self, key: str, record: R) -> None:
        self._records[key] = record

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def items(self) -> Iterator[Tuple[str, R]]:
        # Snapshot so callers can delete while iterating.
        return iter(list(self._records.items()))

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

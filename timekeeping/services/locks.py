from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

SummaryKey = tuple[int, int, int]


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


_REGISTRY_LOCK = threading.Lock()
_SUMMARY_LOCKS: dict[SummaryKey, _LockEntry] = {}


@contextmanager
def summary_lock(user_id: int, year: int, month: int) -> Iterator[None]:
    """Serialize mutations of one (user, year, month) summary within the process.

    Entries are dropped once nobody holds or waits on them.
    """
    key = (user_id, year, month)
    with _REGISTRY_LOCK:
        entry = _SUMMARY_LOCKS.get(key)
        if entry is None:
            entry = _LockEntry()
            _SUMMARY_LOCKS[key] = entry
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _REGISTRY_LOCK:
            entry.holders -= 1
            if entry.holders == 0 and _SUMMARY_LOCKS.get(key) is entry:
                del _SUMMARY_LOCKS[key]


def active_summary_locks() -> int:
    with _REGISTRY_LOCK:
        return len(_SUMMARY_LOCKS)


def clear_summary_locks() -> None:
    with _REGISTRY_LOCK:
        _SUMMARY_LOCKS.clear()

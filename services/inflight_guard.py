"""
services/inflight_guard.py
--------------------------
InFlightGuard — at most one mutation per record key at a time.

A second create/update/delete for a key that is still being written is
rejected with ConflictError instead of waiting, so two overlapping edits of
the same sample's pH / fertility cannot silently overwrite each other.

Usage:
    guard = InFlightGuard()
    with guard.hold(("sample", 7)):
        repo.update(7, fields)
"""

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator

from services.errors import ConflictError


class InFlightGuard:

    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[Hashable] = set()

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._lock:
            if key in self._active:
                raise ConflictError(
                    "Another change to this record is still in progress"
                )
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)

    def is_held(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._active

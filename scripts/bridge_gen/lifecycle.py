"""
Object lifecycle module

Shared-ownership arena for native objects referenced across the boundary.

A handle is a non-zero integer naming one live object. Each handle carries
an explicit reference count: allocate and clone_handle add one, release
removes one, and the release that drops the count to zero runs the
object's teardown exactly once.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import InternalFault

logger = logging.getLogger(__name__)

NULL_HANDLE = 0


@dataclass
class _Entry:
    obj: Any
    count: int


class HandleArena:
    """Reference-counted handle table

    All count updates happen under one lock, so concurrent clone/release
    calls from different threads never lose an update. Teardown runs
    outside the lock.
    """

    def __init__(self, destructor: Optional[Callable[[Any], None]] = None):
        self._destructor = destructor
        self._lock = threading.Lock()
        self._next = itertools.count(1)
        self._entries: dict[int, _Entry] = {}
        self._by_identity: dict[int, int] = {}

    def allocate(self, obj: Any) -> int:
        """Pin an object and return a handle holding one reference

        Allocating an object that is already live returns its existing
        handle with the count raised by one.
        """
        with self._lock:
            handle = self._by_identity.get(id(obj))
            if handle is not None:
                self._entries[handle].count += 1
                return handle
            handle = next(self._next)
            self._entries[handle] = _Entry(obj, 1)
            self._by_identity[id(obj)] = handle
        logger.debug('allocated handle %d for %s', handle, type(obj).__name__)
        return handle

    def clone_handle(self, handle: int) -> int:
        """Add a reference to a live handle; the returned handle must be released too"""
        with self._lock:
            entry = self._live(handle)
            entry.count += 1
        return handle

    def release(self, handle: int) -> bool:
        """Drop one reference; returns True when this call tore the object down"""
        with self._lock:
            entry = self._live(handle)
            entry.count -= 1
            if entry.count > 0:
                return False
            del self._entries[handle]
            del self._by_identity[id(entry.obj)]

        logger.debug('released last reference to handle %d', handle)
        if self._destructor is not None:
            self._destructor(entry.obj)
        return True

    def get(self, handle: int) -> Any:
        """Dereference a live handle"""
        with self._lock:
            return self._live(handle).obj

    def ref_count(self, handle: int) -> int:
        """Outstanding references to a handle; 0 once released"""
        with self._lock:
            entry = self._entries.get(handle)
            return entry.count if entry is not None else 0

    def _live(self, handle: int) -> _Entry:
        if handle == NULL_HANDLE:
            raise InternalFault('null handle')
        entry = self._entries.get(handle)
        if entry is None:
            raise InternalFault('handle is not live', {'handle': handle})
        return entry

    def __contains__(self, handle: int) -> bool:
        with self._lock:
            return handle in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

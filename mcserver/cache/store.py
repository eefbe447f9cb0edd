"""
In-Memory Item Store

A small dictionary-backed store used by the reference handlers. It keeps
memcached item metadata (flags, absolute expiry, cas unique) and expires
items lazily on access. There is no size limit and no eviction.
"""

import itertools
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..protocol.commands import ResponseStatus


@dataclass
class Item:
    """
    A stored item.

    Attributes:
        flags: Opaque flags token given by the client
        data: Stored bytes
        exptime: 0 (never) or absolute epoch seconds
        cas: Unique id, bumped on every modification
    """
    flags: str
    data: bytes
    exptime: int = 0
    cas: int = 0

    def expired(self, now: float) -> bool:
        # Negative exptime means "already expired"
        return self.exptime < 0 or (self.exptime > 0 and self.exptime <= now)


class MemoryStore:
    """
    In-memory item store with lazy expiration.

    Every modification assigns a fresh cas unique so that gets/cas work
    as expected. Operations return ResponseStatus values where the
    protocol defines one.
    """

    def __init__(self, clock: Callable[[], float] = None):
        self._clock = clock if clock is not None else time.time
        self._items: Dict[str, Item] = {}
        self._cas_ids = itertools.count(1)
        self._flush_at = 0

    def _now(self) -> float:
        return self._clock()

    def _live(self, key: str) -> Optional[Item]:
        """Return the item for key if present and not expired."""
        now = self._now()
        if self._flush_at and self._flush_at <= now:
            self._items.clear()
            self._flush_at = 0

        item = self._items.get(key)
        if item is None:
            return None
        if item.expired(now):
            # Lazy expiration
            del self._items[key]
            return None
        return item

    def _store(self, key: str, item: Item) -> None:
        item.cas = next(self._cas_ids)
        self._items[key] = item

    def get(self, key: str) -> Optional[Item]:
        return self._live(key)

    def get_many(self, keys: List[str]) -> Iterator[Tuple[str, Item]]:
        """Yield (key, item) for every live key, in request order."""
        for key in keys:
            item = self._live(key)
            if item is not None:
                yield key, item

    def set(self, key: str, flags: str, data: bytes, exptime: int = 0) -> ResponseStatus:
        self._store(key, Item(flags=flags, data=data, exptime=exptime))
        return ResponseStatus.STORED

    def add(self, key: str, flags: str, data: bytes, exptime: int = 0) -> ResponseStatus:
        if self._live(key) is not None:
            return ResponseStatus.NOT_STORED
        return self.set(key, flags, data, exptime)

    def replace(self, key: str, flags: str, data: bytes, exptime: int = 0) -> ResponseStatus:
        if self._live(key) is None:
            return ResponseStatus.NOT_STORED
        return self.set(key, flags, data, exptime)

    def append(self, key: str, data: bytes) -> ResponseStatus:
        """Append data to an existing item, keeping its flags and exptime."""
        item = self._live(key)
        if item is None:
            return ResponseStatus.NOT_STORED
        self._store(key, Item(item.flags, item.data + data, item.exptime))
        return ResponseStatus.STORED

    def prepend(self, key: str, data: bytes) -> ResponseStatus:
        """Prepend data to an existing item, keeping its flags and exptime."""
        item = self._live(key)
        if item is None:
            return ResponseStatus.NOT_STORED
        self._store(key, Item(item.flags, data + item.data, item.exptime))
        return ResponseStatus.STORED

    def cas(self, key: str, flags: str, data: bytes, exptime: int, unique: int) -> ResponseStatus:
        item = self._live(key)
        if item is None:
            return ResponseStatus.NOT_FOUND
        if item.cas != unique:
            return ResponseStatus.EXISTS
        return self.set(key, flags, data, exptime)

    def delete(self, key: str) -> bool:
        if self._live(key) is None:
            return False
        del self._items[key]
        return True

    def touch(self, key: str, exptime: int) -> bool:
        item = self._live(key)
        if item is None:
            return False
        item.exptime = exptime
        return True

    def replace_data(self, key: str, data: bytes) -> None:
        """Overwrite the data of an existing item in place (incr/decr)."""
        item = self._items[key]
        item.data = data
        item.cas = next(self._cas_ids)

    def flush(self, at: int = 0) -> None:
        """Invalidate every item now, or at the absolute time ``at``."""
        if at > 0 and at > self._now():
            self._flush_at = at
            return
        self._items.clear()
        self._flush_at = 0

    def size(self) -> int:
        """Number of stored items, possibly including expired ones."""
        return len(self._items)

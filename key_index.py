from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from typing import Any, Dict, Iterator, List, Optional, Tuple

Key = Tuple[Any, ...]
Row = Tuple[Any, ...]


class KeyIndex:
    """Maps a composite key (values at the key positions, in key order) to its tuple.

    Subclasses decide the backing structure; relations only rely on
    insert/lookup plus ordered iteration.
    """

    def insert(self, key: Key, tup: Row) -> None:
        raise NotImplementedError

    def lookup(self, key: Key) -> Optional[Row]:
        raise NotImplementedError

    def items(self) -> Iterator[Tuple[Key, Row]]:
        raise NotImplementedError

    def range(self, low: Optional[Key] = None, high: Optional[Key] = None) -> Iterator[Tuple[Key, Row]]:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError

    def __contains__(self, key: Key) -> bool:
        return self.lookup(key) is not None

    def __iter__(self) -> Iterator[Key]:
        for key, _ in self.items():
            yield key


class SortedKeyIndex(KeyIndex):
    """Ordered index: a dict for exact lookups plus a sorted key list for scans."""

    def __init__(self):
        self._map: Dict[Key, Row] = {}
        self._keys: List[Key] = []

    def insert(self, key: Key, tup: Row) -> None:
        key = tuple(key)
        if key not in self._map:
            insort(self._keys, key)
        self._map[key] = tup

    def lookup(self, key: Key) -> Optional[Row]:
        return self._map.get(tuple(key))

    def items(self) -> Iterator[Tuple[Key, Row]]:
        for key in self._keys:
            yield key, self._map[key]

    def range(self, low: Optional[Key] = None, high: Optional[Key] = None) -> Iterator[Tuple[Key, Row]]:
        """Keys k with low <= k <= high; a missing bound is open."""
        start = 0 if low is None else bisect_left(self._keys, tuple(low))
        stop = len(self._keys) if high is None else bisect_right(self._keys, tuple(high))
        for key in self._keys[start:stop]:
            yield key, self._map[key]

    def clear(self) -> None:
        self._map.clear()
        self._keys.clear()

    def __len__(self) -> int:
        return len(self._map)

    def __repr__(self):
        return f"SortedKeyIndex({len(self)} keys)"

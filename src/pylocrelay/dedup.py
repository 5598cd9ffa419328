"""Bounded duplicate suppression for delivered fixes."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Hashable


class RecencyWindow:
    """Remembers the most recent *size* keys.

    ``admit`` returns ``True`` the first time a key is seen inside the
    window and ``False`` for repeats. Keys older than the window are
    forgotten, so a very old fix replayed later would be admitted again.
    """

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("size must be at least 1")
        self._size = size
        self._keys: OrderedDict[Hashable, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def admit(self, key: Hashable) -> bool:
        if key in self._keys:
            self._keys.move_to_end(key)
            return False
        self._keys[key] = None
        if len(self._keys) > self._size:
            self._keys.popitem(last=False)
        return True

    def clear(self) -> None:
        self._keys.clear()

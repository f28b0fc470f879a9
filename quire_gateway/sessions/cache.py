"""Size-bounded LRU mapping that reports evicted entries."""

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class BoundedEvictionCache(Generic[V]):
    """LRU cache keyed by string.

    ``get`` and ``set`` both count as a use. When a new key would exceed
    ``max_size`` the least recently used entry is dropped and ``on_evict`` is
    called with it before the new key goes in. Errors raised by ``on_evict``
    are logged and never reach the caller. Explicit ``delete`` and ``clear``
    do not trigger the callback.
    """

    def __init__(self, max_size: int, on_evict: Callable[[str, V], None] | None = None) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._on_evict = on_evict
        self._entries: OrderedDict[str, V] = OrderedDict()

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def get(self, key: str) -> V | None:
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def peek(self, key: str) -> V | None:
        """Read without touching recency."""
        return self._entries.get(key)

    def set(self, key: str, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        else:
            while len(self._entries) >= self._max_size:
                old_key, old_value = self._entries.popitem(last=False)
                self._evicted(old_key, old_value)
        self._entries[key] = value

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def items(self) -> list[tuple[str, V]]:
        """Snapshot, least recently used first."""
        return list(self._entries.items())

    def clear(self) -> list[tuple[str, V]]:
        """Remove everything and return what was held."""
        held = list(self._entries.items())
        self._entries.clear()
        return held

    def _evicted(self, key: str, value: V) -> None:
        if self._on_evict is None:
            return
        try:
            self._on_evict(key, value)
        except Exception:
            logger.warning("Eviction callback failed for %s", key[:8], exc_info=True)

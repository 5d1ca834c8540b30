import time
from collections import OrderedDict
from typing import Any, Callable, Optional


class TTLCache:
    """
    Bounded in-process cache where every entry expires `ttl_seconds` after it
    was written. When the cache is full the oldest write is evicted first.
    """

    def __init__(self, ttl_seconds: float, max_entries: int = 256, clock: Callable[[], float] = time.time):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        # key -> (written_at, value)
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default

        written_at, value = entry
        if self._clock() - written_at > self.ttl_seconds:
            del self._entries[key]
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = (self._clock(), value)

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def touch(self, key: str) -> bool:
        """Restart the TTL of a live entry."""
        value = self.get(key, _MISSING)
        if value is _MISSING:
            return False
        self.set(key, value)
        return True

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        return self._purge_before(self._clock() - self.ttl_seconds)

    def purge_older_than(self, minutes: float) -> int:
        return self._purge_before(self._clock() - minutes * 60)

    def _purge_before(self, cutoff: float) -> int:
        stale = [k for k, (written_at, _) in self._entries.items() if written_at < cutoff]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def keys(self):
        self.purge_expired()
        return list(self._entries.keys())

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)


_MISSING = object()


def cache_key(*parts: Optional[Any]) -> str:
    return ":".join("" if p is None else str(p) for p in parts)

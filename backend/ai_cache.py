import time
from typing import Any, Callable, Dict, Optional, Tuple

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_ENTRIES = 100


class ResponseCache:
    """
    In-process time-to-live map for assistant responses.
    Entries are stored as (data, timestamp); once the map grows past
    max_entries the single entry with the oldest timestamp is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        data, stored_at = entry
        if self._clock() - stored_at < self.ttl_seconds:
            return data
        del self._entries[key]
        return None

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = (data, self._clock())
        if len(self._entries) > self.max_entries:
            oldest_key = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest_key]

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


def make_cache_key(feature: str, subject_id: str, day: Optional[str] = None) -> str:
    """Build a cache key from feature name + subject id (+ date for daily-scoped entries)"""
    if day:
        return f"{feature}:{subject_id}:{day}"
    return f"{feature}:{subject_id}"

import threading
import time


class TTLCache:
    """Small per-instance TTL cache with oldest-expiry eviction."""

    def __init__(self, max_entries=512, clock=None):
        self.max_entries = max_entries
        self._clock = clock or time.time
        self._entries = {}
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                self._stats["misses"] += 1
                return None
            expires_at, value = entry
            if expires_at < self._clock():
                self._entries.pop(key, None)
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return value

    def set(self, key, value, ttl=120):
        if ttl <= 0:
            return
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest_key = min(self._entries.items(), key=lambda item: item[1][0])[0]
                self._entries.pop(oldest_key, None)
                self._stats["evictions"] += 1
            self._entries[key] = (self._clock() + ttl, value)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    def stats(self):
        with self._lock:
            return dict(self._stats)

    def __len__(self):
        return len(self._entries)

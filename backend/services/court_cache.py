import threading
import time


class CourtCache:
    """Short-lived read cache for serialized court details.

    Writes always go to the database; mutating code calls ``invalidate``.
    A TTL of zero disables caching.
    """

    def __init__(self, ttl_seconds=60.0, clock=time.monotonic):
        self.ttl_seconds = float(ttl_seconds or 0)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries = {}

    def get(self, court_id):
        if self.ttl_seconds <= 0:
            return None
        with self._lock:
            entry = self._entries.get(court_id)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[court_id]
                return None
            return value

    def set(self, court_id, value):
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            now = self._clock()
            expired = [
                key for key, (stored_at, _) in self._entries.items()
                if now - stored_at >= self.ttl_seconds
            ]
            for key in expired:
                del self._entries[key]
            self._entries[court_id] = (now, value)

    def size(self):
        with self._lock:
            return len(self._entries)

    def invalidate(self, court_id):
        with self._lock:
            self._entries.pop(court_id, None)

    def clear(self):
        with self._lock:
            self._entries.clear()


def invalidate_court(court_id):
    from flask import current_app
    cache = current_app.extensions.get('court_cache')
    if cache is not None:
        cache.invalidate(court_id)

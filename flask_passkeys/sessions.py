"""
Flask-Passkeys Session State Store
==================================
Holds in-flight ceremony state between the begin and finish requests.

- Single-use: take() retrieves and removes in one step.
- Short-lived: entries expire after ttl_seconds.
- Thread-safe: one instance is shared by every request handler.
"""

import threading
from datetime import datetime, timedelta, timezone


class SessionStateStore:
    """In-memory map from correlation key to opaque ceremony state."""

    def __init__(self, ttl_seconds=300):
        self.ttl_seconds = int(ttl_seconds)
        self.sessions = {}
        self._lock = threading.Lock()

    def put(self, key, state):
        """Store state under key, replacing any earlier entry for that key."""
        now = datetime.now(timezone.utc)
        entry = {
            'state': state,
            'created_at': now,
            'expires_at': now + timedelta(seconds=self.ttl_seconds),
        }
        with self._lock:
            self._evict_expired(now)
            self.sessions[key] = entry

    def take(self, key):
        """Retrieve and remove the state for key.

        Returns None when the key is unknown, already taken or expired. Of
        several concurrent calls for the same key, at most one gets the state.
        """
        with self._lock:
            entry = self.sessions.pop(key, None)

        if entry is None:
            return None
        if entry['expires_at'] <= datetime.now(timezone.utc):
            return None
        return entry['state']

    def cleanup_expired(self):
        """Remove expired entries and return how many were dropped."""
        with self._lock:
            return self._evict_expired(datetime.now(timezone.utc))

    def _evict_expired(self, now):
        # Caller holds the lock
        expired = [k for k, v in self.sessions.items() if v['expires_at'] <= now]
        for k in expired:
            del self.sessions[k]
        return len(expired)

    def __contains__(self, key):
        with self._lock:
            entry = self.sessions.get(key)
        return entry is not None and entry['expires_at'] > datetime.now(timezone.utc)

    def __len__(self):
        with self._lock:
            return len(self.sessions)

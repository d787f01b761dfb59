"""
cache/store.py -- In-process cache of revoked access-token hashes.

Fronts the token_blacklist table so the per-request revocation check does
not hit the database for tokens already known to be revoked. Only positive
entries ("this hash is revoked") are cached. A miss always falls through to
the store, so a token revoked by another process is never reported as valid
from stale cache state.

Entries carry the token's own expiry and are dropped once it passes; after
that the JWT exp check rejects the token anyway. When full, the oldest entry
is evicted first.

Usage:
    cache = RevocationCache(max_entries=10000)
    cache.add(token_hash, expires_at_iso)
    cache.contains(token_hash, now_iso)   # True, or False meaning "ask the store"
    cache.purge_expired(now_iso)
"""

from __future__ import annotations

import threading
from collections import OrderedDict

_DEFAULT_MAX_ENTRIES = 10000


class RevocationCache:
    def __init__(self, max_entries: int = _DEFAULT_MAX_ENTRIES) -> None:
        self.max_entries = max(1, max_entries)
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add(self, token_hash: str, expires_at: str) -> None:
        """Record token_hash as revoked until expires_at (ISO string)."""
        with self._lock:
            self._entries[token_hash] = expires_at
            self._entries.move_to_end(token_hash)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def contains(self, token_hash: str, now: str) -> bool:
        """Return True if token_hash is cached as revoked and not yet expired."""
        with self._lock:
            expires_at = self._entries.get(token_hash)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._entries[token_hash]
                return False
            return True

    def purge_expired(self, now: str) -> int:
        """Drop every entry whose expiry has passed. Returns number removed."""
        with self._lock:
            expired = [h for h, exp in self._entries.items() if exp <= now]
            for token_hash in expired:
                del self._entries[token_hash]
        return len(expired)

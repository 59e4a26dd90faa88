"""
Session Cache - Decrypted keyrings held in memory, keyed by address.

A cache hit satisfies a load without a password. By default entries never
expire; ttl_seconds and max_entries bound how long and how many keyrings
stay unlocked. Losing the cache never loses data: every entry can be
rebuilt from its backup file and password.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from .keyring import Keyring

logger = logging.getLogger(__name__)


@dataclass
class SessionEntry:
    """A decrypted wallet session."""
    address: str
    keyring: Keyring
    wallet_number: Optional[int]
    created_at: float
    last_accessed: float


class SessionCache:
    """
    Lock-guarded address -> SessionEntry map.

    Usage:
        cache = SessionCache(ttl_seconds=900)
        cache.put(keyring.address, keyring, 1)
        entry = cache.get(keyring.address)
        cache.invalidate(keyring.address)
    """

    def __init__(self, ttl_seconds: Optional[float] = None,
                 max_entries: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            ttl_seconds: Idle time after which an entry expires (None = never)
            max_entries: Evict least recently used entries beyond this (None = unbounded)
            clock: Time source, injectable for tests
        """
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, SessionEntry] = OrderedDict()
        self._lock = threading.RLock()

    def put(self, address: str, keyring: Keyring, wallet_number: Optional[int] = None) -> SessionEntry:
        """Store a session, replacing any prior entry for the address."""
        if keyring.address != address:
            raise ValueError(f"Keyring address {keyring.address} does not match {address}")
        now = self._clock()
        entry = SessionEntry(
            address=address,
            keyring=keyring,
            wallet_number=wallet_number,
            created_at=now,
            last_accessed=now,
        )
        with self._lock:
            self._entries[address] = entry
            self._entries.move_to_end(address)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug(f"Evicted cached wallet {evicted}")
        logger.debug(f"Cached wallet session for {address}")
        return entry

    def get(self, address: str) -> Optional[SessionEntry]:
        """Look up a session. Expired entries are dropped and reported as misses."""
        with self._lock:
            entry = self._entries.get(address)
            if entry is None:
                return None
            now = self._clock()
            if self.ttl_seconds is not None and now - entry.last_accessed > self.ttl_seconds:
                del self._entries[address]
                logger.info(f"Cached wallet session for {address} expired")
                return None
            entry.last_accessed = now
            self._entries.move_to_end(address)
            return entry

    def invalidate(self, address: str) -> bool:
        """Remove a session. Returns True if one was present."""
        with self._lock:
            removed = self._entries.pop(address, None) is not None
        if removed:
            logger.debug(f"Cleared cached wallet session for {address}")
        return removed

    def clear(self) -> None:
        """Remove all sessions."""
        with self._lock:
            self._entries.clear()

    def addresses(self) -> list[str]:
        """Cached addresses, least recently used first."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, address: str) -> bool:
        return self.get(address) is not None

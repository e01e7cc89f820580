"""Process-wide registry of revoked bearer tokens.

Each revoked token is remembered until its own expiry. Once a token has
expired it is rejected by signature validation anyway, so forgetting it is
safe; forgetting it any earlier would silently un-revoke it.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from app.core.config import settings
from app.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class TokenRevocationRegistry:
    """Thread-safe, TTL-indexed set of revoked tokens."""

    def __init__(self, high_water_mark: int = 1000, default_ttl: Optional[timedelta] = None):
        self.high_water_mark = high_water_mark
        self.default_ttl = default_ttl or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRES_MINUTES)
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, token: str, expires_at: Optional[datetime] = None) -> None:
        """Remember `token` until `expires_at` (or the default TTL when unknown)."""
        now = utcnow()
        expiry = ensure_utc(expires_at) or now + self.default_ttl
        with self._lock:
            current = self._entries.get(token)
            if current is None or current < expiry:
                self._entries[token] = expiry
            if len(self._entries) > self.high_water_mark:
                self._purge_expired_locked(now)
                if len(self._entries) > self.high_water_mark:
                    logger.warning(
                        "Revocation registry above high-water mark with only live entries: %d > %d",
                        len(self._entries),
                        self.high_water_mark,
                    )

    def is_revoked(self, token: str) -> bool:
        now = utcnow()
        with self._lock:
            expiry = self._entries.get(token)
            if expiry is None:
                return False
            if expiry <= now:
                del self._entries[token]
                return False
            return True

    def purge_expired(self) -> int:
        """Drop entries whose token has expired. Returns how many were dropped."""
        with self._lock:
            return self._purge_expired_locked(utcnow())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_expired_locked(self, now: datetime) -> int:
        expired = [token for token, expiry in self._entries.items() if expiry <= now]
        for token in expired:
            del self._entries[token]
        if expired:
            logger.info("Purged %d expired revocation entries", len(expired))
        return len(expired)


revocation_registry = TokenRevocationRegistry(high_water_mark=settings.REVOCATION_HIGH_WATER_MARK)

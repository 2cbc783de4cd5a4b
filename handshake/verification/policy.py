"""
Expiry and rate-limit policy.

Expiry is a timestamp comparison made when a code is presented; nothing
sweeps expired codes. The boundary favours expiry: a code presented at
exactly its expires_at instant is already dead.
"""

from datetime import datetime
from typing import Optional

import structlog

from handshake.config import HandshakeSettings
from handshake.services.storage import RecordStoreInterface

logger = structlog.get_logger(__name__)


def is_expired(expires_at: datetime, now: datetime) -> bool:
    return now >= expires_at


class RateLimiter:
    """
    Caps verification attempts per client address.

    The cap is global across codes, so walking the code space from one
    address stops after a handful of tries. Only admitted attempts are
    recorded; a blocked caller does not push its own window forward.
    """

    def __init__(self, store: RecordStoreInterface, settings: HandshakeSettings):
        self._store = store
        self._settings = settings

    async def allow(self, client_address: Optional[str], now: datetime) -> bool:
        if client_address is None:
            return True
        allowed = await self._store.register_attempt(
            key=f"verify:{client_address}",
            now=now,
            window_start=now - self._settings.rate_limit_window,
            limit=self._settings.max_attempts_per_window,
        )
        if not allowed:
            logger.warning("verification_rate_limited", client_address=client_address)
        return allowed

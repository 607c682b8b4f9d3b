"""
Admin access: server-issued tokens for session control and bulk resets.

A caller proves knowledge of the configured admin key once and receives an
opaque token; commands then present the token. Client-supplied role flags are
never consulted.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from threading import RLock

from market_core.errors import Unauthorized

logger = logging.getLogger("market.access")


class AdminAuthority:
    """Issue and check admin tokens. Tokens live in memory for the process lifetime."""

    def __init__(self, admin_key: str) -> None:
        self._admin_key = admin_key
        self._tokens: set[str] = set()
        self._lock = RLock()

    @property
    def enabled(self) -> bool:
        return bool(self._admin_key)

    def issue(self, admin_key: str) -> str:
        if not self.enabled or not hmac.compare_digest(admin_key.encode(), self._admin_key.encode()):
            logger.warning("Admin token request rejected")
            raise Unauthorized("Invalid admin key")
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._tokens.add(token)
        return token

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.discard(token)

    def require(self, token: str | None) -> None:
        if not token:
            raise Unauthorized("Admin token required")
        with self._lock:
            known = list(self._tokens)
        if not any(hmac.compare_digest(token, t) for t in known):
            raise Unauthorized("Invalid or revoked admin token")

"""
Insurer dashboard access gate.

Exchanges the shared access code for a short-lived session token. This is a
placeholder gate for a demo deployment, not an authentication system.
"""

import hmac
import logging
import secrets
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..models.claim import utcnow
from ..utils.errors import AccessDeniedError

logger = logging.getLogger(__name__)


class AccessGate:
    """Issues and verifies dashboard session tokens."""

    def __init__(self, access_code: str, token_ttl_minutes: int = 480):
        self._access_code = access_code or ""
        self.ttl = timedelta(minutes=token_ttl_minutes)
        self._tokens: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self._access_code)

    def login(self, access_code: str, now: Optional[datetime] = None) -> str:
        """
        Exchange the access code for a token.

        Raises:
            AccessDeniedError: If no code is configured or the code is wrong
        """
        if not self.enabled:
            raise AccessDeniedError.denied("Dashboard access code is not configured")
        if not hmac.compare_digest((access_code or "").encode("utf-8"), self._access_code.encode("utf-8")):
            logger.warning("Rejected dashboard login with an incorrect access code")
            raise AccessDeniedError.denied("Incorrect access code")

        token = secrets.token_urlsafe(32)
        now = now or utcnow()
        with self._lock:
            self._cleanup_expired(now)
            self._tokens[token] = now + self.ttl
        logger.info("Issued dashboard session token")
        return token

    def _cleanup_expired(self, now: datetime) -> None:
        expired = [t for t, expires_at in self._tokens.items() if expires_at <= now]
        for token in expired:
            del self._tokens[token]
        if expired:
            logger.debug(f"Dropped {len(expired)} expired dashboard tokens")

    def verify(self, token: Optional[str], now: Optional[datetime] = None) -> None:
        """
        Raises:
            AccessDeniedError: If the token is unknown or expired
        """
        if not token:
            raise AccessDeniedError.denied("Missing dashboard token")
        now = now or utcnow()
        with self._lock:
            expires_at = self._tokens.get(token)
            if expires_at is not None and expires_at <= now:
                del self._tokens[token]
                expires_at = None
        if expires_at is None:
            raise AccessDeniedError.denied("Dashboard token is invalid or has expired")

    def logout(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

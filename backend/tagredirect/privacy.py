import hashlib
import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Only ever used outside production
DEV_FALLBACK_SECRET = "dev-insecure-salt"
PLACEHOLDER_IP = "0.0.0.0"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PrivacyHasher:
    """One-way hashing of client IPs for analytics.

    The salt is ``secret:YYYY-MM-DD`` for the current UTC date, so two hashes of
    the same address can only be linked within one calendar day, and only by
    someone holding the secret.
    """

    def __init__(self, secret: Optional[str], production: bool = False,
                 clock: Callable[[], datetime] = utc_now):
        if not secret:
            if production:
                raise ConfigurationError("A hashing secret is required in production.")
            logger.warning("No hashing secret configured; using the development fallback salt.")
            secret = DEV_FALLBACK_SECRET
        self._secret = secret
        self._clock = clock

    def today(self) -> date:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def salt_for(self, day: date) -> str:
        return f"{self._secret}:{day.isoformat()}"

    def hash(self, ip: Optional[str]) -> str:
        ip = (ip or "").strip() or PLACEHOLDER_IP
        data = f"{ip}|{self.salt_for(self.today())}".encode("utf-8")
        return hashlib.sha256(data).hexdigest()

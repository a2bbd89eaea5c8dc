import os
import logging
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

from .errors import ConfigurationError

# Load .env file
load_dotenv()

logger = logging.getLogger(__name__)

PRODUCTION_ENVS = {"production", "prod"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Pages:
    """Static informational destinations the resolver can degrade to."""
    suspended: str = "/suspended"
    safety: str = "/safety"
    invalid_target: str = "/invalid-target"
    registration: str = "/registration"


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    internal_secret: str = ""
    hash_secret: str = ""
    internal_api_url: str = "http://127.0.0.1:8000"
    redis_url: Optional[str] = None
    tag_cache_ttl_seconds: int = 60
    lookup_timeout_seconds: float = 0.75
    event_timeout_seconds: float = 2.0
    event_queue_size: int = 1000
    event_workers: int = 4
    pages: Pages = field(default_factory=Pages)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in PRODUCTION_ENVS

    @classmethod
    def from_env(cls) -> "Settings":
        environment = (os.getenv("APP_ENV") or os.getenv("VERCEL_ENV") or "development").strip()
        internal_secret = (os.getenv("INTERNAL_SECRET") or "").strip()
        pages = Pages(
            suspended=os.getenv("SUSPENDED_PATH", Pages.suspended),
            safety=os.getenv("SAFETY_PATH", Pages.safety),
            invalid_target=os.getenv("INVALID_TARGET_PATH", Pages.invalid_target),
            registration=os.getenv("REGISTRATION_PATH", Pages.registration),
        )
        settings = cls(
            environment=environment,
            internal_secret=internal_secret,
            hash_secret=(os.getenv("HASH_SECRET") or internal_secret).strip(),
            internal_api_url=os.getenv("INTERNAL_API_URL", "http://127.0.0.1:8000").rstrip("/"),
            redis_url=os.getenv("REDIS_URL") or None,
            tag_cache_ttl_seconds=_env_int("TAG_CACHE_TTL_SECONDS", 60),
            lookup_timeout_seconds=_env_float("LOOKUP_TIMEOUT_SECONDS", 0.75),
            event_timeout_seconds=_env_float("EVENT_TIMEOUT_SECONDS", 2.0),
            event_queue_size=_env_int("EVENT_QUEUE_SIZE", 1000),
            event_workers=_env_int("EVENT_WORKERS", 4),
            pages=pages,
        )
        settings.validate()
        return settings

    def validate(self):
        """Fail fast on settings that would make production unsafe."""
        if self.is_production:
            if not self.internal_secret:
                raise ConfigurationError("INTERNAL_SECRET is missing in production.")
            if not self.hash_secret:
                raise ConfigurationError("HASH_SECRET is missing in production.")
            if not self.redis_url:
                raise ConfigurationError("REDIS_URL is missing in production.")
        elif not self.internal_secret:
            logger.warning("INTERNAL_SECRET is not set; internal endpoints will reject every request.")
        if self.event_workers < 1 or self.event_queue_size < 1:
            raise ConfigurationError("EVENT_WORKERS and EVENT_QUEUE_SIZE must be positive.")

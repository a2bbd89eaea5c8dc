from fastapi import HTTPException


class ConfigurationError(RuntimeError):
    """Required configuration is missing in a context where no fallback is allowed."""


class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "forbidden"):
        super().__init__(status_code=403, detail=detail)


class InvalidRedirectTarget(ValueError):
    """A stored target URL failed redirect sanitization."""


class UpstreamUnavailable(Exception):
    """The lookup or event service timed out, errored or answered unexpectedly."""


class CacheUnavailable(Exception):
    """The key-value cache store could not be reached."""

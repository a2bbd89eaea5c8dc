import hmac
from fastapi import Request

from .errors import AuthorizationError

SECRET_HEADER = "x-internal-secret"


def require_internal_secret(request: Request, expected: str):
    """Reject the request unless it carries the exact shared internal secret.

    An empty configured secret rejects everything rather than matching an
    empty header.
    """
    provided = request.headers.get(SECRET_HEADER)
    if not expected or provided is None:
        raise AuthorizationError()
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise AuthorizationError()

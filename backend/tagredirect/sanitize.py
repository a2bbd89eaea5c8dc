import re
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidRedirectTarget

ALLOWED_SCHEMES = {"http", "https"}

# Whitespace and control characters are never valid in a redirect target
_UNSAFE_CHARS = re.compile(r"[\s\x00-\x1f\x7f]")


def sanitize(raw_url: str) -> str:
    """Return a normalized http(s) URL or raise InvalidRedirectTarget.

    Scheme and host are lower-cased; path, query and fragment are kept as-is.
    """
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise InvalidRedirectTarget("Empty redirect target")

    url = raw_url.strip()
    if _UNSAFE_CHARS.search(url):
        raise InvalidRedirectTarget("Redirect target contains whitespace or control characters")

    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        port = parts.port
    except ValueError as e:
        raise InvalidRedirectTarget(f"Redirect target does not parse: {e}")

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidRedirectTarget(f"URL scheme '{parts.scheme}' is not allowed. Use http or https.")
    if not hostname:
        raise InvalidRedirectTarget("Redirect target has no host")

    host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = host if port is None else f"{host}:{port}"
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0]
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))

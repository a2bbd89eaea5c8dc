import re
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urlsplit

from fastapi import Request

BOT_RE = re.compile(r"bot|crawler|spider", re.IGNORECASE)
# an android UA only counts as mobile when "tablet" does not follow it
MOBILE_RE = re.compile(r"mobile|iphone|android(?!.*tablet)", re.IGNORECASE)
TABLET_RE = re.compile(r"ipad|tablet", re.IGNORECASE)

UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")
COUNTRY_HEADERS = ("x-vercel-ip-country", "cf-ipcountry")
UNKNOWN_COUNTRY = "-"


def classify_device(user_agent: Optional[str]) -> str:
    """Coarse device category. Precedence is bot, mobile, tablet, desktop."""
    ua = user_agent or ""
    if BOT_RE.search(ua):
        return "bot"
    if MOBILE_RE.search(ua):
        return "mobile"
    if TABLET_RE.search(ua):
        return "tablet"
    return "desktop"


def host_only(referrer: Optional[str]) -> str:
    """Host of an absolute referrer URL, or "" for anything else."""
    if not referrer:
        return ""
    try:
        parts = urlsplit(referrer.strip())
        if not parts.scheme or not parts.netloc:
            return ""
        host = parts.hostname or ""
        port = parts.port
    except ValueError:
        return ""
    if not host:
        return ""
    if ":" in host:
        host = f"[{host}]"
    return f"{host}:{port}" if port else host


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else None


def country_from_headers(request: Request) -> str:
    for header in COUNTRY_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()[:8]
    return UNKNOWN_COUNTRY


def extract_utm(request: Request) -> Dict[str, str]:
    utm = {}
    for param in UTM_PARAMS:
        value = request.query_params.get(param)
        if value:
            utm[param] = value
    return utm


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request an analytics event is built from."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    country: str = UNKNOWN_COUNTRY
    utm: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            referrer=request.headers.get("referer"),
            country=country_from_headers(request),
            utm=extract_utm(request),
        )

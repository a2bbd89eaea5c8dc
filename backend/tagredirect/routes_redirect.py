import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.responses import RedirectResponse

from .classify import RequestContext
from .errors import UpstreamUnavailable
from .schemas import EventType
from .services import Services, get_services

router = APIRouter(tags=["redirect"])
logger = logging.getLogger(__name__)

TAG_COOKIE = "lc_tid"
TAG_COOKIE_MAX_AGE = 30 * 60


async def _redirect_for_token(token: str, request: Request, services: Services):
    state = None
    try:
        state = await services.tag_cache.get(token)
        destination = await services.resolver.resolve(state, token)
    except UpstreamUnavailable as e:
        logger.warning("Tag lookup unavailable, sending scan to registration: %s", e)
        destination = services.resolver.registration(token)
    except Exception:
        # a scan must always land somewhere
        logger.exception("Unexpected error resolving a tag scan")
        destination = services.resolver.registration(token)

    resp = RedirectResponse(url=destination.location, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    if state is not None:
        resp.set_cookie(TAG_COOKIE, state.id, max_age=TAG_COOKIE_MAX_AGE, path="/",
                        samesite="lax", secure=True)
        services.recorder.record(state.id, EventType.scan, RequestContext.from_request(request))
    return resp


@router.get("/l/{token}")
async def scan_tag(token: str, request: Request, services: Services = Depends(get_services)):
    """Resolve a scanned tag token and redirect; the scan event is recorded in the background."""
    return await _redirect_for_token(token, request, services)


@router.get("/l")
async def scan_tag_query(request: Request, token: Optional[str] = None,
                         services: Services = Depends(get_services)):
    if not token or not token.strip():
        return JSONResponse({"error": "missing_token"}, status_code=400)
    return await _redirect_for_token(token.strip(), request, services)

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from . import store
from .auth import require_internal_secret
from .db import get_db
from .errors import CacheUnavailable
from .schemas import AnalyticsEvent, Granularity, HandleOut, RollupOut, RollupRequest
from .services import Services, get_services

router = APIRouter(prefix="/api/internal", tags=["internal"])
logger = logging.getLogger(__name__)


def internal_only(request: Request, services: Services = Depends(get_services)):
    require_internal_secret(request, services.settings.internal_secret)


@router.post("/purge-cache", dependencies=[Depends(internal_only)])
async def purge_cache(token: Optional[str] = None, services: Services = Depends(get_services)):
    """Drop the cached state for a token. Idempotent: purging an absent key still succeeds."""
    if token:
        try:
            await services.tag_cache.invalidate(token)
        except CacheUnavailable as e:
            logger.error("Cache purge failed for a token: %s", e)
            return JSONResponse({"error": "cache_unavailable"}, status_code=503)
    return {"ok": True}


@router.get("/tag-lookup", dependencies=[Depends(internal_only)])
def tag_lookup(token: Optional[str] = None, db: Session = Depends(get_db)):
    if not token or not token.strip():
        return JSONResponse({"error": "missing_token"}, status_code=400)
    state = store.lookup_tag_state(db, token)
    if state is None:
        return JSONResponse({"error": "not_found"}, status_code=404)
    return state.model_dump(mode="json")


@router.get("/handle-for", response_model=HandleOut, dependencies=[Depends(internal_only)])
def handle_for(uid: Optional[str] = None, db: Session = Depends(get_db)):
    if not uid:
        return JSONResponse({"error": "missing_uid"}, status_code=400)
    return HandleOut(handle=store.handle_for(db, uid))


@router.post("/log-event", dependencies=[Depends(internal_only)])
async def log_event(request: Request, db: Session = Depends(get_db)):
    try:
        body = await request.json()
    except ValueError:
        body = None
    try:
        event = AnalyticsEvent.model_validate(body)
    except ValidationError:
        return JSONResponse({"error": "bad_input"}, status_code=400)
    if not store.tag_exists(db, event.tag_id):
        return JSONResponse({"error": "unknown_tag"}, status_code=400)
    store.insert_event(db, event)
    return {"ok": True}


@router.get("/analytics/rollup", response_model=RollupOut, dependencies=[Depends(internal_only)])
def analytics_rollup(
    owner_id: str,
    start: datetime,
    end: datetime,
    granularity: Granularity = Query(Granularity.day),
    db: Session = Depends(get_db),
):
    """Per-bucket event counts for an account's tags, for dashboards and exports."""
    try:
        req = RollupRequest(owner_id=owner_id, start=start, end=end, granularity=granularity)
    except ValidationError as e:
        logger.info("Rejected rollup request: %s", e)
        return JSONResponse({"error": "bad_input"}, status_code=400)
    return store.rollup(db, req)

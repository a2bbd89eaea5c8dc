from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from .classify import RequestContext
from .routes_redirect import TAG_COOKIE
from .schemas import InteractionEventIn
from .services import Services, get_services

router = APIRouter(prefix="/api/events", tags=["events"])


@router.post("", status_code=202)
async def report_interaction(data: InteractionEventIn, request: Request,
                             services: Services = Depends(get_services)):
    """Record a visitor interaction (vCard download, lead, contact click) for a tag.

    The tag comes from the body or from the cookie set when the tag was scanned.
    Always answers 202 once the input is valid; delivery is best-effort.
    """
    tag_id = (data.tag_id or request.cookies.get(TAG_COOKIE) or "").strip()
    if not tag_id:
        return JSONResponse({"error": "missing_tag"}, status_code=400)
    services.recorder.record(tag_id, data.event_type, RequestContext.from_request(request),
                             metadata=data.metadata)
    return {"accepted": True}

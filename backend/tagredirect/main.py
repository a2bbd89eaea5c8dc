import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import Settings
from .db import ensure_tables
from .errors import AuthorizationError
from .routes_events import router as events_router
from .routes_internal import router as internal_router
from .routes_redirect import router as redirect_router
from .services import Services, build_services

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application.

    Pass ``services`` to run against injected collaborators (tests); otherwise
    everything is built from the environment at startup, failing fast on
    missing production secrets.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = services
        if svc is None:
            svc = build_services(settings or Settings.from_env())
        try:
            ensure_tables()
        except Exception:
            logger.exception("Database initialization failed")
            raise
        app.state.services = svc
        svc.recorder.start()
        logger.info("Tag redirect service started (env=%s, cache=%s)",
                    svc.settings.environment, svc.cache_store.name)
        yield
        await svc.aclose()

    app = FastAPI(title="Tag Redirect API", lifespan=lifespan)

    @app.exception_handler(AuthorizationError)
    async def authorization_error(request: Request, exc: AuthorizationError):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    app.include_router(redirect_router)
    app.include_router(events_router)
    app.include_router(internal_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint for debugging."""
        svc: Services = request.app.state.services
        return {
            "status": "ok",
            "environment": svc.settings.environment,
            "cache": svc.cache_store.name,
            "events": {
                "running": svc.recorder.running,
                "pending": svc.recorder.pending(),
                "sent": svc.recorder.sent,
                "failed": svc.recorder.failed,
                "dropped": svc.recorder.dropped,
            },
        }

    return app


app = create_app()

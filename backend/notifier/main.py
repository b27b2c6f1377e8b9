import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from notifier.api.v1.notifications import router as notifications_router
from notifier.core.config import get_settings
from notifier.services.recurring_jobs import start_notification_pipeline_worker

settings = get_settings()
_notification_pipeline_task = None

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storefront Notifications API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


@app.on_event("startup")
async def _startup_jobs():
    global _notification_pipeline_task
    if (
        _notification_pipeline_task is None
        and settings.enable_recurring_jobs
        and settings.enable_notification_pipeline
    ):
        _notification_pipeline_task = start_notification_pipeline_worker()


@app.on_event("shutdown")
async def _shutdown_jobs():
    global _notification_pipeline_task
    if _notification_pipeline_task is not None:
        _notification_pipeline_task.cancel()
        _notification_pipeline_task = None


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Scheduler-Token"],
    )

app.include_router(notifications_router, prefix="/api/v1", tags=["notifications"])


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health():
    return {"status": "ok"}

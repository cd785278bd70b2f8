"""Health Diary - voice diary entries transcribed and analyzed in the background."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from health_diary.config import get_settings
from health_diary.database import SessionLocal
from health_diary.rate_limit import limiter
from health_diary.routers import entries_router, scheduler_router, users_router
from health_diary.services.pipeline import build_pipeline

# Logging
logger = logging.getLogger("health_diary")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline once per process and run the scheduler for the app's lifetime."""
    settings = get_settings()
    for warning in settings.validate():
        logger.warning("Config: %s", warning)

    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = build_pipeline(settings, SessionLocal)
    pipeline = app.state.pipeline

    if settings.SCHEDULER_ENABLED:
        pipeline.scheduler.start(settings.SCHEDULER_INTERVAL_SECONDS)
    try:
        yield
    finally:
        # Outstanding jobs stay in 'processing' and are polled again after restart.
        pipeline.scheduler.stop(wait_seconds=settings.PROVIDER_TIMEOUT_SECONDS)
        shutdown = getattr(pipeline.transcription.provider, "shutdown", None)
        if shutdown is not None:
            shutdown()


app = FastAPI(title="Health Diary", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter


# --- Request size limit middleware ---
class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        max_body_size = (get_settings().MAX_UPLOAD_SIZE_MB + 1) * 1024 * 1024  # slightly above max upload
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > max_body_size:
            return JSONResponse(status_code=413, content={"detail": "Request body too large"})
        return await call_next(request)


# --- Audit logging middleware ---
class AuditLogMiddleware(BaseHTTPMiddleware):
    AUDIT_PATHS = ("/api/v1/entries", "/api/v1/scheduler/run", "/api/v1/users/me/preferences")

    async def dispatch(self, request: Request, call_next) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        if request.method in ("POST", "PUT", "DELETE") and request.url.path.startswith(self.AUDIT_PATHS):
            logger.info(
                "AUDIT %s %s -> %d (%.0fms) from %s",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                request.client.host if request.client else "unknown",
            )

        return response


app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(AuditLogMiddleware)

app.include_router(entries_router)
app.include_router(users_router)
app.include_router(scheduler_router)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Handle rate limit exceeded."""
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded. Try again later."})


@app.get("/api/health")
def health_check(request: Request) -> dict:
    """Health check endpoint."""
    pipeline = getattr(request.app.state, "pipeline", None)
    return {
        "status": "ok",
        "app": "health-diary",
        "version": "0.1.0",
        "scheduler_running": bool(pipeline and pipeline.scheduler.is_running),
    }

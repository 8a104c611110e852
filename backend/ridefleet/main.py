from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.middleware.trustedhost import TrustedHostMiddleware

from ridefleet.api.errors import install_error_handlers
from ridefleet.api.router import router
from ridefleet.core.config import Settings, settings
from ridefleet.core.logging import get_logger
from ridefleet.services.socket_sessions import SocketSessionTracker
from ridefleet.services.tokens import TokenService

log = get_logger(__name__)


def build_socket_tracker(cfg: Settings) -> SocketSessionTracker:
    return SocketSessionTracker(
        decode_token=TokenService(cfg).decode_access_token,
        expiry_warning_seconds=cfg.WS_EXPIRY_WARNING_SECONDS,
        sweep_interval_seconds=cfg.WS_SWEEP_INTERVAL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    tracker = build_socket_tracker(settings)
    app.state.socket_tracker = tracker
    await tracker.start()
    log.info("app_started", env=settings.ENV)
    try:
        yield
    finally:
        await tracker.stop()


app = FastAPI(
    title="Ridefleet Auth",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_hosts = [h.strip() for h in settings.ALLOWED_HOSTS.split(",") if h.strip()]
if not allowed_hosts:
    allowed_hosts = ["*"]
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response: Response = await call_next(request)
    if settings.SECURITY_HEADERS_ENABLED:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if settings.ENV != "dev":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


install_error_handlers(app)
app.include_router(router)


@app.get("/health")
def health():
    return {"ok": True}

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ridefleet.core.errors import AuthError, ErrorKind, Unauthorized
from ridefleet.core.logging import get_logger

log = get_logger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.UPSTREAM: 401,
}


def error_body(message: str) -> dict:
    return {"success": False, "message": message, "data": None}


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 400)
    if isinstance(exc, Unauthorized):
        log.info("request_unauthorized", path=request.url.path, reason=exc.reason)
    else:
        log.info("request_rejected", path=request.url.path, kind=exc.kind.value)
    return JSONResponse(status_code=status, content=error_body(exc.message))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content=error_body(message))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

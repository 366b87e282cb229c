from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from edumessaging.configuration.config import Config
from edumessaging.configuration.monitor import log_exception
from edumessaging.schemas.sch_envelope import fail
from edumessaging.validators.val_errors import MessageValidationError


def _envelope_response(status_code: int, message: str, error=None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(fail(message, error)),
        headers=headers
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    error = None
    if isinstance(exc, MessageValidationError):
        error = {"fields": exc.fields}
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if not isinstance(exc.detail, str):
        error = exc.detail
    return _envelope_response(exc.status_code, message, error, getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and query strings are 400s listing every offending field."""
    fields = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append({
            "field": ".".join(location) or "body",
            "error": err.get("msg", "is invalid")
        })
    return _envelope_response(400, "Missing or invalid required fields", {"fields": fields})


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_exception(exc, {"path": request.url.path, "method": request.method})
    error = {"type": type(exc).__name__, "detail": str(exc)} if Config.DEBUG else None
    return _envelope_response(500, "Internal server error", error)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

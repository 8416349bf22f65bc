import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.results import Outcome, CONFLICT, NOT_FOUND, RATE_LIMITED

log = logging.getLogger(__name__)

STATUS_BY_REASON = {NOT_FOUND: 404, CONFLICT: 409, RATE_LIMITED: 429}


def envelope(request: Optional[Request], payload: Any = None, status_code: int = 200,
             extra: Optional[dict] = None) -> JSONResponse:
    """
    Wrap a payload as ``{success, timestamp, execution_time, data|error}``.

    For errors ``payload`` is the message string; ``extra`` carries additional
    top-level keys such as the ``fields`` map of a validation failure.
    """
    started = getattr(request.state, "started_at", None) if request is not None else None
    elapsed = time.perf_counter() - started if started else 0.0

    body = {
        "success": status_code < 400,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "execution_time": round(elapsed, 4),
    }
    body["data" if status_code < 400 else "error"] = payload
    if extra:
        body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def raise_for_outcome(outcome: Outcome):
    """Translate a failed business outcome into the matching HTTP error."""
    if not outcome.success:
        raise HTTPException(status_code=STATUS_BY_REASON.get(outcome.reason, 400), detail=outcome.message)


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "request"


# ------------- exception handlers -------------
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if exc.status_code == 404 and detail == "Not Found":
        detail = "Endpoint not found"
    elif exc.status_code == 405:
        detail = "Method not allowed"
    response = envelope(request, detail, exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = {}
    for err in exc.errors():
        msg = err.get("msg", "invalid value")
        # pydantic prefixes messages raised by our own validators
        fields.setdefault(_field_name(err.get("loc", ())), msg.removeprefix("Value error, "))
    log.info("Validation failed on %s %s: %s", request.method, request.url.path, fields)
    return envelope(request, "Validation failed", 400, extra={"fields": fields})


async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return envelope(request, "Internal server error", 500)


def install_exception_handlers(app):
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

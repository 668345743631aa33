"""
Error envelope and FastAPI exception handlers.

    {"success": false, "error": "...", "timestamp": "...", "path": "..."}

plus ``details`` for validation errors, ``retryAfter`` for 429 and ``stack``
for 500 outside production. The auth gate answers with the legacy envelope
(no ``success`` key).
"""

import json
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import Send

from sps.utils.exceptions import APIError, InternalError, TooManyRequests
from sps.utils.logger import get_logger

logger = get_logger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def error_body(message: str, path: str, legacy: bool = False, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {} if legacy else {"success": False}
    body.update(error=message, timestamp=utc_timestamp(), path=path)
    body.update(extra)
    return body


def api_error_body(exc: APIError, path: str) -> Dict[str, Any]:
    return error_body(exc.message, path, **exc.to_payload())


def internal_error_body(path: str, is_production: bool) -> Dict[str, Any]:
    """500 envelope; the traceback is only exposed outside production"""
    error = InternalError("Internal server error")
    extra = {} if is_production else {"stack": traceback.format_exc()}
    return error_body(error.message, path, **extra)


def api_error_headers(exc: APIError) -> Dict[str, str]:
    if isinstance(exc, TooManyRequests):
        return {"Retry-After": str(exc.retry_after)}
    return {}


async def send_json(
    send: Send,
    status_code: int,
    body: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> None:
    """Write a complete JSON response on a raw ASGI channel"""
    payload = json.dumps(body).encode("utf-8")
    raw_headers = [
        (b"content-type", b"application/json"),
        (b"content-length", str(len(payload)).encode("latin-1")),
    ]
    for name, value in (headers or {}).items():
        raw_headers.append((name.lower().encode("latin-1"), str(value).encode("latin-1")))
    await send({"type": "http.response.start", "status": status_code, "headers": raw_headers})
    await send({"type": "http.response.body", "body": payload})


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _validation_details(errors: Iterable[Dict[str, Any]]) -> Tuple[str, list]:
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return "Invalid data provided", details


def register_exception_handlers(app: FastAPI, is_production: bool = False) -> None:
    """Translate every error into the envelope, logging it first"""

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        logger.warning(
            "Request failed",
            method=request.method,
            path=request.url.path,
            client=_client(request),
            status=exc.status_code,
            error=exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=api_error_body(exc, request.url.path),
            headers=api_error_headers(exc),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        message, details = _validation_details(exc.errors())
        logger.warning(
            "Request validation failed",
            method=request.method,
            path=request.url.path,
            client=_client(request),
            fields=[d["field"] for d in details],
        )
        return JSONResponse(
            status_code=400,
            content=error_body(message, request.url.path, details=details),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        logger.info(
            "HTTP error",
            method=request.method,
            path=request.url.path,
            client=_client(request),
            status=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(message, request.url.path),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled error",
            method=request.method,
            path=request.url.path,
            client=_client(request),
            error=str(exc),
        )
        return JSONResponse(
            status_code=InternalError.status_code,
            content=internal_error_body(request.url.path, is_production),
        )

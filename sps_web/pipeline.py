"""
Request pipeline as raw ASGI stages (outermost first):

    SecurityHeadersStage -> RequestLogStage -> VersionStage -> AuthStage -> RateLimitStage -> CacheStage -> router

Raw ASGI rather than BaseHTTPMiddleware so headers can be added to any
response, including ones produced by exception handlers, and so rejected
requests never touch the request stream.
"""

import json
import re
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from sps import versioning
from sps.models.audit import AuditAction
from sps.services import pagination
from sps.services.user_service import UserService, item_cache_key
from sps.utils.exceptions import InvalidToken, TooManyRequests, UnsupportedVersion
from sps.utils.logger import get_logger

from .deps import ServiceContainer
from .errors import api_error_body, api_error_headers, error_body, internal_error_body, send_json

logger = get_logger(__name__)

PROTECTED_PREFIXES = (
    "/api/users",
    "/api/audit",
    "/api/auth/logout",
    "/api/auth/stats",
    "/api/auth/cleanup",
)

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
HIDDEN_HEADERS = ("server", "x-powered-by")

USERS_LIST_PATH = "/api/users"
USER_ITEM_PATH = re.compile(r"^/api/users/(\d+)$")


def _state(scope: Scope) -> Dict[str, Any]:
    return scope.setdefault("state", {})


def _headers(scope: Scope) -> Dict[str, str]:
    return {
        k.decode("latin-1").lower(): v.decode("latin-1")
        for k, v in scope.get("headers") or []
    }


def _query(scope: Scope) -> Dict[str, str]:
    return dict(parse_qsl(scope.get("query_string", b"").decode("latin-1")))


def _client_host(scope: Scope) -> str:
    client = scope.get("client")
    return client[0] if client else "unknown"


def is_protected(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in PROTECTED_PREFIXES)


def with_headers(send: Send, headers: Dict[str, str]) -> Send:
    """Wrap ``send`` so the response start message carries ``headers``"""

    async def wrapped(message: Message) -> None:
        if message["type"] == "http.response.start":
            message.setdefault("headers", [])
            mutable = MutableHeaders(scope=message)
            for name, value in headers.items():
                mutable[name] = value
        await send(message)

    return wrapped


class SecurityHeadersStage:
    """Hardening headers on every response; server identification is dropped"""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        async def secured(message: Message) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                headers = MutableHeaders(scope=message)
                for name in HIDDEN_HEADERS:
                    if name in headers:
                        del headers[name]
                for name, value in SECURITY_HEADERS.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, secured)


class RequestLogStage:
    """Logs every request and feeds the request metrics"""

    def __init__(self, app: ASGIApp, container: ServiceContainer):
        self.app = app
        self.container = container

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        status = {"code": 500, "sent": False}

        async def capture(message: Message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
                status["sent"] = True
            await send(message)

        try:
            await self.app(scope, receive, capture)
        except Exception:
            if status["sent"]:
                raise
            logger.exception(
                "Unhandled error",
                method=scope["method"],
                path=scope["path"],
                client=_client_host(scope),
            )
            body = internal_error_body(scope["path"], self.container.settings.app.is_production)
            await send_json(send, 500, body, _state(scope).get("version_headers"))
        finally:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            method, path = scope["method"], scope["path"]
            logger.info(
                "Request completed",
                method=method,
                path=path,
                status=status["code"],
                duration_ms=duration_ms,
                client=_client_host(scope),
            )
            if self.container.settings.metrics.enabled:
                await run_in_threadpool(
                    self.container.metrics.record_request, method, path, status["code"], duration_ms
                )


class VersionStage:
    """Resolves the API version and strips /vN from the path"""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        try:
            match = versioning.resolve(scope["path"], _headers(scope), _query(scope))
        except UnsupportedVersion as exc:
            await send_json(send, exc.status_code, api_error_body(exc, scope["path"]))
            return

        state = _state(scope)
        state["api_version"] = match.version
        state["version_headers"] = match.headers
        if match.from_url:
            scope = dict(scope, path=match.path, raw_path=match.path.encode("utf-8"))
        await self.app(scope, receive, with_headers(send, match.headers))


class AuthStage:
    """Bearer token gate for protected paths; claims go to request.state.user"""

    def __init__(self, app: ASGIApp, container: ServiceContainer):
        self.app = app
        self.container = container

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path = scope.get("path") or ""
        if scope.get("type") != "http" or scope.get("method") == "OPTIONS" or not is_protected(path):
            await self.app(scope, receive, send)
            return

        parts = _headers(scope).get("authorization", "").split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            await send_json(send, 401, error_body("Access token required", path, legacy=True))
            return

        try:
            claims = self.container.tokens.verify_access(parts[1])
        except InvalidToken as exc:
            logger.warning("Token rejected", path=path, client=_client_host(scope), reason=exc.message)
            await send_json(send, 403, error_body("Invalid or expired token", path, legacy=True))
            return

        _state(scope)["user"] = claims
        await self.app(scope, receive, send)


class RateLimitStage:
    """Sliding-window admission per client address on /api routes"""

    def __init__(self, app: ASGIApp, container: ServiceContainer):
        self.app = app
        self.container = container

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        settings = self.container.settings.rate_limit
        path = scope.get("path") or ""
        if scope.get("type") != "http" or not settings.enabled or not path.startswith("/api"):
            await self.app(scope, receive, send)
            return

        client = _client_host(scope)
        result = await run_in_threadpool(
            self.container.backend.sliding_window_admit,
            f"rate_limit:{client}",
            settings.max,
            settings.window_ms,
        )
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(result.reset_seconds),
        }

        if not result.allowed:
            exc = TooManyRequests(
                "Too many requests, please try again later.",
                result.retry_after(self.container.now_ms()),
            )
            user = _state(scope).get("user") or {}
            await run_in_threadpool(
                self.container.audit.log_security_event,
                AuditAction.RATE_LIMIT_EXCEEDED,
                user_id=user.get("id"),
                user_email=user.get("email"),
                user_type=user.get("type"),
                details={"path": path, "count": result.current_count, "limit": result.limit},
                ip_address=client,
            )
            logger.warning("Rate limit exceeded", client=client, path=path, retry_after=exc.retry_after)
            await send_json(send, exc.status_code, api_error_body(exc, path), {**headers, **api_error_headers(exc)})
            return

        await self.app(scope, receive, with_headers(send, headers))


def cache_target(path: str, query: Dict[str, str], settings) -> Optional[Tuple[str, int, bool]]:
    """(key, ttl, is_list) for cacheable user reads, else None"""
    if path == USERS_LIST_PATH:
        key = pagination.list_cache_key(
            query.get("page", 1),
            query.get("limit", pagination.DEFAULT_LIMIT),
            UserService.clean_filters(query),
        )
        return key, settings.user_ttl, True
    match = USER_ITEM_PATH.match(path)
    if match:
        return item_cache_key(int(match.group(1))), settings.user_ttl, False
    return None


class CacheStage:
    """Read-through response cache for user GETs"""

    def __init__(self, app: ASGIApp, container: ServiceContainer):
        self.app = app
        self.container = container

    def _record(self, hit: bool, is_list: bool, started: float) -> None:
        if not self.container.settings.metrics.enabled:
            return
        self.container.metrics.record_cache(hit)
        if is_list:
            self.container.metrics.record_pagination(hit, (time.perf_counter() - started) * 1000)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        settings = self.container.settings.cache
        if scope.get("type") != "http" or scope.get("method") != "GET" or not settings.enabled:
            await self.app(scope, receive, send)
            return

        target = cache_target(scope["path"], _query(scope), settings)
        if target is None:
            await self.app(scope, receive, send)
            return

        key, ttl, is_list = target
        started = time.perf_counter()
        backend = self.container.backend
        generation = self.container.users.generation

        cached = await run_in_threadpool(backend.get, key)
        if cached is not None:
            await run_in_threadpool(self._record, True, is_list, started)
            await send_json(send, 200, cached, {"X-Cache": "HIT", "X-Cache-Key": key, "X-Cache-TTL": str(ttl)})
            return

        status: Dict[str, int] = {}
        chunks = []

        async def capture(message: Message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            elif message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))
            await send(message)

        miss_headers = {"X-Cache": "MISS", "X-Cache-Key": key, "X-Cache-TTL": str(ttl)}
        await self.app(scope, receive, with_headers(capture, miss_headers))
        await run_in_threadpool(self._record, False, is_list, started)

        if status.get("code") != 200:
            return
        if self.container.users.generation != generation:
            # a mutation invalidated this key while the handler ran
            logger.debug("Stale response not cached", key=key)
            return
        try:
            body = json.loads(b"".join(chunks))
        except ValueError:
            logger.debug("Response not cacheable", key=key)
            return
        await run_in_threadpool(backend.set, key, body, ttl)


def install_pipeline(app: FastAPI, container: ServiceContainer) -> None:
    # add_middleware prepends, so stages are added innermost first
    app.add_middleware(CacheStage, container=container)
    app.add_middleware(RateLimitStage, container=container)
    app.add_middleware(AuthStage, container=container)
    app.add_middleware(VersionStage)
    app.add_middleware(RequestLogStage, container=container)
    app.add_middleware(SecurityHeadersStage)

"""
Service wiring and FastAPI dependencies.

One ServiceContainer per app, stored on ``app.state.container``. Pipeline
stages receive it directly; route handlers get it through ``get_container``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Request

from sps import versioning
from sps.auth.service import TokenService
from sps.cache import CacheBackend, create_backend
from sps.services.audit_service import AuditService
from sps.services.metrics_service import MetricsService
from sps.services.user_service import UserService
from sps.stores.credential_store import CredentialStore
from sps.utils.config import Settings
from sps.utils.exceptions import NotFound, Unauthorized


@dataclass
class ServiceContainer:
    settings: Settings
    backend: CacheBackend
    store: CredentialStore
    audit: AuditService
    tokens: TokenService
    users: UserService
    metrics: MetricsService
    clock: Callable[[], float]
    started_at: float

    def now_ms(self) -> int:
        return int(self.clock() * 1000)


def build_container(
    settings: Settings,
    backend: Optional[CacheBackend] = None,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    backend = backend or create_backend(settings.redis)
    security = settings.security
    store = CredentialStore(
        admin_email=security.admin_email,
        admin_password=security.admin_password,
        admin_name=security.admin_name,
        bcrypt_rounds=security.bcrypt_rounds,
    )
    audit = AuditService(backend, clock=clock)
    return ServiceContainer(
        settings=settings,
        backend=backend,
        store=store,
        audit=audit,
        # Wall clock: PyJWT checks exp/iat against the real time
        tokens=TokenService(store, backend, audit, settings.jwt),
        users=UserService(store, backend, audit),
        metrics=MetricsService(backend, retention_days=settings.metrics.retention_days, clock=clock),
        clock=clock,
        started_at=clock(),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def current_user(request: Request) -> Dict[str, Any]:
    """Claims placed on the request by the auth stage"""
    user = getattr(request.state, "user", None)
    if not user:
        raise Unauthorized("Access token required")
    return user


def api_version(request: Request) -> str:
    return getattr(request.state, "api_version", versioning.DEFAULT_VERSION)


def require_feature(feature: str):
    """Route dependency rejecting versions that do not declare ``feature``"""

    def dependency(version: str = Depends(api_version)) -> str:
        versioning.require_feature(version, feature)
        return version

    return dependency


def metrics_enabled(container: ServiceContainer = Depends(get_container)) -> MetricsService:
    if not container.settings.metrics.enabled:
        raise NotFound("Metrics are not enabled")
    return container.metrics

"""Version discovery, health and API index routes"""

from fastapi import APIRouter, Depends

from sps import versioning

from ..deps import ServiceContainer, api_version, get_container
from ..errors import utc_timestamp

router = APIRouter(prefix="/api", tags=["version"])


@router.get("/version")
def get_version_info(
    version: str = Depends(api_version),
    container: ServiceContainer = Depends(get_container),
):
    return {
        "success": True,
        "data": {
            **versioning.get_version_info(version),
            "server": {
                "environment": container.settings.app.environment,
                "timestamp": utc_timestamp(),
            },
        },
    }


@router.get("/version/all")
def get_all_versions(version: str = Depends(api_version)):
    return {
        "success": True,
        "data": {
            "versions": versioning.get_all_versions(),
            "defaultVersion": versioning.DEFAULT_VERSION,
            "currentVersion": version,
        },
    }


@router.get("/version/changelog")
def get_changelog(version: str = Depends(api_version)):
    return {"success": True, "data": {"changelog": versioning.CHANGELOG, "currentVersion": version}}


@router.get("/version/health")
def get_version_health(
    version: str = Depends(api_version),
    container: ServiceContainer = Depends(get_container),
):
    return {
        "success": True,
        "data": {
            "status": "healthy",
            "timestamp": utc_timestamp(),
            "version": version,
            "uptime": round(container.clock() - container.started_at, 3),
            "environment": container.settings.app.environment,
            "backend": {"type": container.backend.name, "reachable": container.backend.ping()},
            "features": list(versioning.VERSION_CONFIG[version].features),
        },
    }


@router.get("/health")
def health_check(version: str = Depends(api_version)):
    return {
        "success": True,
        "message": "API is running",
        "version": version,
        "timestamp": utc_timestamp(),
    }


@router.get("")
@router.get("/")
def api_index(
    version: str = Depends(api_version),
    container: ServiceContainer = Depends(get_container),
):
    return {
        "success": True,
        "message": container.settings.app.name,
        "version": versioning.get_version_info(version),
        "endpoints": {
            "auth": "/api/auth",
            "users": "/api/users",
            "metrics": "/api/metrics",
            "audit": "/api/audit (v2)",
            "version": "/api/version",
            "docs": "/docs",
        },
        "documentation": "/docs",
    }

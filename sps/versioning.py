"""
API version table and resolution.

A request's version comes from the URL (/api/vN/...), then the
X-API-Version / Accept-Version header, then the ``version`` query parameter,
then DEFAULT_VERSION.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .utils.exceptions import FeatureUnavailable, UnsupportedVersion

V1 = "v1"
V2 = "v2"
VERSIONS = (V1, V2)
DEFAULT_VERSION = V1

URL_VERSION = re.compile(r"^/api/(v\d+)(?=/|$)", re.IGNORECASE)


@dataclass(frozen=True)
class VersionConfig:
    features: Tuple[str, ...]
    deprecated: bool = False
    sunset_date: Optional[str] = None


VERSION_CONFIG: Dict[str, VersionConfig] = {
    V1: VersionConfig(features=("basic_auth", "user_management")),
    V2: VersionConfig(
        features=("basic_auth", "user_management", "refresh_tokens", "audit_logs", "advanced_pagination"),
    ),
}

CHANGELOG: Dict[str, Dict[str, Any]] = {
    V1: {
        "version": "1.0.0",
        "releaseDate": "2024-01-01",
        "features": [
            "JWT authentication",
            "User management (CRUD)",
            "Basic metrics",
            "Rate limiting",
            "Response cache",
        ],
        "improvements": [
            "Centralized configuration",
            "Request validation",
            "Consistent error envelope",
        ],
    },
    V2: {
        "version": "2.0.0",
        "releaseDate": "2024-12-01",
        "features": [
            "Refresh tokens",
            "Audit logs",
            "Pagination with filters and links",
            "Per-route response cache",
            "Detailed performance metrics",
            "API versioning",
        ],
        "improvements": [
            "Cache-backed reads",
            "Hardened token handling",
            "Monitoring endpoints",
        ],
        "breakingChanges": [
            "New refresh token endpoints",
            "Version headers on every response",
        ],
    },
}


@dataclass
class VersionMatch:
    version: str
    # Path with the /vN segment removed when the version came from the URL
    path: str
    from_url: bool = False
    headers: Dict[str, str] = field(default_factory=dict)


def resolve(path: str, headers: Mapping[str, str], query: Mapping[str, str]) -> VersionMatch:
    """
    Determine the request's version.

    Raises:
        UnsupportedVersion: the requested version is not in VERSIONS
    """
    from_url = False
    stripped = path
    match = URL_VERSION.match(path)
    if match:
        requested = match.group(1)
        from_url = True
        stripped = "/api" + path[match.end():]
    else:
        requested = (
            headers.get("x-api-version")
            or headers.get("accept-version")
            or query.get("version")
            or DEFAULT_VERSION
        )

    version = requested.strip().lower()
    if version not in VERSION_CONFIG:
        raise UnsupportedVersion(
            "Unsupported API version",
            supportedVersions=list(VERSIONS),
            defaultVersion=DEFAULT_VERSION,
        )
    return VersionMatch(version=version, path=stripped, from_url=from_url, headers=response_headers(version))


def response_headers(version: str) -> Dict[str, str]:
    headers = {"X-API-Version": version, "X-API-Default-Version": DEFAULT_VERSION}
    config = VERSION_CONFIG[version]
    if config.deprecated:
        headers["X-API-Deprecated"] = "true"
        if config.sunset_date:
            headers["X-API-Sunset-Date"] = config.sunset_date
    return headers


def require_feature(version: Optional[str], feature: str) -> None:
    version = version or DEFAULT_VERSION
    features = VERSION_CONFIG[version].features
    if feature not in features:
        raise FeatureUnavailable(
            f"Feature '{feature}' is not available in version {version}",
            availableFeatures=list(features),
            currentVersion=version,
        )


def get_version_info(version: Optional[str] = None) -> Dict[str, Any]:
    version = version or DEFAULT_VERSION
    config = VERSION_CONFIG[version]
    return {
        "version": version,
        "deprecated": config.deprecated,
        "sunsetDate": config.sunset_date,
        "features": list(config.features),
        "isDefault": version == DEFAULT_VERSION,
    }


def get_all_versions() -> List[Dict[str, Any]]:
    return [get_version_info(v) for v in VERSION_CONFIG]

"""Custom exceptions for the SPS user API"""

from typing import Any, Dict, List, Optional


class SPSError(Exception):
    """Base exception for SPS"""
    pass


class ConfigError(SPSError):
    """Configuration error"""
    pass


class UpstreamUnavailable(SPSError):
    """Cache/rate-limit backend failure. Never reaches a caller; backends degrade instead."""
    pass


class APIError(SPSError):
    """Error that maps onto an HTTP status and the error envelope"""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None, **extra: Any):
        if status_code is not None:
            self.status_code = status_code
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        """Fields merged into the error envelope besides error/timestamp/path."""
        return dict(self.extra)


class ValidationError(APIError):
    """Malformed or missing input"""

    status_code = 400

    def __init__(self, message: str = "Invalid data provided", details: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.details = details or []

    def to_payload(self) -> Dict[str, Any]:
        return {"details": self.details} if self.details else {}


class Unauthorized(APIError):
    """Missing or malformed credential"""
    status_code = 401


class InvalidRefreshToken(Unauthorized):
    """Refresh token rejected (bad signature, wrong type, expired or no longer the active one)"""
    pass


class Forbidden(APIError):
    """Credential rejected or operation not allowed"""
    status_code = 403


class InvalidToken(Forbidden):
    """Access token signature or structure is invalid"""
    pass


class ExpiredToken(InvalidToken):
    """Access token has expired"""
    pass


class ForbiddenOperation(Forbidden):
    """Business rule forbids the operation (e.g. deleting the primary admin)"""
    pass


class NotFound(APIError):
    """Resource does not exist"""
    status_code = 404


class Conflict(APIError):
    """Request conflicts with current state"""
    status_code = 400


class DuplicateEmail(Conflict):
    """Email already registered"""

    def __init__(self, message: str = "Email already registered"):
        super().__init__(message)


class UnsupportedVersion(APIError):
    """Requested API version is not supported"""
    status_code = 400


class FeatureUnavailable(APIError):
    """Feature not available in the requested API version"""
    status_code = 400


class TooManyRequests(APIError):
    """Rate limit exceeded"""

    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after

    def to_payload(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}


class InternalError(APIError):
    """Unexpected failure"""
    status_code = 500

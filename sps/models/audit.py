"""Audit log models and constant tables"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditAction(str, Enum):
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    TOKEN_REFRESH = "token_refresh"

    # Users
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_VIEWED = "user_viewed"

    # System
    CONFIG_CHANGED = "config_changed"
    CACHE_CLEARED = "cache_cleared"
    METRICS_EXPORTED = "metrics_exported"

    # Security
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


DAY = 24 * 3600

RETENTION_BY_SEVERITY: Dict[Severity, int] = {
    Severity.LOW: 30 * DAY,
    Severity.MEDIUM: 90 * DAY,
    Severity.HIGH: 365 * DAY,
    Severity.CRITICAL: 5 * 365 * DAY,
}


def retention_ttl(severity: Union[Severity, str]) -> int:
    """Retention in seconds for a severity; unknown values get the medium retention."""
    try:
        return RETENTION_BY_SEVERITY[Severity(severity)]
    except ValueError:
        return RETENTION_BY_SEVERITY[Severity.MEDIUM]


class AuditEntry(BaseModel):
    """Immutable audit record. Serialized with camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    id: str
    timestamp: datetime
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    user_type: Optional[str] = None
    action: str
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    severity: Severity = Severity.MEDIUM
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AuditFilters(BaseModel):
    user_id: Optional[int] = None
    action: Optional[str] = None
    severity: Optional[Severity] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=10000)
    offset: int = Field(default=0, ge=0)


class AuditQueryResult(BaseModel):
    entries: List[AuditEntry]
    total: int
    limit: int
    offset: int

    def to_json(self) -> Dict[str, Any]:
        return {
            "logs": [e.to_json() for e in self.entries],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }

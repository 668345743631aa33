"""
Audit log service.

Entries are stored in the backend under audit:{id} with a TTL derived from
their severity. Two secondary indexes hold entry ids, newest first:
    user_audit:{user_id}
    action_audit:{action}
Each push re-stamps the index TTL with the pushed entry's TTL, so an index
lives as long as its newest member and older ids can outlive their entry.
Readers skip ids whose entry has expired; cleanup() prunes them.
"""

from __future__ import annotations

import csv
import io
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..cache.backend import CacheBackend
from ..models.audit import (
    AuditAction,
    AuditEntry,
    AuditFilters,
    AuditQueryResult,
    Severity,
    retention_ttl,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

ENTRY_PREFIX = "audit:"
SCAN_CAP = 1000

CSV_HEADERS = [
    "ID",
    "Timestamp",
    "User ID",
    "User Email",
    "User Type",
    "Action",
    "Resource",
    "Resource ID",
    "Severity",
    "Success",
    "IP Address",
    "User Agent",
]

STAT_COUNTERS = [
    "audit_login",
    "audit_logout",
    "audit_login_failed",
    "audit_user_created",
    "audit_user_updated",
    "audit_user_deleted",
    "audit_severity_low",
    "audit_severity_medium",
    "audit_severity_high",
    "audit_severity_critical",
]


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _value(v: Union[str, AuditAction, Severity]) -> str:
    return v.value if hasattr(v, "value") else str(v)


class AuditService:
    """Append-only audit recorder with severity-based retention"""

    def __init__(self, backend: CacheBackend, clock: Callable[[], float] = time.time):
        self.backend = backend
        self._clock = clock

    def generate_audit_id(self) -> str:
        """Unique id whose lexical order follows creation time"""
        millis = int(self._clock() * 1000)
        return f"audit_{millis:013d}_{secrets.token_hex(5)}"

    def record(
        self,
        action: Union[AuditAction, str],
        *,
        user_id: Optional[int] = None,
        user_email: Optional[str] = None,
        user_type: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[Union[int, str]] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Union[Severity, str] = Severity.MEDIUM,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            id=self.generate_audit_id(),
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            user_id=user_id,
            user_email=user_email,
            user_type=user_type,
            action=_value(action),
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details or {},
            severity=Severity(_value(severity)),
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            success=success,
            error_message=error_message,
        )

        ttl = retention_ttl(entry.severity)
        self.backend.set(f"{ENTRY_PREFIX}{entry.id}", entry.to_json(), ttl)
        if entry.user_id is not None:
            self.backend.list_push(f"user_audit:{entry.user_id}", entry.id, ttl)
        self.backend.list_push(f"action_audit:{entry.action}", entry.id, ttl)

        self.backend.increment_counter(f"audit_{entry.action}")
        self.backend.increment_counter(f"audit_severity_{entry.severity}")

        logger.debug(
            "Audit entry recorded",
            action=entry.action,
            user=entry.user_email,
            severity=entry.severity,
            success=entry.success,
        )
        return entry

    def _candidate_ids(self, filters: AuditFilters) -> List[str]:
        if filters.user_id is not None:
            return self.backend.list_range(f"user_audit:{filters.user_id}")
        if filters.action:
            return self.backend.list_range(f"action_audit:{filters.action}")
        keys = sorted(self.backend.keys(f"{ENTRY_PREFIX}*"), reverse=True)[:SCAN_CAP]
        return [k[len(ENTRY_PREFIX):] for k in keys]

    @staticmethod
    def _matches(entry: AuditEntry, filters: AuditFilters) -> bool:
        if filters.action and entry.action != filters.action:
            return False
        if filters.severity and entry.severity != _value(filters.severity):
            return False
        if filters.start_date and entry.timestamp < _as_utc(filters.start_date):
            return False
        if filters.end_date and entry.timestamp > _as_utc(filters.end_date):
            return False
        return True

    def query(self, filters: Optional[AuditFilters] = None) -> AuditQueryResult:
        """
        Select ids through one index (user id wins over action), apply the
        remaining filters in-process, newest first, then offset/limit.
        """
        filters = filters or AuditFilters()
        entries: List[AuditEntry] = []
        for audit_id in self._candidate_ids(filters):
            data = self.backend.get(f"{ENTRY_PREFIX}{audit_id}")
            if data is None:
                continue
            entry = AuditEntry.model_validate(data)
            if self._matches(entry, filters):
                entries.append(entry)

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        page = entries[filters.offset:filters.offset + filters.limit]
        return AuditQueryResult(
            entries=page,
            total=len(entries),
            limit=filters.limit,
            offset=filters.offset,
        )

    def stats(self) -> Dict[str, Any]:
        """Aggregates from today's pre-computed counters"""
        counters = self.backend.get_counters(STAT_COUNTERS)
        by_severity = {
            "low": counters["audit_severity_low"],
            "medium": counters["audit_severity_medium"],
            "high": counters["audit_severity_high"],
            "critical": counters["audit_severity_critical"],
        }
        return {
            "totalLogs": sum(by_severity.values()),
            "byAction": {
                "logins": counters["audit_login"],
                "logouts": counters["audit_logout"],
                "failedLogins": counters["audit_login_failed"],
                "userCreations": counters["audit_user_created"],
                "userUpdates": counters["audit_user_updated"],
                "userDeletions": counters["audit_user_deleted"],
            },
            "bySeverity": by_severity,
        }

    def cleanup(self) -> Dict[str, int]:
        """Drop index ids whose entry has already expired"""
        pruned = 0
        index_keys = self.backend.keys("user_audit:*") + self.backend.keys("action_audit:*")
        for key in index_keys:
            for audit_id in self.backend.list_range(key):
                if self.backend.get(f"{ENTRY_PREFIX}{audit_id}") is None:
                    pruned += self.backend.list_remove(key, audit_id)
        self.backend.increment_counter("audit_cleanup_runs")
        logger.info("Audit cleanup finished", indexes=len(index_keys), pruned=pruned)
        return {"indexesScanned": len(index_keys), "prunedEntries": pruned}

    @staticmethod
    def export_csv(entries: Iterable[AuditEntry]) -> str:
        buffer = io.StringIO()
        buffer.write(",".join(CSV_HEADERS) + "\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for e in entries:
            writer.writerow([
                e.id,
                e.timestamp.isoformat().replace("+00:00", "Z"),
                e.user_id if e.user_id is not None else "",
                e.user_email or "",
                e.user_type or "",
                e.action,
                e.resource or "",
                e.resource_id or "",
                e.severity,
                "true" if e.success else "false",
                e.ip_address or "",
                e.user_agent or "",
            ])
        return buffer.getvalue().rstrip("\n")

    # Convenience recorders

    def log_login(
        self,
        user_id: Optional[int],
        user_email: Optional[str],
        user_type: Optional[str],
        success: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> AuditEntry:
        return self.record(
            AuditAction.LOGIN if success else AuditAction.LOGIN_FAILED,
            user_id=user_id,
            user_email=user_email,
            user_type=user_type,
            resource="auth",
            severity=Severity.LOW if success else Severity.MEDIUM,
            success=success,
            ip_address=ip_address,
            user_agent=user_agent,
            error_message=error_message,
        )

    def log_user_action(
        self,
        actor: Optional[Dict[str, Any]],
        action: Union[AuditAction, str],
        resource: str,
        resource_id: Optional[Union[int, str]],
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> AuditEntry:
        actor = actor or {}
        return self.record(
            action,
            user_id=actor.get("id"),
            user_email=actor.get("email"),
            user_type=actor.get("type"),
            resource=resource,
            resource_id=resource_id,
            details=details,
            severity=Severity.MEDIUM,
            success=True,
            ip_address=ip_address,
        )

    def log_security_event(
        self,
        action: Union[AuditAction, str],
        user_id: Optional[int] = None,
        user_email: Optional[str] = None,
        user_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> AuditEntry:
        return self.record(
            action,
            user_id=user_id,
            user_email=user_email,
            user_type=user_type,
            resource="security",
            severity=Severity.HIGH,
            success=False,
            details=details,
            ip_address=ip_address,
        )

"""Audit log routes. Prefix: /api/audit; only for versions declaring audit_logs."""

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from sps.models.audit import AuditFilters, Severity

from ..deps import ServiceContainer, current_user, get_container, require_feature
from ..errors import utc_timestamp

router = APIRouter(
    prefix="/api/audit",
    tags=["audit"],
    dependencies=[Depends(current_user), Depends(require_feature("audit_logs"))],
)

EXPORT_LIMIT = 10000


@router.get("")
def get_audit_logs(
    userId: Optional[int] = None,
    action: Optional[str] = None,
    severity: Optional[Severity] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=EXPORT_LIMIT),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
):
    filters = AuditFilters(
        user_id=userId,
        action=action,
        severity=severity,
        start_date=startDate,
        end_date=endDate,
        limit=limit,
        offset=offset,
    )
    return {"success": True, "data": container.audit.query(filters).to_json()}


@router.get("/stats")
def get_audit_stats(container: ServiceContainer = Depends(get_container)):
    return {"success": True, "data": container.audit.stats()}


@router.get("/export")
def export_audit_logs(
    format: Literal["json", "csv"] = "json",
    userId: Optional[int] = None,
    action: Optional[str] = None,
    severity: Optional[Severity] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    container: ServiceContainer = Depends(get_container),
):
    result = container.audit.query(
        AuditFilters(
            user_id=userId,
            action=action,
            severity=severity,
            start_date=startDate,
            end_date=endDate,
            limit=EXPORT_LIMIT,
        )
    )

    if format == "csv":
        return Response(
            content=container.audit.export_csv(result.entries),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=audit_logs.csv"},
        )

    return {
        "success": True,
        "data": result.to_json(),
        "exportInfo": {"format": "json", "timestamp": utc_timestamp(), "totalRecords": result.total},
    }


@router.post("/cleanup")
def cleanup_audit_logs(container: ServiceContainer = Depends(get_container)):
    return {"success": True, "message": "Audit cleanup finished", "data": container.audit.cleanup()}


@router.get("/user/{userId}")
def get_user_audit_logs(
    userId: int,
    limit: int = Query(50, ge=1, le=EXPORT_LIMIT),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
):
    result = container.audit.query(AuditFilters(user_id=userId, limit=limit, offset=offset))
    return {"success": True, "data": result.to_json()}


@router.get("/action/{action}")
def get_action_audit_logs(
    action: str,
    limit: int = Query(100, ge=1, le=EXPORT_LIMIT),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
):
    result = container.audit.query(AuditFilters(action=action, limit=limit, offset=offset))
    return {"success": True, "data": result.to_json()}

import csv
import io
from datetime import datetime, timedelta, timezone

import pytest

from sps.models.audit import DAY, AuditAction, AuditFilters, Severity
from sps.services.audit_service import CSV_HEADERS, AuditService


@pytest.fixture
def audit(backend, clock):
    return AuditService(backend, clock=clock)


def test_ids_follow_creation_order(audit, clock):
    first = audit.record(AuditAction.LOGIN, user_id=1)
    clock.advance(0.005)
    second = audit.record(AuditAction.LOGIN, user_id=1)
    assert first.id.startswith("audit_")
    assert len(first.id.split("_")[1]) == 13
    assert first.id < second.id


def test_critical_entries_outlive_low_retention(audit, backend, clock):
    low = audit.record(AuditAction.LOGIN, user_id=5, severity=Severity.LOW)
    critical = audit.record(AuditAction.SUSPICIOUS_ACTIVITY, user_id=5, severity=Severity.CRITICAL)

    clock.advance(31 * DAY)

    assert backend.get(f"audit:{low.id}") is None
    assert backend.get(f"audit:{critical.id}") is not None
    ids = [e.id for e in audit.query(AuditFilters(user_id=5)).entries]
    assert ids == [critical.id]


def test_query_prefers_user_index_and_filters_in_process(audit):
    audit.record(AuditAction.LOGIN, user_id=1, severity=Severity.LOW)
    audit.record(AuditAction.LOGOUT, user_id=1, severity=Severity.LOW)
    audit.record(AuditAction.LOGIN, user_id=2, severity=Severity.LOW)

    result = audit.query(AuditFilters(user_id=1, action="login"))
    assert result.total == 1
    assert result.entries[0].user_id == 1
    assert result.entries[0].action == "login"


def test_query_total_counts_filtered_set_before_paging(audit, clock):
    for _ in range(5):
        audit.record(AuditAction.USER_VIEWED, severity=Severity.LOW)
        clock.advance(1)
    audit.record(AuditAction.USER_VIEWED, severity=Severity.HIGH)

    result = audit.query(AuditFilters(action="user_viewed", severity=Severity.LOW, limit=2, offset=1))
    assert result.total == 5
    assert len(result.entries) == 2
    assert result.entries[0].timestamp > result.entries[1].timestamp


def test_query_date_range_treats_naive_dates_as_utc(audit, clock):
    entry = audit.record(AuditAction.LOGIN, user_id=3)
    naive = entry.timestamp.replace(tzinfo=None)
    assert audit.query(AuditFilters(start_date=naive - timedelta(seconds=1))).total == 1
    assert audit.query(AuditFilters(end_date=naive - timedelta(seconds=1))).total == 0
    assert audit.query(AuditFilters(start_date=datetime.now(timezone.utc) + timedelta(days=1))).total == 0


def test_stats_come_from_daily_counters(audit):
    audit.log_login(1, "a@example.com", "admin", success=True)
    audit.log_login(None, "b@example.com", None, success=False)
    audit.log_security_event(AuditAction.UNAUTHORIZED_ACCESS, ip_address="10.0.0.1")

    stats = audit.stats()
    assert stats["byAction"]["logins"] == 1
    assert stats["byAction"]["failedLogins"] == 1
    assert stats["bySeverity"] == {"low": 1, "medium": 1, "high": 1, "critical": 0}
    assert stats["totalLogs"] == 3


def test_cleanup_prunes_expired_index_members(audit, backend, clock):
    audit.record(AuditAction.LOGIN, user_id=9, severity=Severity.LOW)
    audit.record(AuditAction.LOGIN, user_id=9, severity=Severity.HIGH)
    clock.advance(31 * DAY)

    result = audit.cleanup()
    # one stale id in each of user_audit:9 and action_audit:login
    assert result["prunedEntries"] == 2
    assert len(backend.list_range("user_audit:9")) == 1


def test_export_csv_quotes_every_field(audit):
    entry = audit.log_login(1, "a@example.com", "admin", success=True, ip_address="127.0.0.1", user_agent='curl "x"')
    text = audit.export_csv([entry])
    lines = text.split("\n")
    assert lines[0] == ",".join(CSV_HEADERS)
    assert lines[1].startswith(f'"{entry.id}",')

    row = next(csv.reader(io.StringIO(lines[1])))
    assert row[2] == "1"
    assert row[5] == "login"
    assert row[9] == "true"
    assert row[11] == 'curl "x"'


# HTTP surface


def test_audit_routes_require_v2(client, auth_headers):
    res = client.get("/api/audit", headers=auth_headers)
    assert res.status_code == 400
    body = res.json()
    assert "audit_logs" not in body["availableFeatures"]
    assert body["currentVersion"] == "v1"


def test_audit_routes_available_on_v2(client, v2_headers):
    res = client.get("/api/audit", headers=v2_headers)
    assert res.status_code == 200
    logs = res.json()["data"]["logs"]
    assert logs[0]["action"] == "login"
    assert logs[0]["userEmail"] == "admin@spsgroup.com.br"

    assert client.get("/api/v2/audit/stats", headers=v2_headers).status_code == 200
    assert client.get("/api/audit/user/1", headers=v2_headers).json()["data"]["total"] == 1
    assert client.get("/api/audit/action/login", headers=v2_headers).json()["data"]["total"] == 1


def test_audit_export_csv_over_http(client, v2_headers):
    res = client.get("/api/audit/export?format=csv", headers=v2_headers)
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    assert "attachment" in res.headers["content-disposition"]
    assert res.text.split("\n")[0] == ",".join(CSV_HEADERS)


def test_audit_export_json_over_http(client, v2_headers):
    res = client.get("/api/audit/export", headers=v2_headers)
    body = res.json()
    assert body["exportInfo"]["format"] == "json"
    assert body["exportInfo"]["totalRecords"] == body["data"]["total"]


def test_audit_cleanup_over_http(client, v2_headers):
    res = client.post("/api/audit/cleanup", headers=v2_headers)
    assert res.status_code == 200
    assert res.json()["data"]["prunedEntries"] == 0

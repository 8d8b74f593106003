from __future__ import annotations

import json
import logging
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import Principals, bearer, ctx_for, make_lead
from crmguard.context import reset_correlation_id, set_correlation_id
from crmguard.crm.repositories import LeadRepository
from crmguard.logging import CorrelationIdFilter, JsonLogFormatter
from crmguard.middleware.correlation_id import MAX_CORRELATION_ID_LENGTH, accept_correlation_id
from crmguard.platform.security.errors import PermissionDenied


def _record(**extra: object) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "crmguard.security", "levelname": "INFO", "msg": "authz.denied"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_keeps_known_fields_only() -> None:
    record = _record(resource="lead", operation="delete", principal="u-1", password="hunter2")
    record.correlation_id = "corr-1"

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["logger"] == "crmguard.security"
    assert payload["msg"] == "authz.denied"
    assert payload["correlation_id"] == "corr-1"
    assert payload["fields"] == {"resource": "lead", "operation": "delete", "principal": "u-1"}


def test_json_formatter_truncates_long_errors() -> None:
    payload = json.loads(JsonLogFormatter().format(_record(error="e" * 900)))

    assert len(payload["fields"]["error"]) == 500


def test_json_formatter_names_the_service() -> None:
    payload = json.loads(JsonLogFormatter(service="CRM Guard").format(_record(error_code="not_found")))

    assert payload["service"] == "CRM Guard"
    assert payload["fields"] == {"error_code": "not_found"}


def test_correlation_filter_reads_the_context_variable() -> None:
    record = _record()
    token = set_correlation_id("corr-ctx")
    try:
        CorrelationIdFilter().filter(record)
    finally:
        reset_correlation_id(token)

    assert record.correlation_id == "corr-ctx"


def test_denied_write_is_logged(db_session: Session, principals: Principals, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="crmguard.security")
    lead = make_lead(db_session, principals.user)

    with pytest.raises(PermissionDenied):
        LeadRepository(db_session).delete(ctx_for(principals.manager), lead.id)

    records = [record for record in caplog.records if record.getMessage() == "authz.denied"]
    assert records
    assert getattr(records[0], "resource", None) == "lead"
    assert getattr(records[0], "operation", None) == "delete"
    assert getattr(records[0], "principal", None) == str(principals.manager)


def test_request_log_carries_correlation_id(
    client: TestClient,
    principals: Principals,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/users/{principals.user}/roles", headers={**bearer(principals.user), "X-Correlation-Id": "abc-123"})
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "crmguard.request" and record.getMessage() == "http.request"]
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "path", None) == "/api/users/{id}/roles"
        and getattr(record, "status_code", None) == 200
        and getattr(record, "principal", None) == str(principals.user)
        and getattr(record, "error_code", None) is None
        and record.levelno == logging.INFO
        for record in records
    )


def test_refused_request_is_logged_as_warning(
    client: TestClient,
    principals: Principals,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(f"/api/users/{principals.user}/roles", json={"role": "admin"}, headers=bearer(principals.user))
    assert response.status_code == 403

    records = [record for record in caplog.records if record.name == "crmguard.request" and record.getMessage() == "http.request"]
    assert len(records) == 1
    assert records[0].levelno == logging.WARNING
    assert getattr(records[0], "principal", None) == str(principals.user)
    assert getattr(records[0], "error_code", None) == "permission_denied"
    assert getattr(records[0], "status_code", None) == 403


def test_accept_correlation_id() -> None:
    assert accept_correlation_id("req-42.a:b_c") == "req-42.a:b_c"
    assert accept_correlation_id("c" * MAX_CORRELATION_ID_LENGTH) == "c" * MAX_CORRELATION_ID_LENGTH
    assert accept_correlation_id("c" * (MAX_CORRELATION_ID_LENGTH + 1)) is None
    assert accept_correlation_id("two words") is None
    assert accept_correlation_id("-leading-dash") is None
    assert accept_correlation_id("") is None
    assert accept_correlation_id(None) is None


@pytest.mark.parametrize("supplied", ["x" * 129, "<script>", "has space"])
def test_unusable_correlation_id_is_replaced(client: TestClient, principals: Principals, supplied: str) -> None:
    response = client.get(f"/api/users/{principals.user}/roles", headers={**bearer(principals.user), "X-Correlation-Id": supplied})

    returned = response.headers["x-correlation-id"]
    assert returned != supplied
    assert str(uuid.UUID(returned)) == returned

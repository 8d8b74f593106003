from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import Principals, bearer, ctx_for, make_deal, make_lead
from crmguard.core.config import get_settings
from crmguard.crm.models import DealStage, LeadStatus
from crmguard.crm.repositories import DealRepository, LeadRepository
from crmguard.provenance import record_audit, record_automation


def _seed_audit(db_session: Session, principals: Principals) -> None:
    record_audit(db_session, ctx_for(principals.admin), "create", "lead", entity_id=uuid.uuid4())
    record_audit(db_session, ctx_for(principals.manager), "update", "deal", entity_id=uuid.uuid4())
    record_audit(db_session, ctx_for(principals.user), "update", "lead", entity_id=uuid.uuid4())
    db_session.commit()


def test_audit_log_visibility_by_role(client: TestClient, db_session: Session, principals: Principals) -> None:
    _seed_audit(db_session, principals)

    as_admin = client.get("/api/audit-logs", headers=bearer(principals.admin))
    as_manager = client.get("/api/audit-logs", headers=bearer(principals.manager))
    as_user = client.get("/api/audit-logs", headers=bearer(principals.user))

    assert len(as_admin.json()) == 3
    assert [row["user_id"] for row in as_manager.json()] == [str(principals.manager)]
    assert as_user.json() == []


def test_audit_log_filters(client: TestClient, db_session: Session, principals: Principals) -> None:
    _seed_audit(db_session, principals)

    leads = client.get("/api/audit-logs", params={"entity_type": "lead"}, headers=bearer(principals.admin))
    page = client.get("/api/audit-logs", params={"limit": 1, "offset": 1}, headers=bearer(principals.admin))

    assert {row["entity_type"] for row in leads.json()} == {"lead"}
    assert len(leads.json()) == 2
    assert len(page.json()) == 1


def test_automation_logs_are_admin_only(client: TestClient, db_session: Session, principals: Principals) -> None:
    record_automation(db_session, "lead_follow_up", "lead", "lead.created", "created task")
    record_automation(db_session, "sync", "deal", "deal.updated", "pushed", status="failed", error="timeout")
    db_session.commit()

    as_admin = client.get("/api/automation-logs", params={"status": "failed"}, headers=bearer(principals.admin))
    as_manager = client.get("/api/automation-logs", headers=bearer(principals.manager))

    assert [row["automation_type"] for row in as_admin.json()] == ["sync"]
    assert as_admin.json()[0]["error_message"] == "timeout"
    assert as_manager.json() == []


def test_lead_status_history_is_hidden_with_the_lead(
    client: TestClient,
    db_session: Session,
    principals: Principals,
) -> None:
    lead = make_lead(db_session, principals.user)
    LeadRepository(db_session).update(ctx_for(principals.user), lead.id, {"status": LeadStatus.INTERESTED})
    db_session.commit()

    owner_view = client.get(f"/api/leads/{lead.id}/status-history", headers=bearer(principals.user))
    outsider_view = client.get(
        f"/api/leads/{lead.id}/status-history",
        headers={**bearer(principals.other), "X-Correlation-Id": "corr-404"},
    )

    assert owner_view.status_code == 200
    assert owner_view.json()[0]["old_status"] == "new"
    assert owner_view.json()[0]["new_status"] == "interested"
    assert outsider_view.status_code == 404
    assert outsider_view.json()["code"] == "not_found"
    assert outsider_view.json()["correlation_id"] == "corr-404"
    assert outsider_view.headers["x-correlation-id"] == "corr-404"


def test_deal_stage_history_lists_transitions(client: TestClient, db_session: Session, principals: Principals) -> None:
    deal = make_deal(db_session, principals.user)
    repository = DealRepository(db_session)
    repository.update(ctx_for(principals.user), deal.id, {"stage": DealStage.PROPOSAL})
    repository.update(ctx_for(principals.user), deal.id, {"stage": DealStage.CLOSED_WON}, note="Signed")
    db_session.commit()

    response = client.get(f"/api/deals/{deal.id}/stage-history", headers=bearer(principals.manager))

    assert response.status_code == 200
    transitions = {(row["old_stage"], row["new_stage"]) for row in response.json()}
    assert transitions == {("inquiry", "proposal"), ("proposal", "closed_won")}


def test_metrics_endpoint_is_admin_only(client: TestClient, principals: Principals) -> None:
    as_admin = client.get("/metrics", headers=bearer(principals.admin))
    as_manager = client.get("/metrics", headers=bearer(principals.manager))
    anonymous = client.get("/metrics")

    assert as_admin.status_code == 200
    assert "authz_denied_total" in as_admin.text
    assert as_manager.status_code == 403
    assert anonymous.status_code == 403


def test_metrics_endpoint_can_be_disabled(
    client: TestClient,
    principals: Principals,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics", headers=bearer(principals.admin))

    assert response.status_code == 404

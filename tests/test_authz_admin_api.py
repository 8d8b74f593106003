from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import Principals, add_member, bearer, make_team
from crmguard.authz.models import TeamMember, UserRole
from crmguard.models.audit import AuditLog
from crmguard.platform.security.privileged import PrivilegedReader


def test_admin_assigns_role_idempotently(client: TestClient, db_session: Session, principals: Principals) -> None:
    target = uuid.uuid4()

    first = client.post(f"/api/users/{target}/roles", json={"role": "manager"}, headers=bearer(principals.admin))
    second = client.post(f"/api/users/{target}/roles", json={"role": "manager"}, headers=bearer(principals.admin))

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["id"] == second.json()["id"]
    assert first.json()["assigned_by"] == str(principals.admin)
    rows = db_session.scalars(select(UserRole).where(UserRole.user_id == target)).all()
    assert len(rows) == 1
    audits = db_session.scalars(select(AuditLog).where(AuditLog.entity_type == "user_role")).all()
    assert len(audits) == 1
    assert audits[0].action == "create"


def test_non_admin_cannot_assign_roles(client: TestClient, principals: Principals) -> None:
    response = client.post(
        f"/api/users/{principals.user}/roles",
        json={"role": "admin"},
        headers={**bearer(principals.user), "X-Correlation-Id": "corr-deny"},
    )

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "permission_denied"
    assert body["details"] == {"resource": "user_role", "operation": "insert"}
    assert body["correlation_id"] == "corr-deny"


def test_anonymous_and_forged_tokens_are_denied(client: TestClient, principals: Principals) -> None:
    anonymous = client.post(f"/api/users/{principals.user}/roles", json={"role": "manager"})
    forged = client.post(
        f"/api/users/{principals.user}/roles",
        json={"role": "manager"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert anonymous.status_code == 403
    assert forged.status_code == 403


def test_role_listing_follows_row_policy(client: TestClient, principals: Principals) -> None:
    own = client.get(f"/api/users/{principals.user}/roles", headers=bearer(principals.user))
    foreign = client.get(f"/api/users/{principals.manager}/roles", headers=bearer(principals.user))
    as_admin = client.get(f"/api/users/{principals.manager}/roles", headers=bearer(principals.admin))

    assert [row["role"] for row in own.json()] == ["user"]
    assert foreign.json() == []
    assert [row["role"] for row in as_admin.json()] == ["manager"]


def test_revoked_role_takes_effect_immediately(client: TestClient, principals: Principals) -> None:
    before = client.get(f"/api/users/{principals.manager}/effective-role", headers=bearer(principals.admin))
    revoked = client.delete(f"/api/users/{principals.manager}/roles/manager", headers=bearer(principals.admin))
    after = client.get(f"/api/users/{principals.manager}/effective-role", headers=bearer(principals.admin))
    missing = client.delete(f"/api/users/{principals.manager}/roles/manager", headers=bearer(principals.admin))

    assert before.json()["role"] == "manager"
    assert revoked.status_code == 204
    assert after.json() == {
        "user_id": str(principals.manager),
        "role": "user",
        "is_admin": False,
        "is_manager_or_above": False,
    }
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"


def test_effective_role_is_private_to_self_and_managers(client: TestClient, principals: Principals) -> None:
    self_view = client.get(f"/api/users/{principals.user}/effective-role", headers=bearer(principals.user))
    manager_view = client.get(f"/api/users/{principals.user}/effective-role", headers=bearer(principals.manager))
    peer_view = client.get(f"/api/users/{principals.user}/effective-role", headers=bearer(principals.other))

    assert self_view.status_code == 200
    assert self_view.json()["role"] == "user"
    assert manager_view.status_code == 200
    assert peer_view.status_code == 403


def test_team_lifecycle(client: TestClient, principals: Principals) -> None:
    owner = bearer(principals.manager)

    created = client.post("/api/teams", json={"name": "  Weddings ", "description": "Venue sales"}, headers=owner)
    assert created.status_code == 201
    team = created.json()
    assert team["name"] == "Weddings"
    assert team["owner_id"] == str(principals.manager)

    added = client.post(f"/api/teams/{team['id']}/members", json={"user_id": str(principals.user)}, headers=owner)
    assert added.status_code == 201
    member = added.json()
    assert member["role"] == "member"

    duplicate = client.post(f"/api/teams/{team['id']}/members", json={"user_id": str(principals.user)}, headers=owner)
    assert duplicate.status_code == 409

    by_member = client.post(
        f"/api/teams/{team['id']}/members",
        json={"user_id": str(principals.other)},
        headers=bearer(principals.user),
    )
    assert by_member.status_code == 403

    mine = client.get("/api/teams/mine", headers=bearer(principals.user))
    assert mine.json() == [{"team_id": team["id"], "team_name": "Weddings", "role": "member"}]

    promoted = client.patch(
        f"/api/teams/{team['id']}/members/{member['id']}",
        json={"role": "manager"},
        headers=owner,
    )
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "manager"

    members = client.get(f"/api/teams/{team['id']}/members", headers=owner)
    assert {row["user_id"] for row in members.json()} == {str(principals.manager), str(principals.user)}

    removed = client.delete(f"/api/teams/{team['id']}/members/{member['id']}", headers=owner)
    assert removed.status_code == 204
    assert client.get("/api/teams/mine", headers=bearer(principals.user)).json() == []


def test_plain_user_cannot_create_team(client: TestClient, principals: Principals) -> None:
    response = client.post("/api/teams", json={"name": "Side project"}, headers=bearer(principals.user))

    assert response.status_code == 403
    assert client.get("/api/teams", headers=bearer(principals.admin)).json() == []


def test_hidden_team_is_not_found_for_outsiders(client: TestClient, principals: Principals) -> None:
    team = client.post("/api/teams", json={"name": "Corporate"}, headers=bearer(principals.manager)).json()

    response = client.post(
        f"/api/teams/{team['id']}/members",
        json={"user_id": str(principals.other)},
        headers=bearer(principals.user),
    )

    assert response.status_code == 404


def test_me_reports_effective_role(client: TestClient, principals: Principals) -> None:
    signed_in = client.get("/me", headers=bearer(principals.admin))
    anonymous = client.get("/me")

    assert signed_in.json() == {"user_id": str(principals.admin), "role": "admin"}
    assert anonymous.json() == {"user_id": None, "role": None}


def test_concurrent_duplicate_member_is_a_conflict(
    client: TestClient,
    db_session: Session,
    principals: Principals,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    team = make_team(db_session, principals.manager)
    add_member(db_session, team, principals.user)
    # Another request inserted the membership after this one checked for it.
    monkeypatch.setattr(PrivilegedReader, "team_role_of", lambda self, user_id, team_id: None)

    response = client.post(
        f"/api/teams/{team.id}/members",
        json={"user_id": str(principals.user)},
        headers=bearer(principals.admin),
    )

    assert response.status_code == 409
    count = db_session.scalar(
        select(func.count()).select_from(TeamMember).where(TeamMember.team_id == team.id, TeamMember.user_id == principals.user)
    )
    assert count == 1
    assert db_session.scalars(select(AuditLog).where(AuditLog.entity_type == "team_member")).all() == []

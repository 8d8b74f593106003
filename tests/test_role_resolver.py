from __future__ import annotations

import uuid

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session

from conftest import Principals, grant
from crmguard.authz.models import AppRole, UserRole
from crmguard.platform.security.errors import ResolutionFailure
from crmguard.platform.security.privileged import PrivilegedReader
from crmguard.platform.security.roles import RoleResolver, coerce_principal


def _resolver(session: Session) -> RoleResolver:
    return RoleResolver(PrivilegedReader(session))


def test_unassigned_principal_resolves_to_user(db_session: Session) -> None:
    resolver = _resolver(db_session)
    principal = uuid.uuid4()

    assert resolver.effective_role(principal) == AppRole.USER
    assert resolver.is_admin(principal) is False
    assert resolver.is_manager_or_above(principal) is False


def test_effective_role_applies_precedence(db_session: Session) -> None:
    principal = uuid.uuid4()
    grant(db_session, principal, AppRole.USER)
    grant(db_session, principal, AppRole.MANAGER)
    resolver = _resolver(db_session)
    assert resolver.effective_role(principal) == AppRole.MANAGER

    grant(db_session, principal, AppRole.ADMIN)
    assert resolver.effective_role(principal) == AppRole.ADMIN


def test_hierarchy_predicates(db_session: Session, principals: Principals) -> None:
    resolver = _resolver(db_session)

    assert resolver.is_admin(principals.admin)
    assert resolver.is_manager_or_above(principals.admin)
    assert resolver.is_manager_or_above(principals.manager)
    assert not resolver.is_admin(principals.manager)
    assert not resolver.is_manager_or_above(principals.user)
    assert resolver.has_role(principals.user, "user")
    assert not resolver.has_role(principals.other, AppRole.USER)


def test_accepts_string_identities(db_session: Session, principals: Principals) -> None:
    resolver = _resolver(db_session)

    assert resolver.is_admin(str(principals.admin))


def test_revoked_role_takes_effect_on_next_check(db_session: Session, principals: Principals) -> None:
    resolver = _resolver(db_session)
    assert resolver.is_manager_or_above(principals.manager)

    db_session.execute(delete(UserRole).where(UserRole.user_id == principals.manager))
    db_session.commit()

    assert resolver.is_manager_or_above(principals.manager) is False
    assert resolver.effective_role(principals.manager) == AppRole.USER


def test_resolution_does_not_write(db_session: Session, principals: Principals) -> None:
    resolver = _resolver(db_session)
    resolver.effective_role(principals.admin)
    resolver.is_manager_or_above(principals.user)

    assert not db_session.new
    assert not db_session.dirty


@pytest.mark.parametrize("value", [None, "", "not-a-uuid", "1234"])
def test_unresolvable_identity_raises_resolution_failure(value: str | None) -> None:
    with pytest.raises(ResolutionFailure):
        coerce_principal(value)


def test_resolver_raises_for_malformed_identity(db_session: Session) -> None:
    with pytest.raises(ResolutionFailure):
        _resolver(db_session).is_admin("definitely-not-a-uuid")

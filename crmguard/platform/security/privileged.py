from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from crmguard.authz.models import AppRole, Team, TeamMember, TeamRole, UserRole


class PrivilegedReader:
    """Trusted, read-only access to role, membership and ownership data.

    Nothing here goes through row policy. The role and team resolvers and the
    parent-ownership lookups used by dependent-entity rules read through this
    path, so evaluating one policy never triggers evaluation of another. Every
    query runs inside the caller's session and never flushes pending state.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def roles_of(self, user_id: uuid.UUID) -> set[AppRole]:
        with self._session.no_autoflush:
            rows = self._session.scalars(select(UserRole.role).where(UserRole.user_id == user_id)).all()
        return {AppRole(row) for row in rows}

    def team_role_of(self, user_id: uuid.UUID, team_id: uuid.UUID) -> TeamRole | None:
        with self._session.no_autoflush:
            role = self._session.scalar(
                select(TeamMember.role).where(TeamMember.user_id == user_id, TeamMember.team_id == team_id)
            )
        return TeamRole(role) if role is not None else None

    def memberships_of(self, user_id: uuid.UUID) -> list[tuple[uuid.UUID, str, TeamRole]]:
        with self._session.no_autoflush:
            rows = self._session.execute(
                select(Team.id, Team.name, TeamMember.role)
                .join(TeamMember, TeamMember.team_id == Team.id)
                .where(TeamMember.user_id == user_id)
                .order_by(Team.name.asc())
            ).all()
        return [(row.id, row.name, TeamRole(row.role)) for row in rows]

    def owner_of(self, model: type[Any], row_id: uuid.UUID) -> uuid.UUID | None:
        with self._session.no_autoflush:
            return self._session.scalar(select(model.owner_id).where(model.id == row_id))

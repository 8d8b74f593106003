from __future__ import annotations

import uuid
from dataclasses import dataclass

from crmguard.authz.models import TeamRole
from crmguard.platform.security.privileged import PrivilegedReader
from crmguard.platform.security.roles import coerce_principal


TEAM_MANAGER_ROLES = frozenset({TeamRole.OWNER, TeamRole.MANAGER})


@dataclass(slots=True, frozen=True)
class TeamRoleView:
    team_id: uuid.UUID
    team_name: str
    role: TeamRole


class TeamMembershipResolver:
    """Team membership and team-level authority, independent of the global role hierarchy."""

    def __init__(self, reader: PrivilegedReader) -> None:
        self._reader = reader

    def is_team_member(self, principal: str | uuid.UUID | None, team_id: uuid.UUID | None) -> bool:
        if team_id is None:
            return False
        return self._reader.team_role_of(coerce_principal(principal), team_id) is not None

    def is_team_manager(self, principal: str | uuid.UUID | None, team_id: uuid.UUID | None) -> bool:
        if team_id is None:
            return False
        return self._reader.team_role_of(coerce_principal(principal), team_id) in TEAM_MANAGER_ROLES

    def teams_for(self, principal: str | uuid.UUID | None) -> list[TeamRoleView]:
        return [
            TeamRoleView(team_id=team_id, team_name=team_name, role=role)
            for team_id, team_name, role in self._reader.memberships_of(coerce_principal(principal))
        ]

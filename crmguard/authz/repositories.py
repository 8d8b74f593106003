from __future__ import annotations

from crmguard.authz.models import Team, TeamMember, UserRole
from crmguard.platform.security.guards import OwnershipGuard
from crmguard.platform.security.policies import Resource
from crmguard.platform.security.repository import ProtectedRepository


class UserRoleRepository(ProtectedRepository):
    resource = Resource.USER_ROLE
    model = UserRole


class TeamRepository(ProtectedRepository):
    resource = Resource.TEAM
    model = Team
    guards = (OwnershipGuard("owner_id"),)


class TeamMemberRepository(ProtectedRepository):
    resource = Resource.TEAM_MEMBER
    model = TeamMember
    order_column = "joined_at"

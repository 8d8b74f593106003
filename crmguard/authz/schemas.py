from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from crmguard.authz.models import AppRole, TeamRole


class AssignUserRoleRequest(BaseModel):
    role: AppRole


class UserRoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    role: AppRole
    assigned_by: UUID | None
    created_at: datetime


class EffectiveRoleRead(BaseModel):
    user_id: UUID
    role: AppRole
    is_admin: bool
    is_manager_or_above: bool


class TeamCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None


class TeamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    owner_id: UUID
    created_at: datetime


class TeamMemberCreate(BaseModel):
    user_id: UUID
    role: TeamRole = TeamRole.MEMBER


class TeamMemberUpdate(BaseModel):
    role: TeamRole


class TeamMemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    team_id: UUID
    user_id: UUID
    role: TeamRole
    joined_at: datetime


class TeamMembershipRead(BaseModel):
    team_id: UUID
    team_name: str
    role: TeamRole

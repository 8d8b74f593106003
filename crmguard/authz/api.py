from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from crmguard.authz.models import AppRole
from crmguard.authz.schemas import (
    AssignUserRoleRequest,
    EffectiveRoleRead,
    TeamCreate,
    TeamMemberCreate,
    TeamMemberRead,
    TeamMemberUpdate,
    TeamMembershipRead,
    TeamRead,
    UserRoleRead,
)
from crmguard.authz.service import authorization_admin_service
from crmguard.core.auth import get_current_context
from crmguard.core.database import get_db, transaction
from crmguard.platform.security.context import AuthContext


roles_router = APIRouter(prefix="/api/users", tags=["authz.roles"])
teams_router = APIRouter(prefix="/api/teams", tags=["authz.teams"])


@roles_router.post("/{user_id}/roles", response_model=UserRoleRead, status_code=status.HTTP_201_CREATED)
def assign_role(
    user_id: uuid.UUID,
    dto: AssignUserRoleRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> UserRoleRead:
    with transaction(db):
        return authorization_admin_service.assign_role(db, ctx, user_id, dto.role)


@roles_router.delete("/{user_id}/roles/{role}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_role(
    user_id: uuid.UUID,
    role: AppRole,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> None:
    with transaction(db):
        authorization_admin_service.revoke_role(db, ctx, user_id, role)


@roles_router.get("/{user_id}/roles", response_model=list[UserRoleRead])
def list_user_roles(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[UserRoleRead]:
    return authorization_admin_service.list_user_roles(db, ctx, user_id)


@roles_router.get("/{user_id}/effective-role", response_model=EffectiveRoleRead)
def effective_role(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> EffectiveRoleRead:
    return authorization_admin_service.effective_role(db, ctx, user_id)


@teams_router.post("", response_model=TeamRead, status_code=status.HTTP_201_CREATED)
def create_team(
    dto: TeamCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> TeamRead:
    with transaction(db):
        return authorization_admin_service.create_team(db, ctx, dto)


@teams_router.get("", response_model=list[TeamRead])
def list_teams(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[TeamRead]:
    return authorization_admin_service.list_teams(db, ctx)


@teams_router.get("/mine", response_model=list[TeamMembershipRead])
def my_teams(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[TeamMembershipRead]:
    return authorization_admin_service.my_teams(db, ctx)


@teams_router.get("/{team_id}/members", response_model=list[TeamMemberRead])
def list_members(
    team_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[TeamMemberRead]:
    return authorization_admin_service.list_members(db, ctx, team_id)


@teams_router.post("/{team_id}/members", response_model=TeamMemberRead, status_code=status.HTTP_201_CREATED)
def add_member(
    team_id: uuid.UUID,
    dto: TeamMemberCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> TeamMemberRead:
    with transaction(db):
        return authorization_admin_service.add_member(db, ctx, team_id, dto)


@teams_router.patch("/{team_id}/members/{member_id}", response_model=TeamMemberRead)
def update_member_role(
    team_id: uuid.UUID,
    member_id: uuid.UUID,
    dto: TeamMemberUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> TeamMemberRead:
    with transaction(db):
        return authorization_admin_service.update_member_role(db, ctx, team_id, member_id, dto)


@teams_router.delete("/{team_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    team_id: uuid.UUID,
    member_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> None:
    with transaction(db):
        authorization_admin_service.remove_member(db, ctx, team_id, member_id)

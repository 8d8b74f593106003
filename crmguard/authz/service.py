from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crmguard.authz.models import AppRole, TeamMember, TeamRole, UserRole
from crmguard.authz.repositories import TeamMemberRepository, TeamRepository, UserRoleRepository
from crmguard.authz.schemas import (
    EffectiveRoleRead,
    TeamCreate,
    TeamMemberCreate,
    TeamMemberRead,
    TeamMemberUpdate,
    TeamMembershipRead,
    TeamRead,
    UserRoleRead,
)
from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import PermissionDenied, RecordNotFoundError, ResolutionFailure
from crmguard.platform.security.policies import Operation, PolicyEvaluator, Resource
from crmguard.platform.security.rls import validate_row_access
from crmguard.platform.security.roles import coerce_principal


class AuthorizationAdminService:
    """Role assignment and team membership administration.

    Every write goes through the protected repositories, so the row policies for
    ``user_roles``, ``teams`` and ``team_members`` decide who may do what. The
    caller owns the transaction.
    """

    def assign_role(self, session: Session, ctx: AuthContext, user_id: uuid.UUID, role: AppRole) -> UserRoleRead:
        evaluator = PolicyEvaluator(session)
        values = {"user_id": user_id, "role": role, "assigned_by": self._principal(ctx)}
        validate_row_access(Resource.USER_ROLE, Operation.INSERT, values, ctx, evaluator)

        repository = UserRoleRepository(session, evaluator=evaluator)
        existing = repository.list(ctx, UserRole.user_id == user_id, UserRole.role == role, limit=1)
        if existing:
            return UserRoleRead.model_validate(existing[0])
        row = repository.insert(ctx, values, audit=True)
        return UserRoleRead.model_validate(row)

    def revoke_role(self, session: Session, ctx: AuthContext, user_id: uuid.UUID, role: AppRole) -> None:
        repository = UserRoleRepository(session)
        rows = repository.list(ctx, UserRole.user_id == user_id, UserRole.role == role, limit=1)
        if not rows:
            raise RecordNotFoundError(Resource.USER_ROLE, f"{user_id}:{role}")
        repository.delete(ctx, rows[0].id, audit=True)

    def list_user_roles(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> list[UserRoleRead]:
        rows = UserRoleRepository(session).list(ctx, UserRole.user_id == user_id)
        return [UserRoleRead.model_validate(row) for row in rows]

    def effective_role(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> EffectiveRoleRead:
        evaluator = PolicyEvaluator(session)
        principal = self._principal(ctx)
        if principal is None:
            raise PermissionDenied(Resource.USER_ROLE, Operation.SELECT)
        if principal != user_id and not evaluator.roles.is_manager_or_above(principal):
            raise PermissionDenied(Resource.USER_ROLE, Operation.SELECT)
        return EffectiveRoleRead(
            user_id=user_id,
            role=evaluator.roles.effective_role(user_id),
            is_admin=evaluator.roles.is_admin(user_id),
            is_manager_or_above=evaluator.roles.is_manager_or_above(user_id),
        )

    def create_team(self, session: Session, ctx: AuthContext, dto: TeamCreate) -> TeamRead:
        owner_id = self._principal(ctx)
        evaluator = PolicyEvaluator(session)
        team = TeamRepository(session, evaluator=evaluator).insert(
            ctx,
            {"name": dto.name.strip(), "description": dto.description, "owner_id": owner_id},
            audit=True,
        )
        TeamMemberRepository(session, evaluator=evaluator).insert(
            ctx,
            {"team_id": team.id, "user_id": owner_id, "role": TeamRole.OWNER},
        )
        return TeamRead.model_validate(team)

    def list_teams(self, session: Session, ctx: AuthContext) -> list[TeamRead]:
        return [TeamRead.model_validate(row) for row in TeamRepository(session).list(ctx)]

    def my_teams(self, session: Session, ctx: AuthContext) -> list[TeamMembershipRead]:
        principal = self._principal(ctx)
        if principal is None:
            raise PermissionDenied(Resource.TEAM_MEMBER, Operation.SELECT)
        views = PolicyEvaluator(session).teams.teams_for(principal)
        return [TeamMembershipRead(team_id=view.team_id, team_name=view.team_name, role=view.role) for view in views]

    def add_member(self, session: Session, ctx: AuthContext, team_id: uuid.UUID, dto: TeamMemberCreate) -> TeamMemberRead:
        evaluator = PolicyEvaluator(session)
        TeamRepository(session, evaluator=evaluator).get(ctx, team_id)
        if evaluator.reader.team_role_of(dto.user_id, team_id) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="user is already a team member")
        try:
            row = TeamMemberRepository(session, evaluator=evaluator).insert(
                ctx,
                {"team_id": team_id, "user_id": dto.user_id, "role": dto.role},
                audit=True,
            )
        except IntegrityError:
            # A concurrent add won the race to uq_team_members_team_user.
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="user is already a team member")
        return TeamMemberRead.model_validate(row)

    def update_member_role(
        self,
        session: Session,
        ctx: AuthContext,
        team_id: uuid.UUID,
        member_id: uuid.UUID,
        dto: TeamMemberUpdate,
    ) -> TeamMemberRead:
        repository = TeamMemberRepository(session)
        self._member_of_team(repository, ctx, team_id, member_id)
        row = repository.update(ctx, member_id, {"role": dto.role}, audit=True)
        return TeamMemberRead.model_validate(row)

    def remove_member(self, session: Session, ctx: AuthContext, team_id: uuid.UUID, member_id: uuid.UUID) -> None:
        repository = TeamMemberRepository(session)
        self._member_of_team(repository, ctx, team_id, member_id)
        repository.delete(ctx, member_id, audit=True)

    def list_members(self, session: Session, ctx: AuthContext, team_id: uuid.UUID) -> list[TeamMemberRead]:
        rows = TeamMemberRepository(session).list(ctx, TeamMember.team_id == team_id)
        return [TeamMemberRead.model_validate(row) for row in rows]

    @staticmethod
    def _member_of_team(
        repository: TeamMemberRepository,
        ctx: AuthContext,
        team_id: uuid.UUID,
        member_id: uuid.UUID,
    ) -> TeamMember:
        member = repository.get(ctx, member_id)
        if member.team_id != team_id:
            raise RecordNotFoundError(Resource.TEAM_MEMBER, member_id)
        return member

    @staticmethod
    def _principal(ctx: AuthContext) -> uuid.UUID | None:
        try:
            return coerce_principal(ctx.user_id)
        except ResolutionFailure:
            return None


authorization_admin_service = AuthorizationAdminService()

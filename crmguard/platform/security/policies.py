from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy import ColumnElement, false, or_, select, true
from sqlalchemy.orm import Session

from crmguard.authz.models import Team, TeamMember, UserRole
from crmguard.crm.models import (
    Communication,
    Contact,
    Deal,
    DealStageHistory,
    Document,
    Lead,
    LeadStatusHistory,
    Note,
    Task,
)
from crmguard.metrics import observe_resolution_failure
from crmguard.models.audit import AuditLog, AutomationLog
from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import ResolutionFailure
from crmguard.platform.security.privileged import PrivilegedReader
from crmguard.platform.security.roles import RoleResolver, coerce_principal
from crmguard.platform.security.teams import TEAM_MANAGER_ROLES, TeamMembershipResolver


logger = logging.getLogger("crmguard.security")


class Operation(StrEnum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Resource(StrEnum):
    LEAD = "lead"
    CONTACT = "contact"
    DEAL = "deal"
    TASK = "task"
    COMMUNICATION = "communication"
    NOTE = "note"
    DOCUMENT = "document"
    TEAM = "team"
    TEAM_MEMBER = "team_member"
    USER_ROLE = "user_role"
    AUDIT_LOG = "audit_log"
    AUTOMATION_LOG = "automation_log"
    LEAD_STATUS_HISTORY = "lead_status_history"
    DEAL_STAGE_HISTORY = "deal_stage_history"


ALL = frozenset(Operation)
SELECT = frozenset({Operation.SELECT})
INSERT = frozenset({Operation.INSERT})
UPDATE = frozenset({Operation.UPDATE})

RowCheck = Callable[["PolicyEvaluator", uuid.UUID, Mapping[str, Any]], bool]
RowClause = Callable[["PolicyEvaluator", uuid.UUID, type[Any]], ColumnElement[bool]]


@dataclass(frozen=True, slots=True)
class PolicyRule:
    """One grant: a row predicate plus the equivalent SQL predicate for list queries."""

    name: str
    operations: frozenset[Operation]
    check: RowCheck
    clause: RowClause


@dataclass(frozen=True, slots=True)
class RowPolicy:
    resource: Resource
    model: type[Any]
    rules: tuple[PolicyRule, ...]

    def rules_for(self, operation: Operation) -> list[PolicyRule]:
        return [rule for rule in self.rules if operation in rule.operations]


def _as_uuid(value: Any) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _flag(value: bool) -> ColumnElement[bool]:
    return true() if value else false()


def admin_rule(name: str, operations: Iterable[Operation] = ALL) -> PolicyRule:
    return PolicyRule(
        name=name,
        operations=frozenset(operations),
        check=lambda ev, principal, row: ev.roles.is_admin(principal),
        clause=lambda ev, principal, model: _flag(ev.roles.is_admin(principal)),
    )


def manager_rule(name: str, operations: Iterable[Operation]) -> PolicyRule:
    return PolicyRule(
        name=name,
        operations=frozenset(operations),
        check=lambda ev, principal, row: ev.roles.is_manager_or_above(principal),
        clause=lambda ev, principal, model: _flag(ev.roles.is_manager_or_above(principal)),
    )


def principal_column_rule(name: str, operations: Iterable[Operation], *columns: str) -> PolicyRule:
    """Grant when any of ``columns`` on the row names the acting principal."""

    def check(ev: PolicyEvaluator, principal: uuid.UUID, row: Mapping[str, Any]) -> bool:
        return any(_as_uuid(row.get(column)) == principal for column in columns)

    def clause(ev: PolicyEvaluator, principal: uuid.UUID, model: type[Any]) -> ColumnElement[bool]:
        return or_(*(getattr(model, column) == principal for column in columns))

    return PolicyRule(name=name, operations=frozenset(operations), check=check, clause=clause)


def manager_own_rule(name: str, operations: Iterable[Operation], column: str) -> PolicyRule:
    def check(ev: PolicyEvaluator, principal: uuid.UUID, row: Mapping[str, Any]) -> bool:
        return _as_uuid(row.get(column)) == principal and ev.roles.is_manager_or_above(principal)

    def clause(ev: PolicyEvaluator, principal: uuid.UUID, model: type[Any]) -> ColumnElement[bool]:
        if not ev.roles.is_manager_or_above(principal):
            return false()
        return getattr(model, column) == principal

    return PolicyRule(name=name, operations=frozenset(operations), check=check, clause=clause)


def parent_owner_rule(name: str, operations: Iterable[Operation], parents: Mapping[str, type[Any]]) -> PolicyRule:
    """Grant when the principal owns a record referenced by one of the row's foreign keys.

    The parent's owner is read through the privileged path, not through the
    parent's own row policy.
    """

    def check(ev: PolicyEvaluator, principal: uuid.UUID, row: Mapping[str, Any]) -> bool:
        for column, parent in parents.items():
            parent_id = _as_uuid(row.get(column))
            if parent_id is not None and ev.reader.owner_of(parent, parent_id) == principal:
                return True
        return False

    def clause(ev: PolicyEvaluator, principal: uuid.UUID, model: type[Any]) -> ColumnElement[bool]:
        return or_(
            *(
                getattr(model, column).in_(select(parent.id).where(parent.owner_id == principal))
                for column, parent in parents.items()
            )
        )

    return PolicyRule(name=name, operations=frozenset(operations), check=check, clause=clause)


def team_member_rule(name: str, operations: Iterable[Operation], team_column: str) -> PolicyRule:
    def check(ev: PolicyEvaluator, principal: uuid.UUID, row: Mapping[str, Any]) -> bool:
        return ev.teams.is_team_member(principal, _as_uuid(row.get(team_column)))

    def clause(ev: PolicyEvaluator, principal: uuid.UUID, model: type[Any]) -> ColumnElement[bool]:
        return getattr(model, team_column).in_(select(TeamMember.team_id).where(TeamMember.user_id == principal))

    return PolicyRule(name=name, operations=frozenset(operations), check=check, clause=clause)


def team_manager_rule(name: str, operations: Iterable[Operation], team_column: str) -> PolicyRule:
    def check(ev: PolicyEvaluator, principal: uuid.UUID, row: Mapping[str, Any]) -> bool:
        return ev.teams.is_team_manager(principal, _as_uuid(row.get(team_column)))

    def clause(ev: PolicyEvaluator, principal: uuid.UUID, model: type[Any]) -> ColumnElement[bool]:
        return getattr(model, team_column).in_(
            select(TeamMember.team_id).where(
                TeamMember.user_id == principal,
                TeamMember.role.in_(sorted(TEAM_MANAGER_ROLES)),
            )
        )

    return PolicyRule(name=name, operations=frozenset(operations), check=check, clause=clause)


_PRIMARY_PARENTS: dict[str, type[Any]] = {"lead_id": Lead, "contact_id": Contact, "deal_id": Deal}


def _primary_entity_policy(resource: Resource, model: type[Any], label: str) -> RowPolicy:
    return RowPolicy(
        resource=resource,
        model=model,
        rules=(
            admin_rule(f"Admins manage {label}"),
            manager_rule(f"Managers view all {label}", SELECT),
            manager_rule(f"Managers create {label}", INSERT),
            manager_rule(f"Managers update all {label}", UPDATE),
            principal_column_rule(f"Owners manage own {label}", ALL, "owner_id"),
        ),
    )


def _dependent_entity_policy(resource: Resource, model: type[Any], label: str, creator_column: str) -> RowPolicy:
    return RowPolicy(
        resource=resource,
        model=model,
        rules=(
            admin_rule(f"Admins manage {label}"),
            manager_rule(f"Managers view {label}", SELECT),
            principal_column_rule(
                f"Creators view and delete own {label}",
                {Operation.SELECT, Operation.DELETE},
                creator_column,
            ),
            parent_owner_rule(f"Record owners view related {label}", SELECT, _PRIMARY_PARENTS),
            principal_column_rule(f"Users create {label}", INSERT, creator_column),
        ),
    )


ROW_POLICIES: dict[str, RowPolicy] = {
    policy.resource: policy
    for policy in (
        _primary_entity_policy(Resource.LEAD, Lead, "leads"),
        _primary_entity_policy(Resource.CONTACT, Contact, "contacts"),
        _primary_entity_policy(Resource.DEAL, Deal, "deals"),
        RowPolicy(
            resource=Resource.TASK,
            model=Task,
            rules=(
                admin_rule("Admins manage tasks"),
                manager_rule("Managers view all tasks", SELECT),
                manager_rule("Managers create tasks", INSERT),
                principal_column_rule(
                    "Assignees and creators manage tasks",
                    {Operation.SELECT, Operation.UPDATE, Operation.DELETE},
                    "assigned_to",
                    "created_by",
                ),
                principal_column_rule("Users create tasks", INSERT, "created_by"),
            ),
        ),
        _dependent_entity_policy(Resource.COMMUNICATION, Communication, "communications", "created_by"),
        _dependent_entity_policy(Resource.NOTE, Note, "notes", "created_by"),
        _dependent_entity_policy(Resource.DOCUMENT, Document, "documents", "uploaded_by"),
        RowPolicy(
            resource=Resource.TEAM,
            model=Team,
            rules=(
                admin_rule("Admins manage teams"),
                manager_rule("Managers view all teams", SELECT),
                manager_rule("Managers create teams", INSERT),
                principal_column_rule("Owners update teams", UPDATE, "owner_id"),
                team_member_rule("Members view their teams", SELECT, "id"),
            ),
        ),
        RowPolicy(
            resource=Resource.TEAM_MEMBER,
            model=TeamMember,
            rules=(
                admin_rule("Admins manage members"),
                manager_rule("Managers view members", SELECT),
                team_manager_rule("Team managers manage members", ALL, "team_id"),
                parent_owner_rule("Team owners manage members", ALL, {"team_id": Team}),
                principal_column_rule("View own membership", SELECT, "user_id"),
            ),
        ),
        RowPolicy(
            resource=Resource.USER_ROLE,
            model=UserRole,
            rules=(
                admin_rule("Admins manage roles"),
                principal_column_rule("View own roles", SELECT, "user_id"),
            ),
        ),
        RowPolicy(
            resource=Resource.AUDIT_LOG,
            model=AuditLog,
            rules=(
                admin_rule("Admins view audit logs", SELECT),
                manager_own_rule("Managers view own audit logs", SELECT, "user_id"),
            ),
        ),
        RowPolicy(
            resource=Resource.AUTOMATION_LOG,
            model=AutomationLog,
            rules=(admin_rule("Admins view automation logs", SELECT),),
        ),
        RowPolicy(
            resource=Resource.LEAD_STATUS_HISTORY,
            model=LeadStatusHistory,
            rules=(
                manager_rule("Managers view lead history", SELECT),
                parent_owner_rule("Lead owners view lead history", SELECT, {"lead_id": Lead}),
            ),
        ),
        RowPolicy(
            resource=Resource.DEAL_STAGE_HISTORY,
            model=DealStageHistory,
            rules=(
                manager_rule("Managers view deal history", SELECT),
                parent_owner_rule("Deal owners view deal history", SELECT, {"deal_id": Deal}),
            ),
        ),
    )
}


class PolicyEvaluator:
    """Row-level allow/deny decisions for the protected resources.

    A decision is the logical OR of every rule registered for the operation and
    defaults to deny. Anonymous callers and principals that cannot be resolved
    are denied. Evaluation only reads, through the privileged reader, so it can
    be repeated for the same row and gives the same answer within a transaction.
    """

    def __init__(self, session: Session, policies: Mapping[str, RowPolicy] | None = None) -> None:
        self.reader = PrivilegedReader(session)
        self.roles = RoleResolver(self.reader)
        self.teams = TeamMembershipResolver(self.reader)
        self._policies = policies if policies is not None else ROW_POLICIES

    def policy_for(self, resource: str) -> RowPolicy:
        try:
            return self._policies[resource]
        except KeyError as exc:
            raise LookupError(f"No row policy registered for resource '{resource}'") from exc

    def is_allowed(self, resource: str, operation: Operation | str, ctx: AuthContext, row: Mapping[str, Any]) -> bool:
        policy = self.policy_for(resource)
        principal = self._resolve(ctx)
        if principal is None:
            return False
        try:
            return any(rule.check(self, principal, row) for rule in policy.rules_for(Operation(operation)))
        except ResolutionFailure as exc:
            self._on_resolution_failure(ctx, exc)
            return False

    def can_select(self, resource: str, ctx: AuthContext, row: Mapping[str, Any]) -> bool:
        return self.is_allowed(resource, Operation.SELECT, ctx, row)

    def can_insert(self, resource: str, ctx: AuthContext, row: Mapping[str, Any]) -> bool:
        return self.is_allowed(resource, Operation.INSERT, ctx, row)

    def can_update(self, resource: str, ctx: AuthContext, row: Mapping[str, Any]) -> bool:
        return self.is_allowed(resource, Operation.UPDATE, ctx, row)

    def can_delete(self, resource: str, ctx: AuthContext, row: Mapping[str, Any]) -> bool:
        return self.is_allowed(resource, Operation.DELETE, ctx, row)

    def select_clause(self, resource: str, ctx: AuthContext) -> ColumnElement[bool]:
        policy = self.policy_for(resource)
        principal = self._resolve(ctx)
        if principal is None:
            return false()
        try:
            clauses = [rule.clause(self, principal, policy.model) for rule in policy.rules_for(Operation.SELECT)]
        except ResolutionFailure as exc:
            self._on_resolution_failure(ctx, exc)
            return false()
        if not clauses:
            return false()
        return or_(*clauses)

    def _resolve(self, ctx: AuthContext) -> uuid.UUID | None:
        if ctx.is_anonymous:
            return None
        try:
            return coerce_principal(ctx.user_id)
        except ResolutionFailure as exc:
            self._on_resolution_failure(ctx, exc)
            return None

    @staticmethod
    def _on_resolution_failure(ctx: AuthContext, exc: ResolutionFailure) -> None:
        observe_resolution_failure()
        logger.warning(
            "authz.resolution_failed",
            extra={"principal": str(ctx.user_id), "error": exc.reason},
        )

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from crmguard.crm.models import TaskStatus
from crmguard.metrics import observe_invariant_violation
from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import InvariantViolation, ResolutionFailure
from crmguard.platform.security.policies import Operation
from crmguard.platform.security.roles import RoleResolver, coerce_principal


logger = logging.getLogger("crmguard.security")


def values_differ(old: Any, new: Any) -> bool:
    """Change test where two nulls are equal and null against a value is a change."""

    if old is None and new is None:
        return False
    if old is None or new is None:
        return True
    return old != new


@dataclass(slots=True, frozen=True)
class Mutation:
    """Old/new row pair for one statement; ``old`` is None on insert and ``new`` is None on delete."""

    resource: str
    operation: Operation
    ctx: AuthContext
    old: Mapping[str, Any] | None
    new: Mapping[str, Any] | None
    roles: RoleResolver

    def before(self, field: str) -> Any:
        return None if self.old is None else self.old.get(field)

    def after(self, field: str) -> Any:
        return None if self.new is None else self.new.get(field)

    def principal(self) -> uuid.UUID | None:
        try:
            return coerce_principal(self.ctx.user_id)
        except ResolutionFailure:
            return None


class InvariantGuard(Protocol):
    name: str

    def check(self, mutation: Mutation) -> None: ...


def _reject(guard: str, mutation: Mutation, message: str) -> None:
    observe_invariant_violation(invariant=guard)
    logger.warning(
        "invariant.violated",
        extra={
            "invariant": guard,
            "resource": mutation.resource,
            "operation": str(mutation.operation),
            "principal": mutation.ctx.user_id,
        },
    )
    raise InvariantViolation(guard, message)


class ConversionGuard:
    """A lead's conversion target can be set once and never changed afterwards."""

    name = "lead_conversion_once"

    def __init__(self, field: str = "converted_to_contact_id") -> None:
        self.field = field

    def check(self, mutation: Mutation) -> None:
        if mutation.operation != Operation.UPDATE:
            return
        current = mutation.before(self.field)
        if current is None:
            return
        if values_differ(current, mutation.after(self.field)):
            _reject(self.name, mutation, "Lead has already been converted and cannot be converted again.")


class TaskCompletionGuard:
    """Only the assignee may move a task into the completed status. Admins are not exempt.

    The principal must be the assignee both before and after the statement, so a
    single update cannot reassign the task and complete it at once.
    """

    name = "task_completion_by_assignee"

    def check(self, mutation: Mutation) -> None:
        if mutation.operation != Operation.UPDATE:
            return
        if mutation.after("status") != TaskStatus.COMPLETED or mutation.before("status") == TaskStatus.COMPLETED:
            return
        principal = mutation.principal()
        assignees = (mutation.before("assigned_to"), mutation.after("assigned_to"))
        if principal is None or any(assignee is None or str(principal) != str(assignee) for assignee in assignees):
            _reject(self.name, mutation, "Only the assigned user can complete this task.")


class OwnershipGuard:
    """Populated ownership columns are reassigned or cleared only by an administrator."""

    name = "ownership_immutable"

    def __init__(self, *fields: str) -> None:
        self.fields = fields

    def check(self, mutation: Mutation) -> None:
        if mutation.operation != Operation.UPDATE:
            return
        changed = [
            field
            for field in self.fields
            if mutation.before(field) is not None and values_differ(mutation.before(field), mutation.after(field))
        ]
        if not changed:
            return
        principal = mutation.principal()
        if principal is not None and mutation.roles.is_admin(principal):
            return
        _reject(self.name, mutation, f"Only an administrator can reassign {', '.join(changed)}.")


class SingleAttachmentGuard:
    """A document references at most one of lead, contact and deal."""

    name = "document_single_attachment"

    def __init__(self, fields: tuple[str, ...] = ("lead_id", "contact_id", "deal_id")) -> None:
        self.fields = fields

    def check(self, mutation: Mutation) -> None:
        if mutation.operation not in (Operation.INSERT, Operation.UPDATE):
            return
        attached = [field for field in self.fields if mutation.after(field) is not None]
        if len(attached) > 1:
            _reject(self.name, mutation, "A document can be attached to only one of lead, contact or deal.")


def run_guards(guards: tuple[InvariantGuard, ...] | list[InvariantGuard], mutation: Mutation) -> None:
    for guard in guards:
        guard.check(mutation)

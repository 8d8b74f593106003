from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any, ClassVar

from sqlalchemy import Enum, Uuid, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement, Select

from crmguard.otel import get_tracer
from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import RecordNotFoundError
from crmguard.platform.security.guards import InvariantGuard, Mutation, run_guards
from crmguard.platform.security.policies import Operation, PolicyEvaluator
from crmguard.platform.security.rls import apply_rls_filter, validate_row_access
from crmguard.provenance.recorder import ProvenanceRecorder, TransitionObserver, get_recorder
from crmguard.provenance.snapshots import row_values


tracer = get_tracer(__name__)

_READ_ONLY_FIELDS = frozenset({"id", "created_at"})


class ProtectedRepository:
    """Row CRUD for one protected resource.

    Every write runs policy check, invariant guards, the base mutation, the
    transition observers and, when asked, an audit entry, in that order and in
    the caller's transaction. Reads are filtered by the select rules; a row the
    principal cannot see behaves as if it did not exist.
    """

    resource: ClassVar[str] = ""
    model: ClassVar[type[Any]]
    guards: ClassVar[tuple[InvariantGuard, ...]] = ()
    observers: ClassVar[tuple[TransitionObserver, ...]] = ()
    order_column: ClassVar[str] = "created_at"

    def __init__(
        self,
        session: Session,
        *,
        evaluator: PolicyEvaluator | None = None,
        recorder: ProvenanceRecorder | None = None,
    ) -> None:
        self.session = session
        self.evaluator = evaluator or PolicyEvaluator(session)
        self.recorder = recorder or get_recorder()

    def query(self, ctx: AuthContext) -> Select[Any]:
        return apply_rls_filter(select(self.model), self.resource, ctx, self.evaluator)

    def get(self, ctx: AuthContext, row_id: uuid.UUID | str) -> Any:
        row = self.session.scalar(self.query(ctx).where(self.model.id == self._coerce_id(row_id)))
        if row is None:
            raise RecordNotFoundError(self.resource, row_id)
        return row

    def list(
        self,
        ctx: AuthContext,
        *criteria: ColumnElement[bool],
        limit: int = 100,
        offset: int = 0,
    ) -> list[Any]:
        stmt = self.query(ctx)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = stmt.order_by(getattr(self.model, self.order_column).desc(), self.model.id).limit(limit).offset(offset)
        return list(self.session.scalars(stmt).all())

    def insert(self, ctx: AuthContext, values: Mapping[str, Any], *, audit: bool = False) -> Any:
        data = self._normalize(values)
        validate_row_access(self.resource, Operation.INSERT, data, ctx, self.evaluator)
        run_guards(self.guards, self._mutation(ctx, Operation.INSERT, None, data))

        with tracer.start_as_current_span("crmguard.protected_write") as span:
            span.set_attribute("resource", self.resource)
            span.set_attribute("operation", Operation.INSERT.value)
            row = self.model(**data)
            self.session.add(row)
            self.session.flush()

        if audit:
            self.recorder.record_audit(
                self.session, ctx, "create", self.resource, entity_id=row.id, new_values=row_values(row)
            )
        return row

    def update(
        self,
        ctx: AuthContext,
        row_id: uuid.UUID | str,
        values: Mapping[str, Any],
        *,
        audit: bool = False,
        note: str | None = None,
    ) -> Any:
        row = self.get(ctx, row_id)
        changes = self._normalize(values)
        blocked = _READ_ONLY_FIELDS.intersection(changes)
        if blocked:
            raise ValueError(f"Fields {sorted(blocked)} cannot be updated on resource '{self.resource}'")

        old = row_values(row)
        new = {**old, **changes}
        # Both the current row and the resulting row must be granted.
        validate_row_access(self.resource, Operation.UPDATE, old, ctx, self.evaluator)
        validate_row_access(self.resource, Operation.UPDATE, new, ctx, self.evaluator)
        run_guards(self.guards, self._mutation(ctx, Operation.UPDATE, old, new))

        with tracer.start_as_current_span("crmguard.protected_write") as span:
            span.set_attribute("resource", self.resource)
            span.set_attribute("operation", Operation.UPDATE.value)
            span.set_attribute("entity_id", str(row.id))
            for key, value in changes.items():
                setattr(row, key, value)
            self.session.flush()

        for observer in self.observers:
            self.recorder.record_transition(
                self.session, ctx, observer, row.id, old.get(observer.field), new.get(observer.field), note=note
            )
        if audit:
            self.recorder.record_audit(
                self.session, ctx, "update", self.resource, entity_id=row.id, old_values=old, new_values=row_values(row)
            )
        return row

    def delete(self, ctx: AuthContext, row_id: uuid.UUID | str, *, audit: bool = False) -> None:
        row = self.get(ctx, row_id)
        old = row_values(row)
        validate_row_access(self.resource, Operation.DELETE, old, ctx, self.evaluator)
        run_guards(self.guards, self._mutation(ctx, Operation.DELETE, old, None))

        with tracer.start_as_current_span("crmguard.protected_write") as span:
            span.set_attribute("resource", self.resource)
            span.set_attribute("operation", Operation.DELETE.value)
            span.set_attribute("entity_id", str(row.id))
            self.session.delete(row)
            self.session.flush()

        if audit:
            self.recorder.record_audit(self.session, ctx, "delete", self.resource, entity_id=old["id"], old_values=old)

    def _mutation(
        self,
        ctx: AuthContext,
        operation: Operation,
        old: Mapping[str, Any] | None,
        new: Mapping[str, Any] | None,
    ) -> Mutation:
        return Mutation(
            resource=self.resource,
            operation=operation,
            ctx=ctx,
            old=old,
            new=new,
            roles=self.evaluator.roles,
        )

    def _normalize(self, values: Mapping[str, Any]) -> dict[str, Any]:
        columns = self.model.__table__.columns
        data: dict[str, Any] = {}
        for key, value in values.items():
            if key not in columns:
                raise ValueError(f"Unknown field '{key}' for resource '{self.resource}'")
            column_type = columns[key].type
            if value is not None:
                if isinstance(column_type, Uuid) and not isinstance(value, uuid.UUID):
                    value = uuid.UUID(str(value))
                elif isinstance(column_type, Enum) and column_type.enum_class is not None:
                    value = column_type.enum_class(value)
            data[key] = value
        return data

    def _coerce_id(self, row_id: uuid.UUID | str) -> uuid.UUID:
        if isinstance(row_id, uuid.UUID):
            return row_id
        try:
            return uuid.UUID(str(row_id))
        except ValueError as exc:
            raise RecordNotFoundError(self.resource, row_id) from exc

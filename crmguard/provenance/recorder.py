from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crmguard.context import get_correlation_id
from crmguard.core.config import get_settings
from crmguard.metrics import observe_provenance_entry, observe_provenance_failure
from crmguard.models.audit import AuditLog
from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import RecordingFailure, ResolutionFailure
from crmguard.platform.security.guards import values_differ
from crmguard.platform.security.roles import coerce_principal
from crmguard.provenance.snapshots import to_snapshot


logger = logging.getLogger("crmguard.provenance")


@dataclass(slots=True, frozen=True)
class TransitionObserver:
    """Appends a history row when ``field`` changes on an update of ``resource``."""

    resource: str
    field: str
    history_model: type[Any]
    parent_column: str
    old_column: str
    new_column: str


def _principal_or_none(ctx: AuthContext) -> uuid.UUID | None:
    try:
        return coerce_principal(ctx.user_id)
    except ResolutionFailure:
        return None


def _entity_uuid(entity_id: uuid.UUID | str | None) -> uuid.UUID | None:
    if entity_id is None or isinstance(entity_id, uuid.UUID):
        return entity_id
    return uuid.UUID(str(entity_id))


class ProvenanceRecorder:
    """Writes audit and transition history rows into the caller's transaction.

    Rows are flushed immediately so a storage failure surfaces here as
    RecordingFailure. The caller's transaction is expected to roll back on it;
    an entry is never dropped silently.
    """

    def __init__(self, *, capture_request_metadata: bool | None = None) -> None:
        self._capture_request_metadata = capture_request_metadata

    @property
    def capture_request_metadata(self) -> bool:
        # Unset means follow the current settings on every write.
        if self._capture_request_metadata is None:
            return get_settings().audit_capture_request_metadata
        return self._capture_request_metadata

    def record_audit(
        self,
        session: Session,
        ctx: AuthContext,
        action: str,
        entity_type: str,
        entity_id: uuid.UUID | str | None = None,
        old_values: Mapping[str, Any] | None = None,
        new_values: Mapping[str, Any] | None = None,
    ) -> uuid.UUID:
        entry = AuditLog(
            id=uuid.uuid4(),
            user_id=_principal_or_none(ctx),
            action=action,
            entity_type=entity_type,
            entity_id=_entity_uuid(entity_id),
            old_values=to_snapshot(old_values),
            new_values=to_snapshot(new_values),
            ip_address=ctx.ip_address if self.capture_request_metadata else None,
            user_agent=ctx.user_agent if self.capture_request_metadata else None,
            correlation_id=ctx.correlation_id or get_correlation_id(),
        )
        self._persist(session, entry, kind="audit", entity_type=entity_type, entity_id=entry.entity_id)
        return entry.id

    def record_transition(
        self,
        session: Session,
        ctx: AuthContext,
        observer: TransitionObserver,
        row_id: uuid.UUID,
        old_value: Any,
        new_value: Any,
        note: str | None = None,
    ) -> uuid.UUID | None:
        if not values_differ(old_value, new_value):
            return None
        entry = observer.history_model(
            id=uuid.uuid4(),
            changed_by=_principal_or_none(ctx),
            notes=note,
            **{
                observer.parent_column: row_id,
                observer.old_column: old_value,
                observer.new_column: new_value,
            },
        )
        self._persist(session, entry, kind="history", entity_type=observer.resource, entity_id=row_id)
        return entry.id

    def _persist(
        self,
        session: Session,
        entry: Any,
        *,
        kind: str,
        entity_type: str,
        entity_id: uuid.UUID | None,
    ) -> None:
        try:
            session.add(entry)
            session.flush()
        except SQLAlchemyError as exc:
            observe_provenance_failure(kind=kind)
            logger.error(
                "provenance.record_failed",
                extra={"kind": kind, "entity_type": entity_type, "entity_id": entity_id, "error": str(exc)},
            )
            raise RecordingFailure(kind, entity_type, exc.__class__.__name__) from exc

        observe_provenance_entry(kind=kind)
        logger.info(
            "provenance.recorded",
            extra={"kind": kind, "entity_type": entity_type, "entity_id": entity_id},
        )


_default_recorder: ProvenanceRecorder | None = None


def get_recorder() -> ProvenanceRecorder:
    global _default_recorder
    if _default_recorder is None:
        _default_recorder = ProvenanceRecorder()
    return _default_recorder


def record_audit(
    session: Session,
    ctx: AuthContext,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None = None,
    old_values: Mapping[str, Any] | None = None,
    new_values: Mapping[str, Any] | None = None,
) -> uuid.UUID:
    return get_recorder().record_audit(
        session,
        ctx,
        action,
        entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
    )

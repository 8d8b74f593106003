from __future__ import annotations

import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crmguard.core.config import get_settings
from crmguard.metrics import observe_automation_entry
from crmguard.models.audit import AutomationLog, AutomationStatus


logger = logging.getLogger("crmguard.provenance")

_UNKNOWN = "unknown"


class AutomationLogger:
    """Outcome log for system-triggered actions.

    Each write runs in a savepoint. A failed write never propagates: the logger
    records a ``failed`` entry describing the failure instead, and if even that
    cannot be stored it logs the problem and returns None. The automation's own
    changes in the enclosing transaction are left untouched either way.
    """

    def __init__(self, *, error_max_length: int | None = None) -> None:
        self._error_max_length = error_max_length

    @property
    def error_max_length(self) -> int:
        if self._error_max_length is None:
            return get_settings().automation_error_max_length
        return self._error_max_length

    def record_automation(
        self,
        session: Session,
        kind: str,
        entity_type: str,
        trigger_event: str,
        action_taken: str,
        entity_id: uuid.UUID | str | None = None,
        status: str = AutomationStatus.SUCCESS,
        error: str | None = None,
    ) -> uuid.UUID | None:
        try:
            entry = AutomationLog(
                id=uuid.uuid4(),
                automation_type=kind,
                entity_type=entity_type,
                entity_id=self._entity_uuid(entity_id),
                trigger_event=trigger_event,
                action_taken=action_taken,
                status=str(status),
                error_message=self._truncate(error),
            )
            with session.begin_nested():
                session.add(entry)
        except (SQLAlchemyError, ValueError) as exc:
            logger.warning(
                "automation.record_failed",
                extra={
                    "automation_type": kind,
                    "entity_type": entity_type,
                    "trigger_event": trigger_event,
                    "error": str(exc),
                },
            )
            return self._record_failure(session, kind, entity_type, trigger_event, action_taken, error, exc)

        observe_automation_entry(status=entry.status)
        logger.info(
            "automation.recorded",
            extra={
                "automation_type": kind,
                "entity_type": entity_type,
                "entity_id": entry.entity_id,
                "trigger_event": trigger_event,
                "status": entry.status,
            },
        )
        return entry.id

    def _record_failure(
        self,
        session: Session,
        kind: str | None,
        entity_type: str | None,
        trigger_event: str | None,
        action_taken: str | None,
        error: str | None,
        exc: Exception,
    ) -> uuid.UUID | None:
        detail = f"{error}; logging failed: {exc}" if error else f"logging failed: {exc}"
        fallback = AutomationLog(
            id=uuid.uuid4(),
            automation_type=kind or _UNKNOWN,
            entity_type=entity_type or _UNKNOWN,
            entity_id=None,
            trigger_event=trigger_event or _UNKNOWN,
            action_taken=action_taken or _UNKNOWN,
            status=AutomationStatus.FAILED.value,
            error_message=self._truncate(detail),
        )
        try:
            with session.begin_nested():
                session.add(fallback)
        except SQLAlchemyError as fallback_exc:
            logger.error(
                "automation.fallback_failed",
                extra={"automation_type": kind, "entity_type": entity_type, "error": str(fallback_exc)},
            )
            return None

        observe_automation_entry(status=AutomationStatus.FAILED.value)
        return fallback.id

    def _truncate(self, message: str | None) -> str | None:
        if message is None:
            return None
        return message[: self.error_max_length]

    @staticmethod
    def _entity_uuid(entity_id: uuid.UUID | str | None) -> uuid.UUID | None:
        if entity_id is None or isinstance(entity_id, uuid.UUID):
            return entity_id
        return uuid.UUID(str(entity_id))


_default_logger: AutomationLogger | None = None


def get_automation_logger() -> AutomationLogger:
    global _default_logger
    if _default_logger is None:
        _default_logger = AutomationLogger()
    return _default_logger


def record_automation(
    session: Session,
    kind: str,
    entity_type: str,
    trigger_event: str,
    action_taken: str,
    entity_id: uuid.UUID | str | None = None,
    status: str = AutomationStatus.SUCCESS,
    error: str | None = None,
) -> uuid.UUID | None:
    return get_automation_logger().record_automation(
        session,
        kind,
        entity_type,
        trigger_event,
        action_taken,
        entity_id=entity_id,
        status=status,
        error=error,
    )

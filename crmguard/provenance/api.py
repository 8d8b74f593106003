from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crmguard.core.auth import get_current_context
from crmguard.core.database import get_db
from crmguard.crm.models import DealStageHistory, LeadStatusHistory
from crmguard.crm.repositories import (
    AuditLogRepository,
    AutomationLogRepository,
    DealRepository,
    DealStageHistoryRepository,
    LeadRepository,
    LeadStatusHistoryRepository,
)
from crmguard.models.audit import AuditLog, AutomationLog
from crmguard.platform.security.context import AuthContext
from crmguard.provenance.schemas import (
    AuditLogRead,
    AutomationLogRead,
    DealStageHistoryRead,
    LeadStatusHistoryRead,
)


router = APIRouter(prefix="/api", tags=["provenance"])


@router.get("/audit-logs", response_model=list[AuditLogRead])
def list_audit_logs(
    entity_type: str | None = Query(default=None),
    entity_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[AuditLogRead]:
    criteria = []
    if entity_type is not None:
        criteria.append(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        criteria.append(AuditLog.entity_id == entity_id)
    rows = AuditLogRepository(db).list(ctx, *criteria, limit=limit, offset=offset)
    return [AuditLogRead.model_validate(row) for row in rows]


@router.get("/automation-logs", response_model=list[AutomationLogRead])
def list_automation_logs(
    automation_type: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[AutomationLogRead]:
    criteria = []
    if automation_type is not None:
        criteria.append(AutomationLog.automation_type == automation_type)
    if status is not None:
        criteria.append(AutomationLog.status == status)
    rows = AutomationLogRepository(db).list(ctx, *criteria, limit=limit, offset=offset)
    return [AutomationLogRead.model_validate(row) for row in rows]


@router.get("/leads/{lead_id}/status-history", response_model=list[LeadStatusHistoryRead])
def lead_status_history(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[LeadStatusHistoryRead]:
    LeadRepository(db).get(ctx, lead_id)
    rows = LeadStatusHistoryRepository(db).list(ctx, LeadStatusHistory.lead_id == lead_id)
    return [LeadStatusHistoryRead.model_validate(row) for row in rows]


@router.get("/deals/{deal_id}/stage-history", response_model=list[DealStageHistoryRead])
def deal_stage_history(
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[DealStageHistoryRead]:
    DealRepository(db).get(ctx, deal_id)
    rows = DealStageHistoryRepository(db).list(ctx, DealStageHistory.deal_id == deal_id)
    return [DealStageHistoryRead.model_validate(row) for row in rows]

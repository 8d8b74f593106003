from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from crmguard.crm.models import DealStage, LeadStatus


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID | None
    action: str
    entity_type: str
    entity_id: UUID | None
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    correlation_id: str | None
    created_at: datetime


class AutomationLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    automation_type: str
    entity_type: str
    entity_id: UUID | None
    trigger_event: str
    action_taken: str
    status: str
    error_message: str | None
    created_at: datetime


class LeadStatusHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    old_status: LeadStatus | None
    new_status: LeadStatus
    changed_by: UUID
    notes: str | None
    created_at: datetime


class DealStageHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    deal_id: UUID
    old_stage: DealStage | None
    new_stage: DealStage
    changed_by: UUID
    notes: str | None
    created_at: datetime

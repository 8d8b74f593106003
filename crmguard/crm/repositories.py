from __future__ import annotations

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
from crmguard.models.audit import AuditLog, AutomationLog
from crmguard.platform.security.guards import ConversionGuard, OwnershipGuard, SingleAttachmentGuard, TaskCompletionGuard
from crmguard.platform.security.policies import Resource
from crmguard.platform.security.repository import ProtectedRepository
from crmguard.provenance.recorder import TransitionObserver


LEAD_STATUS_OBSERVER = TransitionObserver(
    resource=Resource.LEAD,
    field="status",
    history_model=LeadStatusHistory,
    parent_column="lead_id",
    old_column="old_status",
    new_column="new_status",
)

DEAL_STAGE_OBSERVER = TransitionObserver(
    resource=Resource.DEAL,
    field="stage",
    history_model=DealStageHistory,
    parent_column="deal_id",
    old_column="old_stage",
    new_column="new_stage",
)


class LeadRepository(ProtectedRepository):
    resource = Resource.LEAD
    model = Lead
    guards = (ConversionGuard(), OwnershipGuard("owner_id"))
    observers = (LEAD_STATUS_OBSERVER,)


class ContactRepository(ProtectedRepository):
    resource = Resource.CONTACT
    model = Contact
    guards = (OwnershipGuard("owner_id"),)


class DealRepository(ProtectedRepository):
    resource = Resource.DEAL
    model = Deal
    guards = (OwnershipGuard("owner_id"),)
    observers = (DEAL_STAGE_OBSERVER,)


class TaskRepository(ProtectedRepository):
    # Tasks carry no transition observer.
    resource = Resource.TASK
    model = Task
    guards = (TaskCompletionGuard(), OwnershipGuard("created_by", "assigned_to"))


class CommunicationRepository(ProtectedRepository):
    resource = Resource.COMMUNICATION
    model = Communication
    guards = (OwnershipGuard("created_by"),)


class NoteRepository(ProtectedRepository):
    resource = Resource.NOTE
    model = Note
    guards = (OwnershipGuard("created_by"),)


class DocumentRepository(ProtectedRepository):
    resource = Resource.DOCUMENT
    model = Document
    guards = (SingleAttachmentGuard(), OwnershipGuard("uploaded_by"))


class LeadStatusHistoryRepository(ProtectedRepository):
    resource = Resource.LEAD_STATUS_HISTORY
    model = LeadStatusHistory


class DealStageHistoryRepository(ProtectedRepository):
    resource = Resource.DEAL_STAGE_HISTORY
    model = DealStageHistory


class AuditLogRepository(ProtectedRepository):
    resource = Resource.AUDIT_LOG
    model = AuditLog


class AutomationLogRepository(ProtectedRepository):
    resource = Resource.AUTOMATION_LOG
    model = AutomationLog

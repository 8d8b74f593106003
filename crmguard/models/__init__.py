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
from crmguard.models.audit import AuditLog, AutomationLog

__all__ = [
    "UserRole",
    "Team",
    "TeamMember",
    "Lead",
    "Contact",
    "Deal",
    "Task",
    "Communication",
    "Note",
    "Document",
    "LeadStatusHistory",
    "DealStageHistory",
    "AuditLog",
    "AutomationLog",
]

from crmguard.provenance.automation import AutomationLogger, record_automation
from crmguard.provenance.recorder import ProvenanceRecorder, TransitionObserver, record_audit

__all__ = [
    "AutomationLogger",
    "ProvenanceRecorder",
    "TransitionObserver",
    "record_audit",
    "record_automation",
]

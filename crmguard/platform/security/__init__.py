from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import (
    AuthorizationError,
    InvariantViolation,
    PermissionDenied,
    RecordingFailure,
    RecordNotFoundError,
    ResolutionFailure,
)
from crmguard.platform.security.guards import (
    ConversionGuard,
    Mutation,
    OwnershipGuard,
    SingleAttachmentGuard,
    TaskCompletionGuard,
    values_differ,
)
from crmguard.platform.security.policies import ROW_POLICIES, Operation, PolicyEvaluator, Resource
from crmguard.platform.security.privileged import PrivilegedReader
from crmguard.platform.security.rls import apply_rls_filter, validate_row_access
from crmguard.platform.security.roles import RoleResolver
from crmguard.platform.security.teams import TeamMembershipResolver

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "PermissionDenied",
    "ResolutionFailure",
    "InvariantViolation",
    "RecordingFailure",
    "RecordNotFoundError",
    "ConversionGuard",
    "TaskCompletionGuard",
    "OwnershipGuard",
    "SingleAttachmentGuard",
    "Mutation",
    "values_differ",
    "ROW_POLICIES",
    "Operation",
    "Resource",
    "PolicyEvaluator",
    "PrivilegedReader",
    "apply_rls_filter",
    "validate_row_access",
    "RoleResolver",
    "TeamMembershipResolver",
]

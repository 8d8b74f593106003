from __future__ import annotations

import uuid

from crmguard.authz.models import AppRole
from crmguard.platform.security.errors import ResolutionFailure
from crmguard.platform.security.privileged import PrivilegedReader


ROLE_PRECEDENCE: tuple[AppRole, ...] = (AppRole.ADMIN, AppRole.MANAGER, AppRole.USER)


def coerce_principal(value: str | uuid.UUID | None) -> uuid.UUID:
    if value is None:
        raise ResolutionFailure(value, "anonymous principal")
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ResolutionFailure(value, "malformed principal identity") from exc


class RoleResolver:
    """Resolves a principal to its role assignments.

    Assignments are re-read on every call so a role granted or revoked by an
    administrator takes effect on the next check.
    """

    def __init__(self, reader: PrivilegedReader) -> None:
        self._reader = reader

    def has_role(self, principal: str | uuid.UUID | None, role: AppRole | str) -> bool:
        return AppRole(role) in self._reader.roles_of(coerce_principal(principal))

    def is_admin(self, principal: str | uuid.UUID | None) -> bool:
        return self.has_role(principal, AppRole.ADMIN)

    def is_manager_or_above(self, principal: str | uuid.UUID | None) -> bool:
        roles = self._reader.roles_of(coerce_principal(principal))
        return AppRole.ADMIN in roles or AppRole.MANAGER in roles

    def effective_role(self, principal: str | uuid.UUID | None) -> AppRole:
        roles = self._reader.roles_of(coerce_principal(principal))
        for role in ROLE_PRECEDENCE:
            if role in roles:
                return role
        return AppRole.USER

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class AuthContext:
    """Principal and request metadata passed explicitly to policy, guard and recorder calls.

    ``user_id`` is ``None`` for an anonymous caller. It is kept as the raw identity
    string handed over by the identity provider; resolvers coerce it on every check.
    """

    user_id: str | None
    correlation_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

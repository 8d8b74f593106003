from __future__ import annotations

from jose import JWTError, jwt
from starlette.requests import Request

from crmguard.context import get_correlation_id
from crmguard.core.config import get_settings
from crmguard.platform.security.context import AuthContext


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


async def get_current_context(request: Request) -> AuthContext:
    """Build the explicit caller context from the bearer token and request metadata.

    A missing or invalid token yields an anonymous context, which every row
    policy denies.
    """

    correlation_id = getattr(request.state, "correlation_id", None) or get_correlation_id()
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")

    user_id: str | None = None
    token = _bearer_token(request)
    if token:
        settings = get_settings()
        try:
            payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
            subject = payload.get("sub")
            user_id = str(subject) if subject else None
        except JWTError:
            user_id = None
    request.state.principal = user_id

    return AuthContext(
        user_id=user_id,
        correlation_id=correlation_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )

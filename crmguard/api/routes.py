from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from crmguard.authz.api import roles_router, teams_router
from crmguard.core.auth import get_current_context
from crmguard.core.config import get_settings
from crmguard.core.database import get_db
from crmguard.metrics import generate_metrics_payload, metrics_content_type
from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import ResolutionFailure
from crmguard.platform.security.policies import PolicyEvaluator
from crmguard.provenance.api import router as provenance_router

router = APIRouter()
router.include_router(roles_router)
router.include_router(teams_router)
router.include_router(provenance_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> dict[str, str | None]:
    try:
        role = PolicyEvaluator(db).roles.effective_role(ctx.user_id)
    except ResolutionFailure:
        return {"user_id": None, "role": None}
    return {"user_id": ctx.user_id, "role": role.value}


@router.get("/metrics", tags=["system"])
def metrics(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    try:
        is_admin = PolicyEvaluator(db).roles.is_admin(ctx.user_id)
    except ResolutionFailure:
        is_admin = False
    if not is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing role: admin")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.sql import Select

from crmguard.metrics import observe_authz_denied
from crmguard.platform.security.context import AuthContext
from crmguard.platform.security.errors import PermissionDenied
from crmguard.platform.security.policies import Operation, PolicyEvaluator


logger = logging.getLogger("crmguard.security")


def apply_rls_filter(query: Select[Any], resource: str, ctx: AuthContext, evaluator: PolicyEvaluator) -> Select[Any]:
    """Restrict a select to the rows the principal may read; denied rows are simply absent."""

    return query.where(evaluator.select_clause(resource, ctx))


def validate_row_access(
    resource: str,
    operation: Operation | str,
    row: Mapping[str, Any],
    ctx: AuthContext,
    evaluator: PolicyEvaluator,
) -> None:
    """Raise PermissionDenied unless a rule for ``operation`` grants the row."""

    if evaluator.is_allowed(resource, operation, ctx, row):
        return
    _emit_denied(resource=resource, operation=str(operation), ctx=ctx)
    raise PermissionDenied(resource, str(operation))


def _emit_denied(*, resource: str, operation: str, ctx: AuthContext) -> None:
    observe_authz_denied(resource=resource, operation=operation)
    logger.info(
        "authz.denied",
        extra={
            "resource": resource,
            "operation": operation,
            "principal": ctx.user_id,
        },
    )

# src/coursechain/api/v1/endpoints/audit.py
"""Administrative access to the audit trail."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse

from coursechain.api.v1.dependencies import CurrentUserDep, SessionDep, principal_of
from coursechain.middleware.pipeline import HandlerResult, Pipeline, RequestContext
from coursechain.middleware.roles import require_admin
from coursechain.schemas.audit import AuditLogListResponse, AuditLogRead
from coursechain.services.audit import (
    HIGH_RISK_THRESHOLD,
    AuditAction,
    ResourceType,
    high_risk_events,
    list_audit_logs,
)

router = APIRouter(prefix="/audit", tags=["audit"])

MAX_PAGE_SIZE = 200


@router.get("/logs", response_model=AuditLogListResponse)
async def read_audit_logs(
    request: Request,
    current_user: CurrentUserDep,
    db: SessionDep,
    user_id: str | None = None,
    action: AuditAction | None = None,
    resource_type: ResourceType | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> JSONResponse:
    """List audit events, newest first. Admins only."""

    async def handler(context: RequestContext) -> HandlerResult:
        logs = list_audit_logs(
            db,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            limit=limit,
            offset=offset,
        )
        body = AuditLogListResponse(
            logs=[AuditLogRead.model_validate(log) for log in logs],
            limit=limit,
            offset=offset,
        )
        return HandlerResult(status.HTTP_200_OK, body.model_dump(mode="json"))

    pipeline = Pipeline(require_admin())
    return await pipeline.run(request, handler, principal=principal_of(current_user))


@router.get("/high-risk", response_model=AuditLogListResponse)
async def read_high_risk_events(
    request: Request,
    current_user: CurrentUserDep,
    db: SessionDep,
    min_risk: Annotated[int, Query(ge=0, le=100)] = HIGH_RISK_THRESHOLD,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 100,
) -> JSONResponse:
    """List events scored at or above ``min_risk``. Admins only."""

    async def handler(context: RequestContext) -> HandlerResult:
        logs = high_risk_events(db, min_risk_score=min_risk, limit=limit)
        body = AuditLogListResponse(
            logs=[AuditLogRead.model_validate(log) for log in logs],
            limit=limit,
        )
        return HandlerResult(status.HTTP_200_OK, body.model_dump(mode="json"))

    pipeline = Pipeline(require_admin())
    return await pipeline.run(request, handler, principal=principal_of(current_user))

# src/coursechain/api/v1/endpoints/users.py
"""User directory and profile endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursechain.api.v1.dependencies import (
    AuditWorkerDep,
    CacheDep,
    CurrentUserDep,
    OptionalUserDep,
    SessionDep,
    principal_of,
)
from coursechain.db.time import utcnow
from coursechain.middleware.audit import AuditTrail, SuspiciousActivityGuard
from coursechain.middleware.pipeline import HandlerResult, Pipeline, RequestContext
from coursechain.middleware.rate_limit import user_rate_limit
from coursechain.middleware.response_cache import (
    DETAIL_TTL,
    LIST_TTL,
    USER_TTL,
    CacheInvalidation,
    ResponseCache,
)
from coursechain.models import User
from coursechain.models.user import ROLE_ADMIN
from coursechain.schemas.auth import UserPublic
from coursechain.schemas.user import (
    ProfileUpdateRequest,
    UserDetail,
    UserDetailResponse,
    UserListResponse,
    UserProfile,
    UserProfileResponse,
)
from coursechain.services.audit import AuditAction, ResourceType, count_failed_auth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

# Any profile write can change list, detail and "me" responses alike.
USERS_CACHE_PATTERN = "cache:GET:/api/v1/users*"

MAX_PAGE_SIZE = 100


def _principal_id(context: RequestContext, _result: HandlerResult) -> str | None:
    return context.principal.id if context.principal else None


def _recent_failed_auth(db: Session):
    return lambda ip_address: count_failed_auth(db, ip_address, hours_back=1)


@router.get("", response_model=UserListResponse)
async def list_users(
    request: Request,
    db: SessionDep,
    cache: CacheDep,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> JSONResponse:
    """Page through accounts, newest first."""

    async def handler(context: RequestContext) -> HandlerResult:
        total = db.scalar(select(func.count()).select_from(User)) or 0
        users = db.scalars(
            select(User).order_by(User.created_at.desc(), User.id).limit(limit).offset(offset)
        ).all()
        body = UserListResponse(
            users=[UserPublic.model_validate(user) for user in users],
            total=int(total),
            limit=limit,
            offset=offset,
        )
        return HandlerResult(status.HTTP_200_OK, body.model_dump(mode="json"))

    return await Pipeline(ResponseCache(cache, ttl=LIST_TTL)).run(request, handler)


@router.get("/me", response_model=UserProfileResponse)
async def read_my_profile(
    request: Request,
    current_user: CurrentUserDep,
    cache: CacheDep,
) -> JSONResponse:
    """Return the caller's own profile."""

    async def handler(context: RequestContext) -> HandlerResult:
        body = UserProfileResponse(user=UserProfile.model_validate(current_user))
        return HandlerResult(status.HTTP_200_OK, body.model_dump(mode="json"))

    pipeline = Pipeline(ResponseCache(cache, ttl=USER_TTL, include_user=True))
    return await pipeline.run(request, handler, principal=principal_of(current_user))


@router.patch("/me", response_model=UserProfileResponse)
async def update_my_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    current_user: CurrentUserDep,
    db: SessionDep,
    cache: CacheDep,
    audit: AuditWorkerDep,
) -> JSONResponse:
    """Update the caller's display name, bio or avatar.

    Only fields present in the request body are changed.
    """

    async def handler(context: RequestContext) -> HandlerResult:
        changes = payload.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(current_user, field, value)
        current_user.updated_at = utcnow()
        try:
            db.commit()
            db.refresh(current_user)
        except SQLAlchemyError as err:
            db.rollback()
            logger.error("Failed to update profile for %s: %s", current_user.id, err)
            return HandlerResult.error(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update profile"
            )
        body = UserProfileResponse(user=UserProfile.model_validate(current_user))
        return HandlerResult(status.HTTP_200_OK, body.model_dump(mode="json"))

    pipeline = Pipeline(
        user_rate_limit(cache),
        SuspiciousActivityGuard(audit, failed_auth_count=_recent_failed_auth(db)),
        AuditTrail(
            audit,
            action=AuditAction.UPDATE,
            resource_type=ResourceType.USER,
            resource_id=_principal_id,
        ),
        CacheInvalidation(cache, USERS_CACHE_PATTERN),
    )
    return await pipeline.run(
        request,
        handler,
        principal=principal_of(current_user),
        attributes={"body": payload.model_dump(exclude_unset=True)},
    )


@router.get("/{user_id}", response_model=UserDetailResponse | UserProfileResponse)
async def read_user(
    user_id: str,
    request: Request,
    db: SessionDep,
    cache: CacheDep,
    audit: AuditWorkerDep,
    viewer: OptionalUserDep,
) -> JSONResponse:
    """Return the profile of any account.

    Anonymous callers and other users get the public profile. The owner
    and admins also see account timestamps such as ``last_login``.
    """

    async def handler(context: RequestContext) -> HandlerResult:
        user = db.get(User, user_id)
        if user is None:
            return HandlerResult.error(status.HTTP_404_NOT_FOUND, "User not found")
        principal = context.principal
        if principal is not None and (principal.id == user.id or principal.role == ROLE_ADMIN):
            full = UserProfileResponse(user=UserProfile.model_validate(user))
            return HandlerResult(status.HTTP_200_OK, full.model_dump(mode="json"))
        body = UserDetailResponse(user=UserDetail.model_validate(user))
        return HandlerResult(status.HTTP_200_OK, body.model_dump(mode="json"))

    pipeline = Pipeline(
        SuspiciousActivityGuard(audit, failed_auth_count=_recent_failed_auth(db)),
        ResponseCache(cache, ttl=DETAIL_TTL, include_user=True),
    )
    return await pipeline.run(
        request,
        handler,
        principal=principal_of(viewer) if viewer is not None else None,
        attributes={"params": {"user_id": user_id}},
    )

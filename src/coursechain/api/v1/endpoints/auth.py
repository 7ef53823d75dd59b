# src/coursechain/api/v1/endpoints/auth.py
"""Wallet sign-in endpoints for the CourseChain API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from coursechain.api.v1.dependencies import (
    AuditWorkerDep,
    AuthIssuerDep,
    CacheDep,
    CurrentUserDep,
    NonceStoreDep,
)
from coursechain.core.errors import AuthenticationError, PersistenceError
from coursechain.middleware.audit import AuthAudit
from coursechain.middleware.pipeline import HandlerResult, Pipeline, RequestContext
from coursechain.middleware.rate_limit import auth_rate_limit
from coursechain.schemas.auth import (
    LogoutResponse,
    MeResponse,
    NonceRequest,
    NonceResponse,
    UserPublic,
    VerifyRequest,
    VerifyResponse,
)
from coursechain.services.siwe import claimed_address

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/nonce", response_model=NonceResponse)
async def issue_nonce(
    payload: NonceRequest,
    request: Request,
    nonce_store: NonceStoreDep,
    cache: CacheDep,
) -> JSONResponse:
    """Issue a single-use nonce for the wallet to embed in its SIWE message."""

    async def handler(context: RequestContext) -> HandlerResult:
        try:
            nonce = nonce_store.issue(payload.address)
        except PersistenceError:
            return HandlerResult.error(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate nonce"
            )
        return HandlerResult(status.HTTP_200_OK, NonceResponse(nonce=nonce).model_dump())

    return await Pipeline(auth_rate_limit(cache)).run(request, handler)


@router.post("/verify", response_model=VerifyResponse)
async def verify_signature(
    payload: VerifyRequest,
    request: Request,
    issuer: AuthIssuerDep,
    cache: CacheDep,
    audit: AuditWorkerDep,
) -> JSONResponse:
    """Exchange a signed SIWE message for a bearer token.

    Every protocol failure yields the same 401 so clients cannot tell a bad
    signature from a burnt nonce; the specific reason is only logged.
    """

    async def handler(context: RequestContext) -> HandlerResult:
        try:
            result = issuer.authenticate(payload.message, payload.signature)
        except AuthenticationError as err:
            logger.warning(
                "Sign-in rejected for %s: %s (%s)",
                context.attributes.get("claimed_address") or "unknown address",
                type(err).__name__,
                err,
            )
            return HandlerResult.error(status.HTTP_401_UNAUTHORIZED, "Authentication failed")
        except PersistenceError:
            return HandlerResult.error(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create user"
            )
        body = VerifyResponse(token=result.token, user=UserPublic.model_validate(result.user))
        return HandlerResult(status.HTTP_200_OK, body.model_dump(mode="json"))

    pipeline = Pipeline(auth_rate_limit(cache), AuthAudit(audit))
    return await pipeline.run(
        request,
        handler,
        attributes={"claimed_address": claimed_address(payload.message)},
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout() -> LogoutResponse:
    """Tokens are stateless; clients discard them to sign out."""
    return LogoutResponse(success=True, message="Logged out successfully")


@router.get("/me", response_model=MeResponse)
async def read_me(current_user: CurrentUserDep) -> MeResponse:
    """Return the account behind the bearer token."""
    return MeResponse(user=UserPublic.model_validate(current_user))

"""Shared API dependencies for services, authentication and pipelines."""

import logging
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from coursechain.core.errors import ExpiredToken, TokenError, UserNotFound
from coursechain.core.settings import settings
from coursechain.db.session import get_db
from coursechain.middleware.pipeline import Principal
from coursechain.models import User
from coursechain.services.audit import AuditWorker
from coursechain.services.auth import AuthSessionIssuer
from coursechain.services.cache import CacheService
from coursechain.services.container import ServiceContainer
from coursechain.services.nonce_store import NonceStore

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for JWT authentication; missing credentials are a 401, not a 403
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_container(request: Request) -> ServiceContainer:
    """Return the services created at application startup."""
    container: ServiceContainer | None = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return container


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]


def get_cache(container: ContainerDep) -> CacheService:
    return container.cache


def get_audit_worker(container: ContainerDep) -> AuditWorker | None:
    return container.audit


def get_nonce_store(db: SessionDep) -> NonceStore:
    return NonceStore(db, ttl_seconds=settings.nonce_ttl_seconds)


def get_auth_issuer(
    db: SessionDep,
    nonce_store: Annotated[NonceStore, Depends(get_nonce_store)],
) -> AuthSessionIssuer:
    return AuthSessionIssuer(
        db,
        nonce_store,
        secret_key=settings.secret_key,
        algorithm=settings.jwt_algorithm,
        token_ttl=timedelta(minutes=settings.access_token_expire_minutes),
    )


CacheDep = Annotated[CacheService, Depends(get_cache)]
AuditWorkerDep = Annotated[AuditWorker | None, Depends(get_audit_worker)]
NonceStoreDep = Annotated[NonceStore, Depends(get_nonce_store)]
AuthIssuerDep = Annotated[AuthSessionIssuer, Depends(get_auth_issuer)]


def _token_error_detail(err: TokenError) -> str:
    if isinstance(err, ExpiredToken):
        return "Token expired"
    if isinstance(err, UserNotFound):
        return "User not found"
    return "Invalid token"


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    issuer: AuthIssuerDep,
) -> User:
    """Get the current authenticated user from the bearer token.

    Args:
        credentials: HTTP Bearer token credentials, if any were sent
        issuer: Session issuer that validates the token

    Returns:
        The live user record the token was issued for

    Raises:
        HTTPException: If the token is missing, invalid, expired or orphaned
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return issuer.resolve(credentials.credentials)
    except TokenError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_token_error_detail(err),
            headers={"WWW-Authenticate": "Bearer"},
        ) from err


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]


def principal_of(user: User) -> Principal:
    """Snapshot of the user that pipeline stages may key on."""
    return Principal(id=user.id, address=user.wallet_address, role=user.role)


def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    issuer: AuthIssuerDep,
) -> User | None:
    """Resolve the caller if a usable bearer token was sent; otherwise None.

    A bad or expired token is treated as an anonymous request, never a 401.
    """
    if credentials is None:
        return None
    try:
        return issuer.resolve(credentials.credentials)
    except TokenError as err:
        logger.debug("Ignoring unusable token on optional-auth route: %s", err)
        return None


OptionalUserDep = Annotated[User | None, Depends(get_optional_user)]

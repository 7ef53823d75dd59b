# src/coursechain/middleware/roles.py
"""Role checks for authenticated endpoints."""

from __future__ import annotations

import logging

from coursechain.middleware.pipeline import Handler, HandlerResult, RequestContext
from coursechain.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, ROLE_STUDENT

logger = logging.getLogger(__name__)

UNAUTHORIZED = 401
FORBIDDEN = 403

KNOWN_ROLES = frozenset({ROLE_STUDENT, ROLE_INSTRUCTOR, ROLE_ADMIN})


class RoleGuard:
    """Reject callers whose role is not one of ``allowed_roles``.

    The principal's role comes from the user row read for this request, so a
    role change takes effect on the caller's next request.
    """

    def __init__(self, *allowed_roles: str, message: str | None = None) -> None:
        unknown = set(allowed_roles) - KNOWN_ROLES
        if not allowed_roles or unknown:
            raise ValueError(f"invalid role set: {sorted(allowed_roles)}")
        self.allowed_roles = allowed_roles
        self.message = message or f"Access denied. Required role: {' or '.join(allowed_roles)}"

    def __call__(self, handler: Handler) -> Handler:
        async def guarded_handler(context: RequestContext) -> HandlerResult:
            principal = context.principal
            if principal is None:
                return HandlerResult.error(UNAUTHORIZED, "Authentication required")
            if principal.role not in self.allowed_roles:
                logger.info(
                    "Role check failed for %s on %s: %s not in %s",
                    principal.id,
                    context.path,
                    principal.role,
                    ",".join(self.allowed_roles),
                )
                return HandlerResult.error(FORBIDDEN, self.message)
            return await handler(context)

        return guarded_handler


def require_role(*roles: str) -> RoleGuard:
    return RoleGuard(*roles)


def require_instructor() -> RoleGuard:
    return RoleGuard(ROLE_INSTRUCTOR, message="Instructor access required")


def require_admin() -> RoleGuard:
    return RoleGuard(ROLE_ADMIN, message="Admin access required")


def require_instructor_or_admin() -> RoleGuard:
    return RoleGuard(
        ROLE_INSTRUCTOR, ROLE_ADMIN, message="Instructor or Admin access required"
    )

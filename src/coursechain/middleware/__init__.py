"""Composable request pipeline stages: rate limiting, response caching, roles and audit."""

from .audit import AuditTrail, AuthAudit, SuspiciousActivityGuard
from .pipeline import HandlerResult, Pipeline, Principal, RequestContext, compose
from .rate_limit import (
    RateLimiter,
    auth_rate_limit,
    strict_rate_limit,
    user_rate_limit,
)
from .response_cache import CacheInvalidation, ResponseCache
from .roles import (
    RoleGuard,
    require_admin,
    require_instructor,
    require_instructor_or_admin,
    require_role,
)

__all__ = [
    "AuditTrail",
    "AuthAudit",
    "CacheInvalidation",
    "HandlerResult",
    "Pipeline",
    "Principal",
    "RateLimiter",
    "RequestContext",
    "ResponseCache",
    "RoleGuard",
    "SuspiciousActivityGuard",
    "auth_rate_limit",
    "compose",
    "require_admin",
    "require_instructor",
    "require_instructor_or_admin",
    "require_role",
    "strict_rate_limit",
    "user_rate_limit",
]

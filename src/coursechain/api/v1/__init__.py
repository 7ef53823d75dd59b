# src/coursechain/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import audit_router, auth_router, users_router

__all__ = [
    "audit_router",
    "auth_router",
    "users_router",
]

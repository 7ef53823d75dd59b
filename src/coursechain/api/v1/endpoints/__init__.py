"""API endpoint modules for version 1."""

from .audit import router as audit_router
from .auth import router as auth_router
from .users import router as users_router

__all__ = [
    "audit_router",
    "auth_router",
    "users_router",
]

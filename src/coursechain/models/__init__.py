# src/coursechain/models/__init__.py
"""SQLAlchemy models for the CourseChain application."""

from .audit import AuditLog
from .nonce import AuthNonce
from .user import User

__all__ = [
    "AuditLog",
    "AuthNonce",
    "User",
]

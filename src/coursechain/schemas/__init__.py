"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .auth import (
    LogoutResponse,
    MeResponse,
    NonceRequest,
    NonceResponse,
    UserPublic,
    VerifyRequest,
    VerifyResponse,
)
from .audit import AuditLogListResponse, AuditLogRead
from .user import (
    ProfileUpdateRequest,
    UserDetail,
    UserDetailResponse,
    UserListResponse,
    UserProfile,
    UserProfileResponse,
)

__all__ = [
    "LogoutResponse", "MeResponse",
    "NonceRequest", "NonceResponse",
    "VerifyRequest", "VerifyResponse",
    "UserPublic", "UserDetail", "UserProfile",
    "UserDetailResponse", "UserProfileResponse",
    "ProfileUpdateRequest", "UserListResponse",
    "AuditLogRead", "AuditLogListResponse",
]

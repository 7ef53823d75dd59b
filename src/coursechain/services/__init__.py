"""Business logic services for the CourseChain application."""

from .auth import AuthResult, AuthSessionIssuer
from .cache import MISS, CacheService
from .nonce_store import NonceStore
from .siwe import SignatureVerifier

__all__ = [
    "AuthResult",
    "AuthSessionIssuer",
    "CacheService",
    "MISS",
    "NonceStore",
    "SignatureVerifier",
]

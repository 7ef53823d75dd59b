"""
Error taxonomy.

Callers react to the class, not the message:
AuthenticationError subclasses are protocol failures and surface to clients
as a generic 401.
TokenError subclasses reject a bearer credential.
PersistenceError means a required database write failed and maps to a 5xx.
"""


class CourseChainError(Exception):
    """Base class for all CourseChain exceptions."""


class AuthenticationError(CourseChainError):
    """Raised when the sign-in handshake fails for any reason."""


class MalformedMessage(AuthenticationError):
    """Raised when a sign-in message does not follow the SIWE grammar."""


class SignatureMismatch(AuthenticationError):
    """Raised when the recovered signer differs from the claimed address."""


class ExpiredMessage(AuthenticationError):
    """Raised when a sign-in message declares an expiration that has passed."""


class MessageNotYetValid(AuthenticationError):
    """Raised when a sign-in message declares a Not Before in the future."""


class InvalidOrExpiredNonce(AuthenticationError):
    """Raised when the nonce is unknown, already consumed, or expired."""


class TokenError(CourseChainError):
    """Base class for bearer token rejections."""


class InvalidToken(TokenError):
    """Raised when a token is malformed or its signature does not verify."""


class ExpiredToken(TokenError):
    """Raised when a token is past its expiry."""


class UserNotFound(TokenError):
    """Raised when a valid token references a user that no longer exists."""


class PersistenceError(CourseChainError):
    """Raised when a required database write fails."""

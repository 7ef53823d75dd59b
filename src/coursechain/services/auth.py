# src/coursechain/services/auth.py
"""Wallet sign-in: nonce consumption, user provisioning and bearer tokens."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coursechain.core.errors import (
    ExpiredToken,
    InvalidOrExpiredNonce,
    InvalidToken,
    PersistenceError,
    UserNotFound,
)
from coursechain.db.time import utcnow
from coursechain.models import User
from coursechain.services.nonce_store import NonceStore
from coursechain.services.siwe import SignatureVerifier

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(days=7)


@dataclass(frozen=True)
class AuthResult:
    """Bearer token and the account it was issued for."""

    token: str
    user: User
    created: bool


def create_access_token(
    user: User,
    *,
    secret_key: str,
    algorithm: str = "HS256",
    expires_in: timedelta = DEFAULT_TOKEN_TTL,
    now: datetime | None = None,
) -> str:
    """Create a JWT binding the user id and wallet address."""
    issued = now or utcnow()
    to_encode: dict[str, object] = {
        "sub": user.id,
        "address": user.wallet_address,
        "iat": int(issued.timestamp()),
        "exp": issued + expires_in,
    }
    encoded_jwt: str = jwt.encode(to_encode, secret_key, algorithm=algorithm)
    return encoded_jwt


class AuthSessionIssuer:
    """Turn a signed SIWE message into a session token, and tokens back into users."""

    def __init__(
        self,
        db: Session,
        nonce_store: NonceStore,
        *,
        secret_key: str,
        algorithm: str = "HS256",
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
        verifier: SignatureVerifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._nonces = nonce_store
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._token_ttl = token_ttl
        self._verifier = verifier or SignatureVerifier(clock=clock)
        self._clock = clock

    def authenticate(self, message: str, signature: str) -> AuthResult:
        """Verify the message, burn its nonce, upsert the user and mint a token.

        Raises:
            AuthenticationError: Any protocol failure (bad message, signature, nonce).
            PersistenceError: If the user record cannot be written.
        """
        verified = self._verifier.verify(message, signature)
        if not self._nonces.consume(verified.address, verified.nonce):
            raise InvalidOrExpiredNonce("nonce is invalid, expired or already used")

        user, created = self._provision_user(verified.address)
        token = create_access_token(
            user,
            secret_key=self._secret_key,
            algorithm=self._algorithm,
            expires_in=self._token_ttl,
            now=self._clock(),
        )
        if created:
            logger.info("Provisioned user %s for %s", user.id, user.wallet_address)
        return AuthResult(token=token, user=user, created=created)

    def resolve(self, token: str) -> User:
        """Return the live user record for a bearer token.

        Raises:
            ExpiredToken: If the token is past its expiry.
            InvalidToken: If the token is malformed, tampered with or lacks a subject.
            UserNotFound: If the referenced user no longer exists.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as err:
            raise ExpiredToken("token has expired") from err
        except JWTError as err:
            raise InvalidToken("token could not be validated") from err

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidToken("token has no subject")

        user = self._db.get(User, subject, populate_existing=True)
        if user is None:
            raise UserNotFound("user not found")
        return user

    def _find_user(self, address: str) -> User | None:
        return self._db.query(User).filter(User.wallet_address == address).first()

    def _provision_user(self, address: str) -> tuple[User, bool]:
        """Create the user on first login, otherwise stamp ``last_login``.

        A concurrent first login for the same address loses on the unique
        constraint; the loser rolls back its savepoint and reads the winner's row.
        """
        now = self._clock()
        try:
            user = self._find_user(address)
            if user is not None:
                user.last_login = now
                self._db.commit()
                return user, False

            try:
                with self._db.begin_nested():
                    user = User(
                        wallet_address=address,
                        created_at=now,
                        updated_at=now,
                        last_login=now,
                    )
                    self._db.add(user)
                created = True
            except IntegrityError:
                logger.info("Concurrent first login for %s; using existing record", address)
                user = self._find_user(address)
                if user is None:
                    raise PersistenceError("Failed to create user") from None
                user.last_login = now
                created = False
            self._db.commit()
        except SQLAlchemyError as err:
            self._db.rollback()
            logger.error("Failed to provision user: %s", err)
            raise PersistenceError("Failed to create user") from err
        return user, created

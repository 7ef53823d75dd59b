# src/coursechain/services/nonce_store.py
"""Single-use sign-in challenge storage."""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursechain.core.errors import PersistenceError
from coursechain.db.time import utcnow
from coursechain.models import AuthNonce

logger = logging.getLogger(__name__)

NONCE_ALPHABET = string.ascii_letters + string.digits
NONCE_LENGTH = 16
DEFAULT_NONCE_TTL_SECONDS = 600


def generate_nonce(length: int = NONCE_LENGTH) -> str:
    """Return a random alphanumeric nonce drawn from the system CSPRNG."""
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


class NonceStore:
    """Issue and consume sign-in nonces backed by the ``auth_nonces`` table.

    An address may hold several outstanding nonces; issuing a new one leaves
    earlier unexpired ones valid. Consumption is a single conditional DELETE,
    so the database decides which of two concurrent attempts wins.
    """

    def __init__(
        self,
        db: Session,
        *,
        ttl_seconds: int = DEFAULT_NONCE_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def issue(self, address: str) -> str:
        """Persist a fresh nonce for ``address`` and return its value.

        Raises:
            PersistenceError: If the nonce row cannot be written.
        """
        now = self._clock()
        nonce = generate_nonce()
        record = AuthNonce(
            address=address.lower(),
            nonce=nonce,
            expires_at=now + self._ttl,
            created_at=now,
        )
        try:
            self._db.add(record)
            self._db.commit()
        except SQLAlchemyError as err:
            self._db.rollback()
            logger.error("Failed to persist nonce: %s", err)
            raise PersistenceError("Failed to generate nonce") from err
        return nonce

    def consume(self, address: str, nonce: str) -> bool:
        """Delete the matching unexpired nonce; True only for the caller that removed it.

        Raises:
            PersistenceError: If the database cannot be reached.
        """
        stmt = (
            delete(AuthNonce)
            .where(
                AuthNonce.address == address.lower(),
                AuthNonce.nonce == nonce,
                AuthNonce.expires_at > self._clock(),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._db.execute(stmt)
            self._db.commit()
        except SQLAlchemyError as err:
            self._db.rollback()
            logger.error("Failed to consume nonce: %s", err)
            raise PersistenceError("Failed to consume nonce") from err
        return bool(result.rowcount)

    def purge_expired(self) -> int:
        """Remove nonces whose expiry has passed and return how many were deleted."""
        stmt = (
            delete(AuthNonce)
            .where(AuthNonce.expires_at <= self._clock())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._db.execute(stmt)
            self._db.commit()
        except SQLAlchemyError as err:
            self._db.rollback()
            raise PersistenceError("Failed to purge expired nonces") from err
        removed = int(result.rowcount or 0)
        if removed:
            logger.info("Purged %d expired nonces", removed)
        return removed

# tests/services/test_auth_service.py
"""Tests for the sign-in session issuer."""

from datetime import timedelta

import pytest
from jose import jwt
from sqlalchemy.orm import Session

from coursechain.core.errors import (
    ExpiredToken,
    InvalidOrExpiredNonce,
    InvalidToken,
    MalformedMessage,
    SignatureMismatch,
    UserNotFound,
)
from coursechain.db.time import utcnow
from coursechain.models import User
from coursechain.services.auth import AuthSessionIssuer, create_access_token
from coursechain.services.nonce_store import NonceStore
from tests.conftest import build_siwe_message, sign_text

SECRET = "unit-test-secret"


@pytest.fixture()
def nonce_store(db_session: Session) -> NonceStore:
    return NonceStore(db_session)


@pytest.fixture()
def issuer(db_session: Session, nonce_store: NonceStore) -> AuthSessionIssuer:
    return AuthSessionIssuer(db_session, nonce_store, secret_key=SECRET)


def _signed_login(account, nonce_store: NonceStore) -> tuple[str, str]:
    nonce = nonce_store.issue(account.address)
    message = build_siwe_message(account.address, nonce)
    return message, sign_text(account, message)


class TestAuthenticate:
    def test_first_login_provisions_user(self, issuer, nonce_store, wallet, db_session) -> None:
        message, signature = _signed_login(wallet, nonce_store)

        result = issuer.authenticate(message, signature)

        assert result.created is True
        assert result.user.wallet_address == wallet.address.lower()
        assert result.user.role == "student"
        assert result.user.last_login is not None
        assert db_session.query(User).count() == 1

        claims = jwt.decode(result.token, SECRET, algorithms=["HS256"])
        assert claims["sub"] == result.user.id
        assert claims["address"] == wallet.address.lower()
        assert claims["exp"] - claims["iat"] == int(timedelta(days=7).total_seconds())

    def test_returning_user_is_not_duplicated(
        self, issuer, nonce_store, wallet, test_user, db_session
    ) -> None:
        message, signature = _signed_login(wallet, nonce_store)

        result = issuer.authenticate(message, signature)

        assert result.created is False
        assert result.user.id == test_user.id
        assert result.user.last_login is not None
        assert db_session.query(User).count() == 1

    def test_nonce_cannot_be_replayed(self, issuer, nonce_store, wallet) -> None:
        message, signature = _signed_login(wallet, nonce_store)
        issuer.authenticate(message, signature)

        with pytest.raises(InvalidOrExpiredNonce):
            issuer.authenticate(message, signature)

    def test_unissued_nonce_is_rejected(self, issuer, wallet) -> None:
        message = build_siwe_message(wallet.address, "NeverIssued12345")
        with pytest.raises(InvalidOrExpiredNonce):
            issuer.authenticate(message, sign_text(wallet, message))

    def test_bad_signature_leaves_nonce_unspent(
        self, issuer, nonce_store, wallet, other_wallet
    ) -> None:
        nonce = nonce_store.issue(wallet.address)
        message = build_siwe_message(wallet.address, nonce)

        with pytest.raises(SignatureMismatch):
            issuer.authenticate(message, sign_text(other_wallet, message))

        assert nonce_store.consume(wallet.address, nonce) is True

    def test_malformed_message(self, issuer) -> None:
        with pytest.raises(MalformedMessage):
            issuer.authenticate("hello", "0x00")

    def test_concurrent_first_login_falls_back_to_existing_row(
        self, issuer, nonce_store, wallet, test_user, mocker
    ) -> None:
        # Simulate losing the race: the lookup misses, then the insert hits the
        # unique constraint because the other request already created the row.
        mocker.patch.object(issuer, "_find_user", side_effect=[None, test_user])
        message, signature = _signed_login(wallet, nonce_store)

        result = issuer.authenticate(message, signature)

        assert result.created is False
        assert result.user.id == test_user.id


class TestResolve:
    def test_resolves_live_user(self, issuer, test_user) -> None:
        token = create_access_token(test_user, secret_key=SECRET)
        assert issuer.resolve(token).id == test_user.id

    def test_sees_current_profile(self, issuer, test_user, db_session) -> None:
        token = create_access_token(test_user, secret_key=SECRET)
        test_user.display_name = "Renamed"
        db_session.flush()
        assert issuer.resolve(token).display_name == "Renamed"

    def test_expired_token(self, issuer, test_user) -> None:
        token = create_access_token(
            test_user,
            secret_key=SECRET,
            expires_in=timedelta(minutes=5),
            now=utcnow() - timedelta(hours=1),
        )
        with pytest.raises(ExpiredToken):
            issuer.resolve(token)

    def test_wrong_secret(self, issuer, test_user) -> None:
        token = create_access_token(test_user, secret_key="someone-else")
        with pytest.raises(InvalidToken):
            issuer.resolve(token)

    def test_garbage_token(self, issuer) -> None:
        with pytest.raises(InvalidToken):
            issuer.resolve("not.a.jwt")

    def test_token_without_subject(self, issuer) -> None:
        token = jwt.encode({"address": "0x" + "0" * 40}, SECRET, algorithm="HS256")
        with pytest.raises(InvalidToken):
            issuer.resolve(token)

    def test_deleted_user(self, issuer, test_user, db_session) -> None:
        token = create_access_token(test_user, secret_key=SECRET)
        db_session.delete(test_user)
        db_session.flush()

        with pytest.raises(UserNotFound):
            issuer.resolve(token)

# tests/services/test_nonce_store.py
"""Tests for single-use nonce issuance and consumption."""

import re
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from coursechain.core.errors import PersistenceError
from coursechain.db.time import utcnow
from coursechain.models import AuthNonce
from coursechain.services.nonce_store import NonceStore, generate_nonce

ADDRESS = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


class _Clock:
    def __init__(self) -> None:
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> _Clock:
    return _Clock()


@pytest.fixture()
def store(db_session: Session, clock: _Clock) -> NonceStore:
    return NonceStore(db_session, ttl_seconds=600, clock=clock)


def test_generate_nonce_shape() -> None:
    nonce = generate_nonce()
    assert re.fullmatch(r"[A-Za-z0-9]{16}", nonce)
    assert generate_nonce() != nonce


def test_issue_persists_lowercase_address(store: NonceStore, db_session: Session, clock: _Clock) -> None:
    nonce = store.issue(ADDRESS)

    record = db_session.query(AuthNonce).filter(AuthNonce.nonce == nonce).one()
    assert record.address == ADDRESS.lower()
    assert len(record.nonce) == 16


def test_consume_succeeds_once(store: NonceStore) -> None:
    nonce = store.issue(ADDRESS)

    assert store.consume(ADDRESS, nonce) is True
    assert store.consume(ADDRESS, nonce) is False


def test_consume_is_case_insensitive_on_address(store: NonceStore) -> None:
    nonce = store.issue(ADDRESS)
    assert store.consume(ADDRESS.lower(), nonce) is True


def test_consume_rejects_other_address(store: NonceStore) -> None:
    nonce = store.issue(ADDRESS)
    assert store.consume("0x" + "1" * 40, nonce) is False
    # Still available to its owner.
    assert store.consume(ADDRESS, nonce) is True


def test_consume_rejects_expired_nonce(store: NonceStore, clock: _Clock) -> None:
    nonce = store.issue(ADDRESS)
    clock.advance(seconds=601)
    assert store.consume(ADDRESS, nonce) is False


def test_consume_just_before_expiry(store: NonceStore, clock: _Clock) -> None:
    nonce = store.issue(ADDRESS)
    clock.advance(seconds=599)
    assert store.consume(ADDRESS, nonce) is True


def test_consume_unknown_nonce(store: NonceStore) -> None:
    assert store.consume(ADDRESS, "neverissued12345") is False


def test_reissue_keeps_earlier_nonces_valid(store: NonceStore) -> None:
    first = store.issue(ADDRESS)
    second = store.issue(ADDRESS)

    assert first != second
    assert store.consume(ADDRESS, first) is True
    assert store.consume(ADDRESS, second) is True


def test_purge_expired_removes_only_stale_rows(
    store: NonceStore, db_session: Session, clock: _Clock
) -> None:
    stale = store.issue(ADDRESS)
    clock.advance(minutes=11)
    fresh = store.issue(ADDRESS)

    assert store.purge_expired() == 1
    remaining = {row.nonce for row in db_session.query(AuthNonce).all()}
    assert remaining == {fresh}
    assert stale not in remaining


def test_issue_wraps_database_errors() -> None:
    db = MagicMock()
    db.commit.side_effect = OperationalError("INSERT", {}, Exception("db down"))
    store = NonceStore(db)

    with pytest.raises(PersistenceError, match="Failed to generate nonce"):
        store.issue(ADDRESS)
    db.rollback.assert_called_once()


def test_consume_wraps_database_errors() -> None:
    db = MagicMock()
    db.execute.side_effect = OperationalError("DELETE", {}, Exception("db down"))
    store = NonceStore(db)

    with pytest.raises(PersistenceError):
        store.consume(ADDRESS, "abcdefgh12345678")
    db.rollback.assert_called_once()

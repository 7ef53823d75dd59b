# tests/services/test_concurrency.py
"""Races between separate database sessions on the sign-in path."""

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coursechain.models import User
from coursechain.services.auth import AuthSessionIssuer
from coursechain.services.nonce_store import NonceStore
from tests.conftest import build_siwe_message, sign_text

SECRET = "concurrency-secret"


def _issue_nonce(factory: Callable[[], Session], address: str) -> str:
    with factory() as db:
        return NonceStore(db).issue(address)


def test_only_one_session_consumes_a_nonce(file_session_factory, wallet) -> None:
    nonce = _issue_nonce(file_session_factory, wallet.address)
    barrier = threading.Barrier(2)

    def consume() -> bool:
        with file_session_factory() as db:
            store = NonceStore(db)
            barrier.wait(timeout=5)
            return store.consume(wallet.address, nonce)

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(lambda _: consume(), range(2)))

    assert sorted(results) == [False, True]


def test_concurrent_first_logins_create_one_user(file_session_factory, wallet, mocker) -> None:
    nonces = [_issue_nonce(file_session_factory, wallet.address) for _ in range(2)]
    messages = [build_siwe_message(wallet.address, nonce) for nonce in nonces]
    first_db, second_db = file_session_factory(), file_session_factory()
    first = AuthSessionIssuer(first_db, NonceStore(first_db), secret_key=SECRET)
    second = AuthSessionIssuer(second_db, NonceStore(second_db), secret_key=SECRET)

    # The second session looked the address up before the first one committed.
    real_find = second._find_user
    lookups: list[str] = []

    def stale_then_real(address: str) -> User | None:
        lookups.append(address)
        return None if len(lookups) == 1 else real_find(address)

    mocker.patch.object(second, "_find_user", side_effect=stale_then_real)

    try:
        winner = first.authenticate(messages[0], sign_text(wallet, messages[0]))
        first_db.close()
        loser = second.authenticate(messages[1], sign_text(wallet, messages[1]))
    finally:
        second_db.close()

    assert winner.created is True
    assert loser.created is False
    assert loser.user.id == winner.user.id
    assert len(lookups) == 2
    with file_session_factory() as db:
        assert db.scalar(select(func.count()).select_from(User)) == 1

from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import datetime
from typing import Any

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from fastapi import FastAPI
from fastapi.testclient import TestClient
from siwe import SiweMessage
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-only")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["AUDIT_ENABLED"] = "false"

from coursechain.core.settings import settings
from coursechain.db.session import Base
from coursechain.db.session import get_db as app_get_session
from coursechain.db.time import utcnow
from coursechain.main import app as fastapi_app
from coursechain.models import User
from coursechain.services.auth import create_access_token
from coursechain.services.siwe import format_timestamp

TEST_DB_URL = "sqlite://"
TEST_DOMAIN = "courses.example"
TEST_URI = "https://courses.example/login"


def _make_engine() -> Engine:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own; emit it ourselves so SAVEPOINTs behave.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = _make_engine()
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def audit_session_factory() -> Generator[Callable[[], Session], None, None]:
    """Session factory on a private database, for code that opens its own sessions."""
    engine = _make_engine()
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path) -> Generator[Callable[[], Session], None, None]:
    """Session factory on a file database; every session gets its own connection.

    Transactions open with BEGIN IMMEDIATE so concurrent writers queue on
    the database lock instead of failing with SQLITE_BUSY.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'coursechain.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    finally:
        engine.dispose()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    # Each client runs startup again, so every test gets an empty in-memory cache.
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def wallet() -> LocalAccount:
    """A fresh Ethereum key pair."""
    return Account.create()


@pytest.fixture()
def other_wallet() -> LocalAccount:
    return Account.create()


def build_siwe_message(
    address: str,
    nonce: str,
    *,
    issued_at: datetime | None = None,
    statement: str | None = "Sign in to CourseChain",
    **fields: Any,
) -> str:
    """Render a SIWE message for ``address`` with sensible test defaults.

    ``expiration_time`` and ``not_before`` may be given as datetimes.
    """
    for name in ("expiration_time", "not_before"):
        if isinstance(fields.get(name), datetime):
            fields[name] = format_timestamp(fields[name])
    message = SiweMessage(
        domain=TEST_DOMAIN,
        address=address,
        uri=TEST_URI,
        version="1",
        chain_id=1,
        nonce=nonce,
        issued_at=format_timestamp(issued_at or utcnow()),
        statement=statement,
        **fields,
    )
    return message.prepare_message()


def sign_text(account: LocalAccount, text: str) -> str:
    """Sign ``text`` the way a wallet's personal_sign does; return 0x-prefixed hex."""
    signed = account.sign_message(encode_defunct(text=text))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture()
def test_user(db_session: Session, wallet: LocalAccount) -> Iterator[User]:
    """Create and return a persisted user owning ``wallet``."""
    now = utcnow()
    user = User(
        wallet_address=wallet.address.lower(),
        display_name="Test User",
        created_at=now,
        updated_at=now,
    )
    db_session.add(user)
    db_session.flush()
    db_session.refresh(user)
    yield user


@pytest.fixture()
def other_user(db_session: Session, other_wallet: LocalAccount) -> Iterator[User]:
    """Create and return a second persisted user."""
    now = utcnow()
    user = User(
        wallet_address=other_wallet.address.lower(),
        display_name="Other User",
        created_at=now,
        updated_at=now,
    )
    db_session.add(user)
    db_session.flush()
    db_session.refresh(user)
    yield user


def _bearer(user: User) -> dict[str, str]:
    token = create_access_token(
        user, secret_key=settings.secret_key, algorithm=settings.jwt_algorithm
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_token(test_user: User) -> dict[str, str]:
    """Return authorization headers for the primary test user."""
    return _bearer(test_user)


@pytest.fixture()
def other_auth_token(other_user: User) -> dict[str, str]:
    """Return authorization headers for the secondary test user."""
    return _bearer(other_user)


class FakeClock:
    """Monotonic-style clock that only moves when a test advances it."""

    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class BrokenBackend:
    """Cache backend whose every call fails as if the server were unreachable."""

    async def _fail(self, *args: Any, **kwargs: Any) -> Any:
        raise ConnectionError("connection refused")

    get = set = delete = delete_pattern = exists = increment = ttl = clear = _fail

    async def close(self) -> None:
        return None

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from inventory_ledger import database
from inventory_ledger.app import create_app
from inventory_ledger.config import Settings
from inventory_ledger.database import Base, create_db_engine, create_session_factory
from inventory_ledger.guard import ConsistencyGuard
from inventory_ledger.identity import Actor, Role
from inventory_ledger.operations import StockService


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        log_level="warning",
        retry_base_delay=0.001,
        retry_max_delay=0.01,
        lock_timeout=10.0,
    )


@pytest.fixture(name="db_engine")
def db_engine_fixture(settings: Settings) -> Generator[Any, None, None]:
    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(db_engine):  # type: ignore[no-untyped-def]
    return create_session_factory(db_engine)


@pytest.fixture(name="service")
def service_fixture(session_factory) -> StockService:  # type: ignore[no-untyped-def]
    guard = ConsistencyGuard(max_attempts=5, base_delay=0.001, max_delay=0.01, lock_timeout=10.0)
    return StockService(session_factory, guard)


@pytest.fixture(name="actor")
def actor_fixture() -> Actor:
    return Actor(
        subject="user-1",
        email="clerk@example.com",
        roles=frozenset({Role.WAREHOUSE_STAFF, Role.INVENTORY_MANAGER}),
    )


def make_token(**claims: Any) -> str:
    # Signature is irrelevant: the gateway has already validated it.
    return jwt.encode(claims, "gateway-secret", algorithm="HS256")


def auth_header(*roles: str, email: str = "staff@example.com") -> dict[str, str]:
    token = make_token(sub="user-42", email=email, groups=list(roles))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="client")
def client_fixture(settings: Settings, session_factory) -> Generator[TestClient, None, None]:  # type: ignore[no-untyped-def]
    app = create_app(settings, session_factory=session_factory)
    with TestClient(app) as client:
        yield client


@pytest.fixture(name="impatient_session_factory")
def impatient_session_factory_fixture(settings: Settings, db_engine, monkeypatch):  # type: ignore[no-untyped-def]
    """Sessions on the same database that give up on a held lock after 0.2s."""

    monkeypatch.setattr(database, "SQLITE_BUSY_TIMEOUT", 0.2)
    engine = create_db_engine(settings.database_url)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture(name="impatient_service")
def impatient_service_fixture(impatient_session_factory) -> StockService:  # type: ignore[no-untyped-def]
    guard = ConsistencyGuard(max_attempts=5, base_delay=0.001, max_delay=0.01, lock_timeout=10.0)
    return StockService(impatient_session_factory, guard)

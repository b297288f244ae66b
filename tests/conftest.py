from __future__ import annotations

import os

os.environ.setdefault("PIGGYBANK_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("PIGGYBANK_JWT_SECRET", "test-secret")
os.environ.setdefault("PIGGYBANK_APP_ENV", "test")
os.environ.setdefault("PIGGYBANK_LEDGER_RETRY_BACKOFF_MS", "1")

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from piggybank import models  # noqa: F401
from piggybank.db.base import Base
from piggybank.services import ledger
from tests.factories import Family, seed_family


@pytest.fixture()
def engine(tmp_path: Path) -> Iterator[Engine]:
    # File-backed so that worker threads share one database.
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'piggybank.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works.
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        # Take the write lock up front; SQLite then serializes writers.
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def family(session_factory: sessionmaker[Session]) -> Family:
    with session_factory() as db:
        return seed_family(db)


@pytest.fixture()
def db(session_factory: sessionmaker[Session], family: Family) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fund(db: Session, family: Family) -> Callable[..., None]:
    """Give a family member starting balances through the public operations."""

    def _fund(child_id: str | None = None, *, wallet: int = 0, savings: int = 0) -> None:
        target = child_id or family.child_id
        if wallet:
            ledger.grant_allowance(
                db,
                actor_id=family.parent_id,
                group_id=family.group_id,
                child_id=target,
                amount=wallet,
            )
        if savings:
            ledger.deposit_to_savings(
                db,
                actor_id=family.parent_id,
                group_id=family.group_id,
                child_id=target,
                amount=savings,
            )

    return _fund

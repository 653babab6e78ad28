"""Shared fixtures: throwaway SQLite databases, accounts, a controllable clock."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

from config import Settings
from db import create_db_and_tables, get_session
from lifecycle import LifecycleEngine
from main import app
from models import Account, DietaryKind, Role
from schemas import ListingCreate, ListingItemIn, Location

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def _sqlite_engine(path) -> Engine:
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )

    # SQLite leaves foreign keys unchecked unless asked, Postgres always checks
    @event.listens_for(engine, "connect")
    def _enforce_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    create_db_and_tables(engine)
    return engine


@pytest.fixture
def db_engine(tmp_path) -> Iterator[Engine]:
    engine = _sqlite_engine(tmp_path / "test.db")
    yield engine
    engine.dispose()


@pytest.fixture
def race_engine(tmp_path) -> Iterator[Engine]:
    """
    Every transaction starts with BEGIN IMMEDIATE, so concurrent writers
    queue on the database lock much like row locks serialize them in Postgres.
    """
    engine = _sqlite_engine(tmp_path / "race.db")

    @event.listens_for(engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    # connections pooled while creating tables predate the listeners
    engine.dispose()

    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine) -> Iterator[Session]:
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://", secret_key="test-secret")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(session, settings, clock) -> LifecycleEngine:
    return LifecycleEngine(session, settings, clock=clock)


def make_account(session: Session, role: Role, name: str) -> Account:
    account = Account(
        email=f"{name.lower()}@example.com",
        name=name,
        role=role,
        phone="555-0100",
        address=f"{name} street 1",
        password_hash="not-a-real-hash",
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


@pytest.fixture
def donor(session) -> Account:
    return make_account(session, Role.DONOR, "Dana")


@pytest.fixture
def receiver(session) -> Account:
    return make_account(session, Role.RECEIVER, "Ravi")


@pytest.fixture
def other_receiver(session) -> Account:
    return make_account(session, Role.RECEIVER, "Rita")


@pytest.fixture
def courier(session) -> Account:
    return make_account(session, Role.COURIER, "Chen")


@pytest.fixture
def other_courier(session) -> Account:
    return make_account(session, Role.COURIER, "Cora")


def listing_payload(**overrides) -> ListingCreate:
    data = dict(
        items=[
            ListingItemIn(name="Veg Fried Rice", quantity=10, ingredients_text="rice, vegetables, oil"),
        ],
        dietary_kind=DietaryKind.VEG,
        pickup_window="18:00-20:00",
        shelf_life_hours=6,
        address="12 Temple Road",
        location=Location(lat=13.6300, lng=79.4200),
    )
    data.update(overrides)
    return ListingCreate(**data)


@pytest.fixture
def client(db_engine) -> Iterator[TestClient]:
    def override_session() -> Iterator[Session]:
        with Session(db_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()

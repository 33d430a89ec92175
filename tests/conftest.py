"""
Pytest configuration for the Question Rotation Engine.

Provides fixtures for:
- A controllable clock and a UTC daily window clock
- Coordinators wired to the in-memory store with a zero grace period
- Database connection management for integration tests

Test doubles live in `tests/fakes.py`.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Generator, Optional

import psycopg
import pytest

from question_rotation.clock import Granularity, WindowClock
from question_rotation.config import Settings
from question_rotation.coordinator import RotationCoordinator
from question_rotation.generation.fallback import FallbackPool
from question_rotation.infrastructure.memory_store import MemoryItemStore
from question_rotation.infrastructure.store import SCHEMA_SQL
from tests.fakes import FailingGenerator, FrozenClock


@pytest.fixture
def clock() -> WindowClock:
    return WindowClock(timezone="UTC", granularity=Granularity.DAY)


@pytest.fixture
def now() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> MemoryItemStore:
    return MemoryItemStore()


@pytest.fixture
def make_coordinator(
    clock: WindowClock, now: FrozenClock
) -> Callable[..., RotationCoordinator]:
    """
    Factory for coordinators with a zero grace period and the frozen clock.

    Keyword arguments override the coordinator's own keyword defaults.
    """

    def _make(
        store: Any,
        generator: Optional[Any] = None,
        **kwargs: Any,
    ) -> RotationCoordinator:
        options: dict[str, Any] = {"now": now, "grace_seconds": 0.0}
        options.update(kwargs)
        return RotationCoordinator(
            store,
            generator or FailingGenerator(),
            FallbackPool(),
            options.pop("clock", clock),
            **options,
        )

    return _make


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "question_rotation"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return test_settings.dsn


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="function")
def clean_questions_table(db_connection: psycopg.Connection) -> Generator[None, None, None]:
    """
    Create the schema if needed and empty the questions table around each test.
    """
    with db_connection.cursor() as cur:
        cur.execute(SCHEMA_SQL)
        cur.execute("TRUNCATE TABLE public.questions;")
    yield
    with db_connection.cursor() as cur:
        cur.execute("TRUNCATE TABLE public.questions;")

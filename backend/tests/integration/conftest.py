# tests/integration/conftest.py
"""Integration fixtures - real PostgreSQL, skipped unless TEST_DATABASE_URL is set"""

import os

import pytest
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from lead_attribution.database import Base, create_store_engine

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture(scope="session")
def pg_engine():
    """Create test database engine (once per test session)"""
    if not TEST_DATABASE_URL:
        pytest.skip("TEST_DATABASE_URL not set")

    engine = create_store_engine(TEST_DATABASE_URL, timeout_seconds=10)
    Base.metadata.create_all(engine)

    yield engine

    with engine.begin() as conn:
        conn.execute(text(
            "TRUNCATE TABLE association_links, leads, companies, icps RESTART IDENTITY CASCADE"
        ))
    engine.dispose()


@pytest.fixture
def pg_session_factory(pg_engine):
    yield sessionmaker(bind=pg_engine, autoflush=False, expire_on_commit=False)

    with pg_engine.begin() as conn:
        conn.execute(text("TRUNCATE TABLE association_links RESTART IDENTITY"))

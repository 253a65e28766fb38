# tests/conftest.py
"""Shared fixtures - in-memory sqlite store, ICP catalog, lead factory"""

import os

# Settings are read at import time; keep the default engine off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lead_attribution.database import Base, create_store_engine
from lead_attribution.models import ICP, Lead, LeadStatus
from lead_attribution.services.icp_reconciler import IcpCatalog
from lead_attribution.services.lead_deduplicator import canonicalize


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    engine = create_store_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Session bound to the in-memory database"""
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def icp(db):
    """Persisted active ICP"""
    icp = ICP(id=uuid4(), name="Private Lenders", is_active=True)
    db.add(icp)
    db.commit()
    return icp


@pytest.fixture
def fallback_icp(db):
    """Second persisted ICP, used as an explicit fallback"""
    icp = ICP(id=uuid4(), name="Unclassified", is_active=True)
    db.add(icp)
    db.commit()
    return icp


@pytest.fixture
def catalog(icp, fallback_icp):
    return IcpCatalog([icp, fallback_icp])


@pytest.fixture
def make_lead():
    """
    Factory for transient leads.

    `age_minutes` counts back from a fixed base time so ordering is explicit.
    """
    base = datetime(2024, 6, 1, 12, 0, 0)

    def _make(company_name="Acme Inc", age_minutes=0, **kwargs):
        kwargs.setdefault("status", LeadStatus.NEW.value)
        return Lead(
            id=kwargs.pop("id", uuid4()),
            company_name=company_name,
            company_key=canonicalize(company_name) or None,
            created_at=kwargs.pop("created_at", base - timedelta(minutes=age_minutes)),
            **kwargs
        )

    return _make

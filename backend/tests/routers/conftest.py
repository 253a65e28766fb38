# tests/routers/conftest.py
"""API client bound to the per-test in-memory session"""

import pytest
from fastapi.testclient import TestClient

from lead_attribution.database import get_db
from lead_attribution.main import app


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()

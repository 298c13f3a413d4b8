"""
Configuration partagée pour tous les tests.
Override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL,
et le planificateur de snapshots pour observer les recalculs demandés.
"""

import uuid
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.scheduler import get_snapshot_scheduler
from app.schemas.auth import TokenClaims
from app.services import auth_service


@pytest.fixture
def mock_db():
    return MagicMock()


@pytest.fixture
def mock_scheduler():
    return MagicMock()


@pytest.fixture
def client(mock_db, mock_scheduler):
    """Client HTTP de test avec la BDD et le planificateur mockés (hub temps réel neuf)."""
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_snapshot_scheduler] = lambda: mock_scheduler
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_token():
    """Fabrique de jetons : make_token("TEACHER", school_id, stream=True)."""
    def _make(role: str, school_id=None, stream: bool = False, user_id=None) -> str:
        claims = TokenClaims(sub=str(user_id or uuid.uuid4()), role=role, school_id=school_id)
        if stream:
            return auth_service.create_stream_token(claims).token
        return auth_service.create_access_token(claims)
    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(role: str, school_id=None, user_id=None) -> dict:
        return {"Authorization": f"Bearer {make_token(role, school_id, user_id=user_id)}"}
    return _headers

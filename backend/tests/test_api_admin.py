"""
Tests d'intégration des routes super-admin et du jeton SSE.
"""

import uuid
from unittest.mock import patch

from app.realtime.connection_tracker import CONNECT
from app.schemas.dashboard import AdminDashboardResponse, AdminTotals
from app.services import auth_service

SCHOOL_ID = uuid.uuid4()


# ----------------------------------------------------------------
# GET /api/v1/admin/connection-stats
# ----------------------------------------------------------------

def test_statistiques_de_connexion(client, auth_headers):
    tracker = client.app.state.hub.connection_tracker
    tracker.track(str(SCHOOL_ID), CONNECT)
    tracker.track(str(SCHOOL_ID), CONNECT)
    tracker.track("admin", CONNECT)

    response = client.get("/api/v1/admin/connection-stats", headers=auth_headers("SUPER_ADMIN"))

    assert response.status_code == 200
    assert response.json() == {"total": 3, "by_key": {str(SCHOOL_ID): 2, "admin": 1}}


def test_statistiques_vides(client, auth_headers):
    response = client.get("/api/v1/admin/connection-stats", headers=auth_headers("SUPER_ADMIN"))
    assert response.json() == {"total": 0, "by_key": {}}


def test_statistiques_refusees_a_l_admin_d_ecole(client, auth_headers):
    response = client.get("/api/v1/admin/connection-stats", headers=auth_headers("SCHOOL_ADMIN", SCHOOL_ID))
    assert response.status_code == 403
    assert response.json() == {"error": "Accès refusé."}


def test_statistiques_sans_jeton(client):
    response = client.get("/api/v1/admin/connection-stats")
    assert response.status_code == 401
    assert response.json() == {"error": "Jeton manquant."}


# ----------------------------------------------------------------
# GET /api/v1/admin/dashboard
# ----------------------------------------------------------------

def test_tableau_de_bord_global(client, auth_headers):
    result = AdminDashboardResponse(totals=AdminTotals(total_schools=2), schools=[], weekly_stats=[])
    with patch("app.routers.admin.dashboard_service.get_admin_dashboard", return_value=result) as service:
        response = client.get("/api/v1/admin/dashboard?period=week", headers=auth_headers("SUPER_ADMIN"))

    assert response.status_code == 200
    assert response.json()["totals"]["total_schools"] == 2
    assert service.call_args.args[2] == "week"


def test_tableau_de_bord_global_periode_invalide(client, auth_headers):
    with patch(
        "app.routers.admin.dashboard_service.get_admin_dashboard",
        side_effect=ValueError("Période invalide : year."),
    ):
        response = client.get("/api/v1/admin/dashboard?period=year", headers=auth_headers("SUPER_ADMIN"))
    assert response.status_code == 400
    assert "Période invalide" in response.json()["detail"]


# ----------------------------------------------------------------
# GET /api/v1/auth/stream-token
# ----------------------------------------------------------------

def test_jeton_de_flux(client, auth_headers):
    response = client.get("/api/v1/auth/stream-token", headers=auth_headers("GUARD", SCHOOL_ID))
    assert response.status_code == 200
    body = response.json()
    claims = auth_service.decode_stream_token(body["token"], require_stream_claim=True)
    assert claims.role == "GUARD"
    assert claims.school_id == SCHOOL_ID
    assert body["expires_in"] > 0


def test_jeton_de_flux_sans_authentification(client):
    response = client.get("/api/v1/auth/stream-token")
    assert response.status_code == 401


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"

"""
Tests d'intégration des routes de présences et du tableau de bord d'école.
Les services sont patchés : on vérifie les droits, la publication des scans
du jour et les recalculs de snapshots demandés.
"""

import uuid
from datetime import date, datetime, timezone
from unittest.mock import patch

from app.models.attendance import DailyAttendance
from app.schemas.attendance import (
    AttendanceEventInfo,
    AttendanceEventPayload,
    EventStudent,
    ScanResult,
    TodayAttendanceResponse,
)

SCHOOL_ID = uuid.uuid4()
CLASS_ID = uuid.uuid4()
STUDENT_ID = uuid.uuid4()
NOW = datetime(2026, 3, 2, 4, 5, tzinfo=timezone.utc)


def scan_outcome(class_id=CLASS_ID):
    info = AttendanceEventInfo(
        id=uuid.uuid4(),
        student_id=STUDENT_ID,
        event_type="IN",
        timestamp=NOW,
        student=EventStudent(id=STUDENT_ID, name="Alice", class_id=class_id, class_name="6A"),
    )
    return ScanResult(status="PRESENT", event=info), AttendanceEventPayload(school_id=SCHOOL_ID, event=info)


# ----------------------------------------------------------------
# POST /schools/{id}/scans
# ----------------------------------------------------------------

class TestScans:
    URL = f"/api/v1/schools/{SCHOOL_ID}/scans"

    def test_scan_du_jour_publie(self, client, auth_headers, mock_scheduler):
        received = []
        client.app.state.hub.event_emitter.on_attendance(SCHOOL_ID, received.append)

        with patch("app.routers.attendance.attendance_service.record_scan", return_value=scan_outcome()):
            response = client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "event_type": "IN"},
                headers=auth_headers("GUARD", SCHOOL_ID),
            )

        assert response.status_code == 200
        assert response.json()["status"] == "PRESENT"
        assert len(received) == 1
        assert received[0].event.student.name == "Alice"
        mock_scheduler.mark_school_dirty.assert_called_once_with(SCHOOL_ID)
        mock_scheduler.mark_class_dirty.assert_called_once_with(SCHOOL_ID, CLASS_ID)

    def test_eleve_sans_classe(self, client, auth_headers, mock_scheduler):
        with patch("app.routers.attendance.attendance_service.record_scan", return_value=scan_outcome(None)):
            client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "event_type": "IN"},
                headers=auth_headers("SCHOOL_ADMIN", SCHOOL_ID),
            )
        mock_scheduler.mark_school_dirty.assert_called_once_with(SCHOOL_ID)
        mock_scheduler.mark_class_dirty.assert_not_called()

    def test_doublon_sans_publication(self, client, auth_headers, mock_scheduler):
        received = []
        client.app.state.hub.event_emitter.on_attendance(SCHOOL_ID, received.append)
        duplicate = (ScanResult(ignored=True, reason="duplicate_scan", status="PRESENT"), None)

        with patch("app.routers.attendance.attendance_service.record_scan", return_value=duplicate):
            response = client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "event_type": "IN"},
                headers=auth_headers("GUARD", SCHOOL_ID),
            )

        assert response.json()["ignored"] is True
        assert response.json()["reason"] == "duplicate_scan"
        assert received == []
        mock_scheduler.mark_school_dirty.assert_not_called()

    def test_scan_concurrent_sans_erreur_serveur(self, client, auth_headers, mock_scheduler):
        concurrent = (ScanResult(ignored=True, reason="duplicate_event"), None)
        with patch("app.routers.attendance.attendance_service.record_scan", return_value=concurrent):
            response = client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "event_type": "IN"},
                headers=auth_headers("GUARD", SCHOOL_ID),
            )

        assert response.status_code == 200
        assert response.json()["reason"] == "duplicate_event"
        mock_scheduler.mark_school_dirty.assert_not_called()

    def test_eleve_introuvable(self, client, auth_headers):
        with patch(
            "app.routers.attendance.attendance_service.record_scan",
            side_effect=ValueError(f"Élève {STUDENT_ID} introuvable."),
        ):
            response = client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "event_type": "OUT"},
                headers=auth_headers("GUARD", SCHOOL_ID),
            )
        assert response.status_code == 404

    def test_type_invalide(self, client, auth_headers):
        response = client.post(
            self.URL, json={"student_id": str(STUDENT_ID), "event_type": "PASS"},
            headers=auth_headers("GUARD", SCHOOL_ID),
        )
        assert response.status_code == 422

    def test_enseignant_refuse(self, client, auth_headers):
        response = client.post(
            self.URL, json={"student_id": str(STUDENT_ID), "event_type": "IN"},
            headers=auth_headers("TEACHER", SCHOOL_ID),
        )
        assert response.status_code == 403
        assert response.json() == {"error": "Accès refusé."}


# ----------------------------------------------------------------
# POST /schools/{id}/attendance/upsert
# ----------------------------------------------------------------

class TestUpsert:
    URL = f"/api/v1/schools/{SCHOOL_ID}/attendance/upsert"

    def _record(self):
        return DailyAttendance(
            id=uuid.uuid4(), student_id=STUDENT_ID, school_id=SCHOOL_ID, date=date(2026, 3, 2), status="EXCUSED",
        )

    def test_marquage_du_jour_recalcule_les_snapshots(self, client, auth_headers, mock_scheduler):
        with patch("app.routers.attendance.attendance_service.upsert_status", return_value=(self._record(), CLASS_ID)), \
             patch("app.routers.attendance.attendance_service.is_today_for_school", return_value=True):
            response = client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "date": "2026-03-02", "status": "EXCUSED"},
                headers=auth_headers("TEACHER", SCHOOL_ID),
            )

        assert response.status_code == 200
        assert response.json()["status"] == "EXCUSED"
        mock_scheduler.mark_school_dirty.assert_called_once_with(SCHOOL_ID)
        mock_scheduler.mark_class_dirty.assert_called_once_with(SCHOOL_ID, CLASS_ID)

    def test_marquage_d_une_autre_date(self, client, auth_headers, mock_scheduler):
        with patch("app.routers.attendance.attendance_service.upsert_status", return_value=(self._record(), CLASS_ID)), \
             patch("app.routers.attendance.attendance_service.is_today_for_school", return_value=False):
            response = client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "date": "2026-02-27", "status": "EXCUSED"},
                headers=auth_headers("SCHOOL_ADMIN", SCHOOL_ID),
            )
        assert response.status_code == 200
        mock_scheduler.mark_school_dirty.assert_not_called()

    def test_eleve_sans_classe_pour_l_enseignant(self, client, auth_headers):
        with patch(
            "app.routers.attendance.attendance_service.upsert_status",
            side_effect=ValueError("L'élève n'a pas de classe assignée."),
        ):
            response = client.post(
                self.URL, json={"student_id": str(STUDENT_ID), "date": "2026-03-02", "status": "EXCUSED"},
                headers=auth_headers("TEACHER", SCHOOL_ID),
            )
        assert response.status_code == 400

    def test_gardien_refuse(self, client, auth_headers):
        response = client.post(
            self.URL, json={"student_id": str(STUDENT_ID), "date": "2026-03-02", "status": "EXCUSED"},
            headers=auth_headers("GUARD", SCHOOL_ID),
        )
        assert response.status_code == 403


# ----------------------------------------------------------------
# GET /schools/{id}/attendance/today et /dashboard
# ----------------------------------------------------------------

def test_liste_du_jour(client, auth_headers):
    result = TodayAttendanceResponse(date=date(2026, 3, 2), timezone="Asia/Tashkent", items=[])
    with patch("app.routers.attendance.attendance_service.get_today_attendance", return_value=result) as service:
        response = client.get(
            f"/api/v1/schools/{SCHOOL_ID}/attendance/today?status=ABSENT",
            headers=auth_headers("GUARD", SCHOOL_ID),
        )
    assert response.status_code == 200
    assert response.json()["timezone"] == "Asia/Tashkent"
    assert service.call_args.args[4] == "ABSENT"


def test_liste_du_jour_autre_ecole(client, auth_headers):
    response = client.get(
        f"/api/v1/schools/{SCHOOL_ID}/attendance/today",
        headers=auth_headers("SCHOOL_ADMIN", uuid.uuid4()),
    )
    assert response.status_code == 403


def test_tableau_de_bord_ecole_introuvable(client, auth_headers):
    with patch(
        "app.routers.dashboard.dashboard_service.get_school_dashboard",
        side_effect=ValueError(f"École {SCHOOL_ID} introuvable."),
    ):
        response = client.get(f"/api/v1/schools/{SCHOOL_ID}/dashboard", headers=auth_headers("SUPER_ADMIN"))
    assert response.status_code == 404
    assert "introuvable" in response.json()["detail"]


def test_tableau_de_bord_periode_invalide(client, auth_headers):
    with patch(
        "app.routers.dashboard.dashboard_service.get_school_dashboard",
        side_effect=ValueError("Période invalide : year."),
    ):
        response = client.get(
            f"/api/v1/schools/{SCHOOL_ID}/dashboard?period=year",
            headers=auth_headers("SCHOOL_ADMIN", SCHOOL_ID),
        )
    assert response.status_code == 400


def test_tableau_de_bord_sans_jeton(client):
    response = client.get(f"/api/v1/schools/{SCHOOL_ID}/dashboard")
    assert response.status_code == 401
    assert response.json() == {"error": "Jeton manquant."}

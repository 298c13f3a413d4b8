"""
Tests unitaires du calcul des snapshots école / classe.
Les requêtes d'agrégation sont patchées : on vérifie le choix des classes
par scope et la normalisation des compteurs.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.exceptions import AggregationFailure
from app.models.school import School
from app.models.school_class import SchoolClass
from app.schemas.dashboard import NoScanSplit, StatusCounts
from app.services import snapshot_service
from app.services.snapshot_service import compute_class_snapshot, compute_school_snapshot

SCHOOL_ID = uuid.uuid4()
# 05:15 UTC = 10:15 à Tachkent
NOW = datetime(2026, 3, 2, 5, 15, tzinfo=timezone.utc)


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

def make_school(timezone_name="Asia/Tashkent", cutoff=180):
    school = MagicMock(spec=School)
    school.id = SCHOOL_ID
    school.timezone = timezone_name
    school.absence_cutoff_minutes = cutoff
    school.late_threshold_minutes = 15
    return school


def make_class(start="09:00", end="14:00", school_id=SCHOOL_ID):
    cls = MagicMock(spec=SchoolClass)
    cls.id = uuid.uuid4()
    cls.school_id = school_id
    cls.name = "6A"
    cls.start_time = start
    cls.end_time = end
    return cls


def make_db(school, classes):
    db = MagicMock()
    by_id = {c.id: c for c in classes}

    def get(model, key):
        if model is School:
            return school
        return by_id.get(key)

    db.get.side_effect = get
    db.execute.return_value.scalars.return_value.all.return_value = classes
    return db


def patch_queries(counts=None, in_school=0, student_counts=None, split=None, total=0):
    return [
        patch.object(snapshot_service, "get_status_counts_by_range", return_value=(counts or StatusCounts(), 1)),
        patch.object(snapshot_service, "count_currently_in_school", return_value=in_school),
        patch.object(snapshot_service, "get_class_student_counts", return_value=student_counts or {}),
        patch.object(snapshot_service, "compute_no_scan_split", return_value=(split or NoScanSplit(), total)),
    ]


class _Patched:
    def __init__(self, patches):
        self.patches = patches
        self.mocks = []

    def __enter__(self):
        self.mocks = [p.start() for p in self.patches]
        return self.mocks

    def __exit__(self, *exc):
        for p in self.patches:
            p.stop()


# ----------------------------------------------------------------
# compute_school_snapshot
# ----------------------------------------------------------------

class TestSchoolSnapshot:
    def test_ecole_introuvable(self):
        db = make_db(None, [])
        assert compute_school_snapshot(db, SCHOOL_ID, "started", now=NOW) is None

    def test_absents_normalises(self):
        """30 élèves, 20 présents, 3 retards, 1 excusé, 2+1 en attente, 5 absents bruts → 3."""
        cls = make_class()
        db = make_db(make_school(), [cls])
        patches = patch_queries(
            counts=StatusCounts(present=20, late=3, absent=2, excused=1),
            in_school=18,
            split=NoScanSplit(pending_early=2, pending_late=1, absent=3),
            total=30,
        )
        with _Patched(patches):
            snapshot = compute_school_snapshot(db, SCHOOL_ID, "started", now=NOW)

        assert snapshot.type == "school_snapshot"
        assert snapshot.scope == "started"
        assert snapshot.timestamp == NOW
        assert snapshot.stats.total_students == 30
        assert snapshot.stats.absent == 3
        assert snapshot.stats.currently_in_school == 18
        assert snapshot.weekly_stats is None

    def test_scope_active_sans_classe_active(self):
        """À 10:15, un cours de 15:00 n'est pas actif : snapshot à zéro sans requête."""
        db = make_db(make_school(), [make_class(start="15:00", end="17:00")])
        patches = patch_queries()
        with _Patched(patches) as mocks:
            snapshot = compute_school_snapshot(db, SCHOOL_ID, "active", now=NOW)

        assert snapshot.stats.total_students == 0
        assert snapshot.stats.present == 0
        mocks[0].assert_not_called()

    def test_scope_started_repli_sur_toutes_les_classes(self):
        cls = make_class(start="15:00", end="17:00")
        db = make_db(make_school(), [cls])
        patches = patch_queries(total=12)
        with _Patched(patches) as mocks:
            snapshot = compute_school_snapshot(db, SCHOOL_ID, "started", now=NOW)

        assert snapshot.stats.total_students == 12
        assert mocks[0].call_args.args[3] == [cls.id]

    def test_scope_invalide(self):
        db = make_db(make_school(), [make_class()])
        with pytest.raises(ValueError):
            compute_school_snapshot(db, SCHOOL_ID, "everything", now=NOW)

    def test_echec_base_devient_aggregation_failure(self):
        db = make_db(make_school(), [make_class()])
        db.execute.side_effect = OperationalError("SELECT", {}, Exception("connexion perdue"))
        with pytest.raises(AggregationFailure):
            compute_school_snapshot(db, SCHOOL_ID, "started", now=NOW)

    def test_tendance_hebdomadaire_sur_demande(self):
        db = make_db(make_school(), [make_class()])
        with _Patched(patch_queries()), patch.object(snapshot_service, "get_weekly_stats", return_value=[]) as weekly:
            snapshot = compute_school_snapshot(db, SCHOOL_ID, "started", include_weekly=True, now=NOW)
        assert snapshot.weekly_stats == []
        weekly.assert_called_once()


# ----------------------------------------------------------------
# compute_class_snapshot
# ----------------------------------------------------------------

class TestClassSnapshot:
    def test_classe_d_une_autre_ecole(self):
        cls = make_class(school_id=uuid.uuid4())
        db = make_db(make_school(), [cls])
        assert compute_class_snapshot(db, SCHOOL_ID, cls.id, "started", now=NOW) is None

    def test_snapshot_de_classe(self):
        cls = make_class()
        db = make_db(make_school(), [cls])
        with _Patched(patch_queries(counts=StatusCounts(present=8), split=NoScanSplit(absent=5), total=10)):
            snapshot = compute_class_snapshot(db, SCHOOL_ID, cls.id, "active", now=NOW)

        assert snapshot.type == "class_snapshot"
        assert snapshot.class_id == cls.id
        assert snapshot.stats.present == 8
        assert snapshot.stats.absent == 2


# ----------------------------------------------------------------
# fetch_* (hors boucle asyncio)
# ----------------------------------------------------------------

def test_fetch_school_snapshots_deux_scopes_et_session_fermee():
    session = MagicMock()
    calls = []

    def fake_compute(db, school_id, scope, include_weekly=False, now=None):
        calls.append(scope)
        return None if scope == "active" else MagicMock(scope=scope)

    with patch.object(snapshot_service, "compute_school_snapshot", side_effect=fake_compute):
        result = asyncio.run(snapshot_service.fetch_school_snapshots(SCHOOL_ID, session_factory=lambda: session))

    assert calls == ["started", "active"]
    assert len(result) == 1
    session.close.assert_called_once()

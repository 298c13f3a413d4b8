"""
Tests unitaires du planificateur de snapshots (APScheduler mocké).
Couverture : debounce des demandes, publication, garde "en cours", rafraîchissement périodique.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from app.realtime.hub import RealtimeHub
from app.scheduler import REFRESH_JOB_ID, SnapshotScheduler
from app.schemas.snapshot import ClassSnapshot, SchoolSnapshot, SnapshotStats
from app.services import snapshot_service

SCHOOL_ID = uuid.uuid4()
CLASS_ID = uuid.uuid4()
NOW = datetime(2026, 3, 2, 5, 0, tzinfo=timezone.utc)


def make_scheduler(hub=None):
    apscheduler = MagicMock()
    apscheduler.get_job.return_value = None
    apscheduler.running = False
    return SnapshotScheduler(hub or RealtimeHub(), session_factory=MagicMock(), debounce_seconds=1.5, scheduler=apscheduler)


def school_snapshot(scope):
    return SchoolSnapshot(school_id=SCHOOL_ID, scope=scope, timestamp=NOW, stats=SnapshotStats())


# ----------------------------------------------------------------
# Debounce
# ----------------------------------------------------------------

class TestDebounce:
    def test_premier_marquage_programme_un_recalcul(self):
        scheduler = make_scheduler()
        scheduler.mark_school_dirty(SCHOOL_ID)

        kwargs = scheduler.scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == f"school:{SCHOOL_ID}"
        assert kwargs["trigger"] == "date"
        assert kwargs["args"] == [SCHOOL_ID]

    def test_recalcul_deja_en_attente_absorbe_la_demande(self):
        scheduler = make_scheduler()
        scheduler.scheduler.get_job.return_value = MagicMock()
        scheduler.mark_school_dirty(SCHOOL_ID)
        scheduler.mark_class_dirty(SCHOOL_ID, CLASS_ID)
        scheduler.scheduler.add_job.assert_not_called()

    def test_cle_de_classe(self):
        scheduler = make_scheduler()
        scheduler.mark_class_dirty(SCHOOL_ID, CLASS_ID)
        kwargs = scheduler.scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == f"class:{SCHOOL_ID}:{CLASS_ID}"
        assert kwargs["args"] == [SCHOOL_ID, CLASS_ID]


# ----------------------------------------------------------------
# Recalculs
# ----------------------------------------------------------------

class TestFlush:
    def test_snapshots_ecole_publies(self):
        hub = RealtimeHub()
        scheduler = make_scheduler(hub)
        received, admin = [], []
        hub.snapshot_bus.on_school_snapshot(SCHOOL_ID, received.append)
        hub.snapshot_bus.on_admin_snapshot(admin.append)
        snapshots = [school_snapshot("started"), school_snapshot("active")]

        with patch.object(snapshot_service, "fetch_school_snapshots", AsyncMock(return_value=snapshots)):
            asyncio.run(scheduler.flush_school(SCHOOL_ID))

        assert [s.scope for s in received] == ["started", "active"]
        assert len(admin) == 2

    def test_snapshots_classe_publies(self):
        hub = RealtimeHub()
        scheduler = make_scheduler(hub)
        received = []
        hub.snapshot_bus.on_class_snapshot(SCHOOL_ID, CLASS_ID, received.append)
        snapshot = ClassSnapshot(school_id=SCHOOL_ID, class_id=CLASS_ID, scope="started", timestamp=NOW, stats=SnapshotStats())

        with patch.object(snapshot_service, "fetch_class_snapshots", AsyncMock(return_value=[snapshot])):
            asyncio.run(scheduler.flush_class(SCHOOL_ID, CLASS_ID))

        assert received == [snapshot]

    def test_erreur_journalisee_sans_propagation(self):
        scheduler = make_scheduler()
        failing = AsyncMock(side_effect=RuntimeError("connexion perdue"))
        with patch.object(snapshot_service, "fetch_school_snapshots", failing), \
             patch("app.scheduler.logger") as logger:
            asyncio.run(scheduler.flush_school(SCHOOL_ID))
        logger.error.assert_called_once()
        assert SCHOOL_ID not in scheduler._schools_in_flight

    def test_un_seul_recalcul_a_la_fois_par_ecole(self):
        scheduler = make_scheduler()
        calls = []

        async def slow(school_id, include_weekly=False, session_factory=None):
            calls.append(school_id)
            await asyncio.sleep(0.05)
            return []

        async def scenario():
            await asyncio.gather(scheduler.flush_school(SCHOOL_ID), scheduler.flush_school(SCHOOL_ID))

        with patch.object(snapshot_service, "fetch_school_snapshots", side_effect=slow):
            asyncio.run(scenario())
        assert calls == [SCHOOL_ID]


def test_rafraichissement_periodique():
    hub = RealtimeHub()
    other_school = uuid.uuid4()
    hub.snapshot_bus.on_class_snapshot(SCHOOL_ID, CLASS_ID, lambda s: None)
    scheduler = make_scheduler(hub)
    scheduler.flush_school = AsyncMock()
    scheduler.flush_class = AsyncMock()

    with patch("app.scheduler._list_school_ids", return_value=[SCHOOL_ID, other_school]):
        asyncio.run(scheduler.refresh_all())

    assert [c.args[0] for c in scheduler.flush_school.await_args_list] == [SCHOOL_ID, other_school]
    scheduler.flush_class.assert_awaited_once_with(SCHOOL_ID, CLASS_ID)


def test_demarrage_programme_le_rafraichissement():
    scheduler = make_scheduler()
    scheduler.start()
    assert scheduler.scheduler.add_job.call_args.kwargs["id"] == REFRESH_JOB_ID
    scheduler.scheduler.start.assert_called_once()

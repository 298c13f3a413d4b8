"""
Planificateur APScheduler des snapshots temps réel.

- mark_school_dirty / mark_class_dirty : une modification de présence programme un recalcul
  différé (debounce). Tant qu'un recalcul est en attente pour une clé, les nouvelles
  demandes sont absorbées par celui-ci.
- Toutes les SNAPSHOT_INTERVAL_SECONDS : recalcul de secours de toutes les écoles et des
  classes ayant au moins un abonné.
- Un seul recalcul à la fois par école ou par classe (garde "en cours").

Les jobs tournent dans la boucle asyncio (AsyncIOScheduler) : la publication sur le bus
se fait donc dans le thread de la boucle, les requêtes SQL dans le pool de threads.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select

from app.config import settings
from app.database import SessionLocal, session_scope
from app.models.school import School
from app.services import snapshot_service

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "snapshot_refresh_all"


def _list_school_ids(session_factory) -> list:
    with session_scope(session_factory) as db:
        return list(db.execute(select(School.id)).scalars().all())


class SnapshotScheduler:
    def __init__(
        self,
        hub,
        session_factory=SessionLocal,
        debounce_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.hub = hub
        self.session_factory = session_factory
        self.debounce_seconds = debounce_seconds if debounce_seconds is not None else settings.SNAPSHOT_DEBOUNCE_SECONDS
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.SNAPSHOT_INTERVAL_SECONDS
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._schools_in_flight: Set[uuid.UUID] = set()
        self._classes_in_flight: Set[tuple] = set()

    # --- Demandes de recalcul ---

    def mark_school_dirty(self, school_id: uuid.UUID) -> None:
        self._debounce(f"school:{school_id}", self.flush_school, [school_id])

    def mark_class_dirty(self, school_id: uuid.UUID, class_id: uuid.UUID) -> None:
        self._debounce(f"class:{school_id}:{class_id}", self.flush_class, [school_id, class_id])

    def _debounce(self, job_id: str, func, args: list) -> None:
        if self.scheduler.get_job(job_id) is not None:
            return
        self.scheduler.add_job(
            func,
            trigger="date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=self.debounce_seconds),
            args=args,
            id=job_id,
            misfire_grace_time=None,
        )

    # --- Recalculs ---

    async def flush_school(self, school_id: uuid.UUID, include_weekly: bool = False) -> None:
        """Calcule les snapshots started / active de l'école et les publie. Erreurs journalisées."""
        if school_id in self._schools_in_flight:
            return
        self._schools_in_flight.add(school_id)
        try:
            snapshots = await snapshot_service.fetch_school_snapshots(
                school_id, include_weekly, session_factory=self.session_factory,
            )
            for snapshot in snapshots:
                self.hub.snapshot_bus.publish_school_snapshot(snapshot)
        except Exception as exc:
            logger.error("Échec du recalcul des snapshots de l'école %s : %s", school_id, exc, exc_info=True)
        finally:
            self._schools_in_flight.discard(school_id)

    async def flush_class(self, school_id: uuid.UUID, class_id: uuid.UUID, include_weekly: bool = False) -> None:
        key = (school_id, class_id)
        if key in self._classes_in_flight:
            return
        self._classes_in_flight.add(key)
        try:
            snapshots = await snapshot_service.fetch_class_snapshots(
                school_id, class_id, include_weekly, session_factory=self.session_factory,
            )
            for snapshot in snapshots:
                self.hub.snapshot_bus.publish_class_snapshot(snapshot)
        except Exception as exc:
            logger.error("Échec du recalcul des snapshots de la classe %s : %s", class_id, exc, exc_info=True)
        finally:
            self._classes_in_flight.discard(key)

    async def refresh_all(self) -> None:
        """Recalcul périodique : toutes les écoles, puis les classes suivies par au moins un client."""
        try:
            school_ids = await run_in_threadpool(_list_school_ids, self.session_factory)
        except Exception as exc:
            logger.error("Rafraîchissement périodique des snapshots impossible : %s", exc, exc_info=True)
            return

        for school_id in school_ids:
            await self.flush_school(school_id)
        for school_id, class_id in self.hub.snapshot_bus.active_class_keys():
            await self.flush_class(school_id, class_id)

    # --- Démarrage / arrêt ---

    def start(self) -> None:
        """Démarre le planificateur (appelé au démarrage de l'API, dans la boucle asyncio)."""
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            self.refresh_all,
            trigger="interval",
            seconds=self.interval_seconds,
            id=REFRESH_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Scheduler démarré, rafraîchissement des snapshots toutes les %s s.", self.interval_seconds)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler arrêté.")


def get_snapshot_scheduler(request: Request) -> SnapshotScheduler:
    """Dépendance FastAPI : le planificateur de snapshots de l'application."""
    return request.app.state.snapshot_scheduler

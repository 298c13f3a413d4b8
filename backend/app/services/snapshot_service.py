"""
Calcul des snapshots agrégés "aujourd'hui" pour une école ou une classe.

Un snapshot est une projection recalculable des présences : il ne possède aucun état
et peut être reconstruit à tout moment. Deux scopes :
- started : classes dont le cours a commencé (repli sur toutes les classes si aucune)
- active  : classes dont la fenêtre début → max(fin, début + cutoff) contient maintenant

Les fonctions compute_* sont synchrones (session SQLAlchemy) ; les variantes fetch_*
les exécutent dans le pool de threads pour ne pas bloquer la boucle asyncio.
"""

import logging
import uuid
from datetime import date, datetime
from typing import List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal, session_scope
from app.exceptions import AggregationFailure
from app.models.school import School
from app.models.school_class import SchoolClass
from app.schemas.snapshot import ClassSnapshot, SchoolSnapshot, SnapshotStats
from app.services.attendance_stats import (
    compute_no_scan_split,
    count_currently_in_school,
    get_class_student_counts,
    get_status_counts_by_range,
    get_weekly_stats,
)
from app.services.attendance_status import (
    SCOPE_ACTIVE,
    SCOPE_STARTED,
    get_now_minutes_in_zone,
    normalize_absent,
    resolve_scope_class_ids,
)
from app.services.date_utils import DateRange, local_today, resolve_timezone, utc_now

logger = logging.getLogger(__name__)

SNAPSHOT_SCOPES = (SCOPE_STARTED, SCOPE_ACTIVE)


def school_schedule(school: School) -> tuple:
    """(fuseau, cutoff d'absence) de l'école, avec les valeurs par défaut de la config."""
    tz = resolve_timezone(school.timezone, settings.DEFAULT_TIMEZONE)
    cutoff = school.absence_cutoff_minutes
    if cutoff is None:
        cutoff = settings.DEFAULT_ABSENCE_CUTOFF_MINUTES
    return tz, cutoff


def class_to_dict(school_class: SchoolClass) -> dict:
    return {
        "id": school_class.id,
        "name": school_class.name,
        "start_time": school_class.start_time,
        "end_time": school_class.end_time,
    }


def compute_today_stats(
    db: Session,
    school_id: uuid.UUID,
    today: date,
    classes: Sequence[dict],
    scope_class_ids: Sequence,
    absence_cutoff_minutes: int,
    now_minutes: int,
) -> SnapshotStats:
    """
    Compteurs du jour pour les classes retenues. Le nombre d'absents est borné pour que
    present + late + excused + pending_early + pending_late + absent ≤ total_students.
    """
    if not scope_class_ids:
        return SnapshotStats()

    wanted = set(scope_class_ids)
    scoped_classes = [cls for cls in classes if cls["id"] in wanted]
    day = DateRange(today, today, "today")

    counts, _ = get_status_counts_by_range(db, school_id, day, scope_class_ids)
    currently_in_school = count_currently_in_school(db, school_id, today, scope_class_ids)
    class_student_counts = get_class_student_counts(db, school_id, scope_class_ids)
    split, total_students = compute_no_scan_split(
        db, school_id, today, scoped_classes, class_student_counts, absence_cutoff_minutes, now_minutes,
    )

    absent = normalize_absent(
        total_students,
        counts.present,
        counts.late,
        counts.excused,
        split.pending_early,
        split.pending_late,
        counts.absent + split.absent,
    )

    return SnapshotStats(
        total_students=total_students,
        present=counts.present,
        late=counts.late,
        absent=absent,
        excused=counts.excused,
        currently_in_school=currently_in_school,
        pending_early=split.pending_early,
        pending_late=split.pending_late,
    )


def _compute(
    db: Session,
    school: School,
    classes: List[dict],
    scope: str,
    include_weekly: bool,
    now: datetime,
) -> tuple:
    tz, cutoff = school_schedule(school)
    today = local_today(now, tz)
    now_minutes = get_now_minutes_in_zone(now, tz)

    scope_class_ids = resolve_scope_class_ids(classes, scope, now_minutes, cutoff)
    stats = compute_today_stats(db, school.id, today, classes, scope_class_ids, cutoff, now_minutes)
    weekly = get_weekly_stats(db, school.id, today, scope_class_ids) if include_weekly else None
    return stats, weekly


def compute_school_snapshot(
    db: Session,
    school_id: uuid.UUID,
    scope: str,
    include_weekly: bool = False,
    now: Optional[datetime] = None,
) -> Optional[SchoolSnapshot]:
    """
    Snapshot d'une école pour un scope. Retourne None si l'école est introuvable.
    Lève AggregationFailure si une requête échoue.
    """
    now = now or utc_now()
    try:
        school = db.get(School, school_id)
        if school is None:
            return None
        classes = [
            class_to_dict(c) for c in db.execute(
                select(SchoolClass).where(SchoolClass.school_id == school_id)
            ).scalars().all()
        ]
        stats, weekly = _compute(db, school, classes, scope, include_weekly, now)
    except SQLAlchemyError as exc:
        raise AggregationFailure(f"Échec du calcul du snapshot de l'école {school_id}.") from exc

    return SchoolSnapshot(
        school_id=school_id,
        scope=scope,
        timestamp=now,
        stats=stats,
        weekly_stats=weekly,
    )


def compute_class_snapshot(
    db: Session,
    school_id: uuid.UUID,
    class_id: uuid.UUID,
    scope: str,
    include_weekly: bool = False,
    now: Optional[datetime] = None,
) -> Optional[ClassSnapshot]:
    """Snapshot d'une classe. Retourne None si l'école ou la classe (dans cette école) est introuvable."""
    now = now or utc_now()
    try:
        school = db.get(School, school_id)
        school_class = db.get(SchoolClass, class_id)
        if school is None or school_class is None or school_class.school_id != school_id:
            return None
        stats, weekly = _compute(db, school, [class_to_dict(school_class)], scope, include_weekly, now)
    except SQLAlchemyError as exc:
        raise AggregationFailure(f"Échec du calcul du snapshot de la classe {class_id}.") from exc

    return ClassSnapshot(
        school_id=school_id,
        class_id=class_id,
        scope=scope,
        timestamp=now,
        stats=stats,
        weekly_stats=weekly,
    )


def _school_snapshots_job(session_factory, school_id: uuid.UUID, include_weekly: bool) -> list:
    with session_scope(session_factory) as db:
        snapshots = [compute_school_snapshot(db, school_id, scope, include_weekly) for scope in SNAPSHOT_SCOPES]
    return [s for s in snapshots if s is not None]


def _class_snapshots_job(session_factory, school_id: uuid.UUID, class_id: uuid.UUID, include_weekly: bool) -> list:
    with session_scope(session_factory) as db:
        snapshots = [
            compute_class_snapshot(db, school_id, class_id, scope, include_weekly) for scope in SNAPSHOT_SCOPES
        ]
    return [s for s in snapshots if s is not None]


async def fetch_school_snapshots(
    school_id: uuid.UUID,
    include_weekly: bool = False,
    session_factory=SessionLocal,
) -> List[SchoolSnapshot]:
    """Snapshots "started" puis "active" d'une école, calculés hors de la boucle d'événements."""
    return await run_in_threadpool(_school_snapshots_job, session_factory, school_id, include_weekly)


async def fetch_class_snapshots(
    school_id: uuid.UUID,
    class_id: uuid.UUID,
    include_weekly: bool = False,
    session_factory=SessionLocal,
) -> List[ClassSnapshot]:
    """Snapshots "started" puis "active" d'une classe, calculés hors de la boucle d'événements."""
    return await run_in_threadpool(_class_snapshots_job, session_factory, school_id, class_id, include_weekly)

"""
Requêtes d'agrégation sur les présences (lecture seule).

Convention sur class_ids :
- None       → toutes les classes de l'école (pas de filtre)
- liste vide → aucune classe éligible : chaque agrégat renvoie une structure à zéro
               sans interroger la base (ex. enseignant sans classe assignée)
- liste      → filtre Student.class_id IN (...)

Seuls les élèves actifs (Student.is_active) sont comptés.
"""

import logging
import uuid
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.attendance import DailyAttendance
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.schemas.dashboard import ClassBreakdownItem, NoScanSplit, PendingStudent, StatusCounts
from app.schemas.snapshot import WeeklyStat
from app.services.attendance_status import compute_status, round_half_up, split_no_scan_counts
from app.services.date_utils import DAY_NAMES, DateRange, trailing_week

logger = logging.getLogger(__name__)

# Clé technique regroupant les élèves sans classe dans la répartition sans scan
UNASSIGNED_KEY = "__unassigned__"


def _is_empty(class_ids: Optional[Sequence]) -> bool:
    return class_ids is not None and len(class_ids) == 0


def _attendance_query(school_id: uuid.UUID, start: date, end: date, class_ids: Optional[Sequence]):
    """Conditions communes : école, plage inclusive [start, end], élèves actifs, filtre classes."""
    conditions = [
        DailyAttendance.school_id == school_id,
        DailyAttendance.date >= start,
        DailyAttendance.date <= end,
        Student.is_active.is_(True),
    ]
    if class_ids is not None:
        conditions.append(Student.class_id.in_(class_ids))
    return conditions


def get_status_counts_by_range(
    db: Session,
    school_id: uuid.UUID,
    date_range: DateRange,
    class_ids: Optional[Sequence] = None,
) -> Tuple[StatusCounts, int]:
    """
    Nombre d'enregistrements par statut sur la plage, et nombre de jours distincts
    ayant au moins un enregistrement (1 minimum, pour le calcul des moyennes).
    """
    if _is_empty(class_ids):
        return StatusCounts(), 1

    conditions = _attendance_query(school_id, date_range.start_date, date_range.end_date, class_ids)

    rows = db.execute(
        select(DailyAttendance.status, func.count())
        .select_from(DailyAttendance)
        .join(Student, Student.id == DailyAttendance.student_id)
        .where(*conditions)
        .group_by(DailyAttendance.status)
    ).all()

    days_count = db.execute(
        select(func.count(func.distinct(DailyAttendance.date)))
        .select_from(DailyAttendance)
        .join(Student, Student.id == DailyAttendance.student_id)
        .where(*conditions)
    ).scalar() or 1

    counts = StatusCounts()
    for status, count in rows:
        if status == "PRESENT":
            counts.present = count
        elif status == "LATE":
            counts.late = count
        elif status == "ABSENT":
            counts.absent = count
        elif status == "EXCUSED":
            counts.excused = count

    return counts, days_count


def average_per_day(total: int, days_count: int) -> int:
    """
    Moyenne journalière approximative sur une plage de plusieurs jours (arrondi à l'entier).
    Les compteurs "aujourd'hui" n'ont pas de sens sur plusieurs jours : c'est une estimation.
    """
    if days_count <= 1:
        return total
    return round_half_up(total / days_count)


def get_weekly_status_map(
    db: Session,
    school_id: uuid.UUID,
    start_date: date,
    end_date: date,
    class_ids: Optional[Sequence] = None,
) -> Dict[str, Dict[str, int]]:
    """Compteurs present / late / absent par date ISO sur [start_date, end_date]."""
    status_map: Dict[str, Dict[str, int]] = {}
    if _is_empty(class_ids):
        return status_map

    rows = db.execute(
        select(DailyAttendance.date, DailyAttendance.status, func.count())
        .select_from(DailyAttendance)
        .join(Student, Student.id == DailyAttendance.student_id)
        .where(*_attendance_query(school_id, start_date, end_date, class_ids))
        .group_by(DailyAttendance.date, DailyAttendance.status)
    ).all()

    for day, status, count in rows:
        entry = status_map.setdefault(day.isoformat(), {"present": 0, "late": 0, "absent": 0})
        if status == "PRESENT":
            entry["present"] += count
        elif status == "LATE":
            entry["late"] += count
        elif status == "ABSENT":
            entry["absent"] += count

    return status_map


def build_weekly_stats(status_map: Dict[str, Dict[str, int]], end_date: date) -> List[WeeklyStat]:
    """Les 7 jours se terminant à end_date ; les jours sans donnée sont à zéro."""
    stats = []
    for day in trailing_week(end_date):
        key = day.isoformat()
        entry = status_map.get(key, {})
        stats.append(WeeklyStat(
            date=key,
            day_name=DAY_NAMES[day.weekday()],
            present=entry.get("present", 0),
            late=entry.get("late", 0),
            absent=entry.get("absent", 0),
        ))
    return stats


def get_weekly_stats(
    db: Session,
    school_id: uuid.UUID,
    end_date: date,
    class_ids: Optional[Sequence] = None,
) -> List[WeeklyStat]:
    """Tendance sur les 7 jours se terminant à end_date."""
    status_map = get_weekly_status_map(db, school_id, end_date - timedelta(days=6), end_date, class_ids)
    return build_weekly_stats(status_map, end_date)


def get_class_breakdown(
    db: Session,
    school_id: uuid.UUID,
    date_range: DateRange,
    classes: Sequence[dict],
    class_ids: Optional[Sequence] = None,
) -> List[ClassBreakdownItem]:
    """
    Par classe : effectif, arrivés (PRESENT + LATE) et retards sur la plage.
    classes : [{"id", "name", "student_count"}]
    """
    if not classes or _is_empty(class_ids):
        return []

    rows = db.execute(
        select(Student.class_id, DailyAttendance.status, func.count())
        .select_from(DailyAttendance)
        .join(Student, Student.id == DailyAttendance.student_id)
        .where(*_attendance_query(school_id, date_range.start_date, date_range.end_date, class_ids))
        .group_by(Student.class_id, DailyAttendance.status)
    ).all()

    per_class: Dict[uuid.UUID, Dict[str, int]] = {}
    for class_id, status, count in rows:
        if class_id is None:
            continue
        entry = per_class.setdefault(class_id, {"present": 0, "late": 0})
        if status == "PRESENT":
            entry["present"] += count
        elif status == "LATE":
            entry["present"] += count
            entry["late"] += count

    breakdown = []
    for cls in classes:
        entry = per_class.get(cls["id"], {"present": 0, "late": 0})
        breakdown.append(ClassBreakdownItem(
            class_id=cls["id"],
            class_name=cls["name"],
            total=cls.get("student_count", 0),
            present=entry["present"],
            late=entry["late"],
        ))
    return breakdown


def get_class_student_counts(
    db: Session,
    school_id: uuid.UUID,
    class_ids: Optional[Sequence] = None,
) -> Dict[Optional[uuid.UUID], int]:
    """Effectif actif par classe (clé None = élèves sans classe, seulement sans filtre)."""
    if _is_empty(class_ids):
        return {}

    conditions = [Student.school_id == school_id, Student.is_active.is_(True)]
    if class_ids is not None:
        conditions.append(Student.class_id.in_(class_ids))

    rows = db.execute(
        select(Student.class_id, func.count())
        .where(*conditions)
        .group_by(Student.class_id)
    ).all()
    return {class_id: count for class_id, count in rows}


def get_attendance_counts_by_class(
    db: Session,
    school_id: uuid.UUID,
    day: date,
    class_ids: Sequence,
) -> Tuple[Dict[uuid.UUID, int], int]:
    """Nombre d'élèves ayant un enregistrement ce jour, par classe, et nombre sans classe."""
    if not class_ids:
        return {}, 0

    rows = db.execute(
        select(Student.class_id, func.count())
        .select_from(DailyAttendance)
        .join(Student, Student.id == DailyAttendance.student_id)
        .where(*_attendance_query(school_id, day, day, class_ids))
        .group_by(Student.class_id)
    ).all()

    attended: Dict[uuid.UUID, int] = {}
    unassigned = 0
    for class_id, count in rows:
        if class_id is None:
            unassigned += count
        else:
            attended[class_id] = count
    return attended, unassigned


def compute_no_scan_split(
    db: Session,
    school_id: uuid.UUID,
    day: date,
    classes: Sequence[dict],
    class_student_counts: Dict[Optional[uuid.UUID], int],
    absence_cutoff_minutes: int,
    now_minutes: int,
) -> Tuple[NoScanSplit, int]:
    """
    Répartit les élèves sans enregistrement aujourd'hui en pending_early / pending_late / absent
    selon l'horaire de leur classe. Retourne aussi l'effectif total des classes retenues.

    classes : [{"id", "start_time"}], les classes retenues par le scope.
    """
    class_ids = [cls["id"] for cls in classes]
    if not class_ids:
        return NoScanSplit(), 0

    attended, unassigned_attended = get_attendance_counts_by_class(db, school_id, day, class_ids)

    student_counts: Dict = {}
    total_active_students = 0
    unassigned_total = 0
    for class_id, count in class_student_counts.items():
        if class_id is None:
            unassigned_total = count
        else:
            student_counts[class_id] = count
            total_active_students += count

    classes_for_split = [{"id": cls["id"], "start_time": cls.get("start_time")} for cls in classes]
    attendance_counts = dict(attended)

    # Élèves sans classe : pas d'horaire connu → toujours en attente
    if unassigned_total > 0 or unassigned_attended > 0:
        student_counts[UNASSIGNED_KEY] = unassigned_total
        attendance_counts[UNASSIGNED_KEY] = unassigned_attended
        classes_for_split.append({"id": UNASSIGNED_KEY, "start_time": None})

    split = split_no_scan_counts(
        classes_for_split, student_counts, attendance_counts, absence_cutoff_minutes, now_minutes,
    )
    return NoScanSplit(**split), total_active_students


def count_currently_in_school(
    db: Session,
    school_id: uuid.UUID,
    day: date,
    class_ids: Optional[Sequence] = None,
) -> int:
    if _is_empty(class_ids):
        return 0
    return db.execute(
        select(func.count())
        .select_from(DailyAttendance)
        .join(Student, Student.id == DailyAttendance.student_id)
        .where(
            *_attendance_query(school_id, day, day, class_ids),
            DailyAttendance.currently_in_school.is_(True),
        )
    ).scalar() or 0


def get_pending_not_arrived(
    db: Session,
    school_id: uuid.UUID,
    day: date,
    class_ids: Sequence,
    absence_cutoff_minutes: int,
    now_minutes: int,
    limit: int = 20,
) -> List[PendingStudent]:
    """
    Élèves des classes retenues sans enregistrement aujourd'hui et encore "en attente"
    (PENDING_EARLY ou PENDING_LATE). Liste bornée à limit, triée par nom.
    """
    if not class_ids:
        return []

    arrived = select(DailyAttendance.student_id).where(
        DailyAttendance.school_id == school_id,
        DailyAttendance.date == day,
    )

    rows = db.execute(
        select(Student.id, Student.name, SchoolClass.name, SchoolClass.start_time)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
        .where(
            Student.school_id == school_id,
            Student.is_active.is_(True),
            Student.class_id.in_(class_ids),
            Student.id.not_in(arrived),
        )
        .order_by(Student.name)
        .limit(limit)
    ).all()

    pending = []
    for student_id, name, class_name, start_time in rows:
        status = compute_status(None, start_time, absence_cutoff_minutes, now_minutes)
        if status in ("PENDING_EARLY", "PENDING_LATE"):
            pending.append(PendingStudent(
                id=student_id,
                name=name,
                class_name=class_name or "-",
                pending_status=status,
            ))
    return pending

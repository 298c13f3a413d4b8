"""
Tableaux de bord en requête/réponse : école (admin d'école, enseignant, gardien)
et vue globale super-admin.

Sur une plage de plusieurs jours, les compteurs "*_today" sont des moyennes journalières
arrondies ; la répartition des élèves sans scan et la liste des non-arrivés n'existent
que pour aujourd'hui.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import AggregationFailure, AuthorizationError
from app.models.school import School
from app.models.school_class import SchoolClass
from app.schemas.auth import TokenClaims
from app.schemas.dashboard import (
    AdminDashboardResponse,
    AdminSchoolSummary,
    AdminTotals,
    NoScanSplit,
    SchoolDashboardResponse,
)
from app.services import access_service
from app.services.attendance_stats import (
    average_per_day,
    build_weekly_stats,
    compute_no_scan_split,
    count_currently_in_school,
    get_class_breakdown,
    get_class_student_counts,
    get_pending_not_arrived,
    get_status_counts_by_range,
    get_weekly_status_map,
    get_weekly_stats,
)
from app.services.attendance_status import (
    VALID_SCOPES,
    calculate_attendance_percent,
    get_now_minutes_in_zone,
    normalize_absent,
    resolve_scope_class_ids,
)
from app.services.date_utils import DateRange, get_date_range, local_today, utc_now
from app.services.snapshot_service import class_to_dict, school_schedule

logger = logging.getLogger(__name__)


def _check_scope(scope: str) -> None:
    if scope not in VALID_SCOPES:
        raise ValueError(f"Scope invalide : {scope}. Valeurs acceptées : {sorted(VALID_SCOPES)}")


def _is_today(date_range: DateRange, today: date) -> bool:
    return date_range.is_single_day and date_range.start_date == today


def _period_class_ids(
    classes: Sequence[dict],
    is_today: bool,
    scope: str,
    now_minutes: int,
    cutoff: int,
    restricted: bool,
) -> Optional[List]:
    """
    Classes retenues pour les compteurs de la période.
    Aujourd'hui : filtre par scope. Autre période : toutes les classes visibles,
    None quand l'appelant voit toute l'école (élèves sans classe compris).
    """
    if is_today:
        return resolve_scope_class_ids(list(classes), scope, now_minutes, cutoff)
    if restricted:
        return [cls["id"] for cls in classes]
    return None


def get_school_dashboard(
    db: Session,
    claims: TokenClaims,
    school_id: uuid.UUID,
    period: str = "today",
    scope: str = "started",
    class_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> SchoolDashboardResponse:
    """
    Statistiques d'une école sur une période, éventuellement limitées à une classe.

    Lève ValueError (école introuvable, période ou scope invalide), AuthorizationError
    (classe non assignée à l'enseignant), ResourceNotFoundError (classe hors de l'école)
    et AggregationFailure si une requête échoue.
    """
    _check_scope(scope)
    now = now or utc_now()

    school = db.get(School, school_id)
    if school is None:
        raise ValueError(f"École {school_id} introuvable.")

    tz, cutoff = school_schedule(school)
    today = local_today(now, tz)
    now_minutes = get_now_minutes_in_zone(now, tz)
    date_range = get_date_range(period, tz, now, start_date, end_date)
    is_today = _is_today(date_range, today)

    allowed = access_service.get_allowed_class_ids(db, claims)
    if class_id is not None:
        if allowed is not None and class_id not in allowed:
            raise AuthorizationError("Accès refusé.")
        access_service.require_class_in_school(db, school_id, class_id)

    try:
        return _school_dashboard(
            db, school_id, tz, cutoff, today, now, now_minutes, date_range, is_today,
            period, scope, class_id, allowed,
        )
    except SQLAlchemyError as exc:
        raise AggregationFailure(f"Échec du calcul du tableau de bord de l'école {school_id}.") from exc


def _school_dashboard(
    db: Session,
    school_id: uuid.UUID,
    tz: str,
    cutoff: int,
    today: date,
    now: datetime,
    now_minutes: int,
    date_range: DateRange,
    is_today: bool,
    period: str,
    scope: str,
    class_id: Optional[uuid.UUID],
    allowed: Optional[List[uuid.UUID]],
) -> SchoolDashboardResponse:
    classes = []
    if allowed != []:
        query = select(SchoolClass).where(SchoolClass.school_id == school_id).order_by(SchoolClass.name)
        if class_id is not None:
            query = query.where(SchoolClass.id == class_id)
        elif allowed is not None:
            query = query.where(SchoolClass.id.in_(allowed))
        classes = [class_to_dict(c) for c in db.execute(query).scalars().all()]

    restricted = class_id is not None or allowed is not None
    period_class_ids = _period_class_ids(classes, is_today, scope, now_minutes, cutoff, restricted)

    class_counts = get_class_student_counts(db, school_id, [cls["id"] for cls in classes])
    if period_class_ids is None:
        total_students = sum(get_class_student_counts(db, school_id, None).values())
    else:
        total_students = sum(class_counts.get(cid, 0) for cid in period_class_ids)

    counts, days_count = get_status_counts_by_range(db, school_id, date_range, period_class_ids)
    if date_range.is_single_day:
        days_count = 1

    present = average_per_day(counts.present, days_count)
    late = average_per_day(counts.late, days_count)
    absent = average_per_day(counts.absent, days_count)
    excused = average_per_day(counts.excused, days_count)

    if period_class_ids is None:
        breakdown_classes = classes
    else:
        wanted = set(period_class_ids)
        breakdown_classes = [cls for cls in classes if cls["id"] in wanted]
    class_breakdown = get_class_breakdown(
        db,
        school_id,
        date_range,
        [{**cls, "student_count": class_counts.get(cls["id"], 0)} for cls in breakdown_classes],
        period_class_ids,
    )

    split = NoScanSplit()
    not_yet_arrived = []
    if is_today:
        split, _ = compute_no_scan_split(
            db, school_id, today, breakdown_classes, class_counts, cutoff, now_minutes,
        )
        not_yet_arrived = get_pending_not_arrived(
            db, school_id, today, period_class_ids, cutoff, now_minutes, limit=settings.PENDING_LIST_LIMIT,
        )

    absent_today = normalize_absent(
        total_students, present, late, excused, split.pending_early, split.pending_late, absent + split.absent,
    )

    return SchoolDashboardResponse(
        period=period,
        period_label=date_range.label,
        start_date=date_range.start_date,
        end_date=date_range.end_date,
        days_count=days_count,
        timezone=tz,
        scope=scope,
        total_students=total_students,
        present_today=present,
        late_today=late,
        absent_today=absent_today,
        excused_today=excused,
        currently_in_school=count_currently_in_school(db, school_id, today, period_class_ids),
        present_percentage=calculate_attendance_percent(present, late, total_students),
        total_present=counts.present,
        total_late=counts.late,
        total_absent=counts.absent,
        total_excused=counts.excused,
        current_time=now,
        class_breakdown=class_breakdown,
        weekly_stats=get_weekly_stats(db, school_id, date_range.end_date, period_class_ids),
        not_yet_arrived=not_yet_arrived,
        not_yet_arrived_count=split.pending_early + split.pending_late,
        pending_early_count=split.pending_early,
        late_pending_count=split.pending_late,
    )


# ============================================================
# Vue super-admin
# ============================================================

def _admin_school_summary(
    db: Session,
    school: School,
    period: str,
    scope: str,
    start_date: Optional[date],
    end_date: Optional[date],
    now: datetime,
) -> Tuple[AdminSchoolSummary, Dict[str, Dict[str, int]], DateRange]:
    tz, cutoff = school_schedule(school)
    today = local_today(now, tz)
    now_minutes = get_now_minutes_in_zone(now, tz)
    date_range = get_date_range(period, tz, now, start_date, end_date)
    is_today = _is_today(date_range, today)

    classes = [
        class_to_dict(c) for c in db.execute(
            select(SchoolClass).where(SchoolClass.school_id == school.id)
        ).scalars().all()
    ]
    class_ids = (
        resolve_scope_class_ids(classes, scope, now_minutes, cutoff)
        if is_today else [cls["id"] for cls in classes]
    )

    class_counts = get_class_student_counts(db, school.id, class_ids)
    total_students = sum(count for cid, count in class_counts.items() if cid is not None)
    counts, days_count = get_status_counts_by_range(db, school.id, date_range, class_ids)
    if date_range.is_single_day:
        days_count = 1

    # Arrondi par école, avant la somme inter-écoles
    present = average_per_day(counts.present, days_count)
    late = average_per_day(counts.late, days_count)
    absent = average_per_day(counts.absent, days_count)
    excused = average_per_day(counts.excused, days_count)

    split = NoScanSplit()
    currently_in_school = 0
    if is_today:
        wanted = set(class_ids)
        split, _ = compute_no_scan_split(
            db, school.id, today, [cls for cls in classes if cls["id"] in wanted], class_counts, cutoff, now_minutes,
        )
        currently_in_school = count_currently_in_school(db, school.id, today, class_ids)

    weekly_map = get_weekly_status_map(
        db, school.id, date_range.end_date - timedelta(days=6), date_range.end_date, class_ids,
    )

    summary = AdminSchoolSummary(
        id=school.id,
        name=school.name,
        address=school.address,
        total_students=total_students,
        total_classes=len(classes),
        present_today=present,
        late_today=late,
        absent_today=normalize_absent(
            total_students, present, late, excused, split.pending_early, split.pending_late, absent + split.absent,
        ),
        excused_today=excused,
        pending_early_count=split.pending_early,
        late_pending_count=split.pending_late,
        currently_in_school=currently_in_school,
        attendance_percent=calculate_attendance_percent(present, late, total_students),
    )
    return summary, weekly_map, date_range


def get_admin_dashboard(
    db: Session,
    claims: TokenClaims,
    period: str = "today",
    scope: str = "started",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> AdminDashboardResponse:
    """Synthèse de toutes les écoles (SUPER_ADMIN uniquement)."""
    access_service.require_super_admin(claims)
    _check_scope(scope)
    now = now or utc_now()

    try:
        schools = db.execute(select(School).order_by(School.name)).scalars().all()

        summaries: List[AdminSchoolSummary] = []
        merged: Dict[str, Dict[str, int]] = {}
        latest_end: Optional[date] = None
        for school in schools:
            summary, weekly_map, date_range = _admin_school_summary(
                db, school, period, scope, start_date, end_date, now,
            )
            summaries.append(summary)
            if latest_end is None or date_range.end_date > latest_end:
                latest_end = date_range.end_date
            for key, entry in weekly_map.items():
                target = merged.setdefault(key, {"present": 0, "late": 0, "absent": 0})
                for field, value in entry.items():
                    target[field] += value
    except SQLAlchemyError as exc:
        raise AggregationFailure("Échec du calcul du tableau de bord global.") from exc

    totals = AdminTotals(total_schools=len(summaries))
    for summary in summaries:
        totals.total_students += summary.total_students
        totals.present_today += summary.present_today
        totals.late_today += summary.late_today
        totals.absent_today += summary.absent_today
        totals.excused_today += summary.excused_today
        totals.pending_early_count += summary.pending_early_count
        totals.late_pending_count += summary.late_pending_count
        totals.currently_in_school += summary.currently_in_school
    totals.attendance_percent = calculate_attendance_percent(
        totals.present_today, totals.late_today, totals.total_students,
    )

    weekly_stats = build_weekly_stats(merged, latest_end or local_today(now, settings.DEFAULT_TIMEZONE))
    logger.debug("Tableau de bord global : %d écoles", len(summaries))
    return AdminDashboardResponse(totals=totals, schools=summaries, weekly_stats=weekly_stats)


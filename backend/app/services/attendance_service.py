"""
Service métier des présences : scans IN/OUT, marquage manuel, liste du jour.

Le premier IN de la journée fixe le statut à partir de l'horaire de la classe :
- écart ≥ cutoff d'absence      → ABSENT
- écart ≥ seuil de retard       → LATE (late_minutes = écart - seuil)
- sinon                         → PRESENT
Un enregistrement déjà ABSENT ou EXCUSED le reste. Un OUT clôt la période de présence sur place.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import AuthorizationError
from app.models.attendance import AttendanceEvent, DailyAttendance
from app.models.school import School
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.schemas.attendance import (
    AttendanceEventInfo,
    AttendanceEventPayload,
    AttendanceUpsert,
    EventStudent,
    ScanCreate,
    ScanResult,
    TodayAttendanceItem,
    TodayAttendanceResponse,
)
from app.schemas.auth import TokenClaims
from app.services import access_service
from app.services.attendance_status import (
    compute_status,
    get_now_minutes_in_zone,
    parse_time_to_minutes,
    round_half_up,
)
from app.services.date_utils import local_today, utc_now
from app.services.snapshot_service import school_schedule

logger = logging.getLogger(__name__)

# Une présence sur place de 12 h ou plus est considérée comme un oubli de scan OUT
MAX_SESSION_MINUTES = 720


def _get_school(db: Session, school_id: uuid.UUID) -> School:
    school = db.get(School, school_id)
    if school is None:
        raise ValueError(f"École {school_id} introuvable.")
    return school


def _get_student(db: Session, school_id: uuid.UUID, student_id: uuid.UUID) -> Student:
    student = db.get(Student, student_id)
    if student is None or student.school_id != school_id:
        raise ValueError(f"Élève {student_id} introuvable.")
    return student


def _find_record(db: Session, student_id: uuid.UUID, day: date) -> Optional[DailyAttendance]:
    return db.execute(
        select(DailyAttendance).where(
            DailyAttendance.student_id == student_id,
            DailyAttendance.date == day,
        )
    ).scalars().first()


def _as_utc(value: datetime) -> datetime:
    """Les horodatages sans fuseau sont interprétés en UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def arrival_status(
    event_time: datetime,
    tz: str,
    class_start_time: Optional[str],
    absence_cutoff_minutes: int,
    late_threshold_minutes: int,
) -> Tuple[Optional[str], Optional[int]]:
    """
    (statut, minutes de retard) d'un premier IN. Statut None si l'horaire de la classe
    est inconnu : le scan ne permet alors pas de trancher.
    """
    start = parse_time_to_minutes(class_start_time)
    if start is None:
        return None, None

    diff = get_now_minutes_in_zone(event_time, tz) - start
    if diff >= absence_cutoff_minutes:
        return "ABSENT", None
    if diff >= late_threshold_minutes:
        return "LATE", diff - late_threshold_minutes
    return "PRESENT", None


def is_duplicate_scan(record: DailyAttendance, event_type: str, event_time: datetime) -> bool:
    """IN alors que l'élève est déjà dans l'école (ou OUT alors qu'il est sorti) trop tôt après le précédent."""
    window = max(0, settings.MIN_SCAN_INTERVAL_SECONDS)
    if event_type == "IN" and record.currently_in_school and record.last_in_time:
        return (event_time - _as_utc(record.last_in_time)).total_seconds() < window
    if event_type == "OUT" and not record.currently_in_school and record.last_out_time:
        return (event_time - _as_utc(record.last_out_time)).total_seconds() < window
    return False


def _apply_scan(
    record: DailyAttendance,
    event_type: str,
    event_time: datetime,
    tz: str,
    class_start_time: Optional[str],
    cutoff: int,
    late_threshold: int,
) -> None:
    record.last_scan_time = event_time
    record.scan_count = (record.scan_count or 0) + 1

    if event_type == "IN":
        if record.first_scan_time is None:
            if record.status == "ABSENT":
                record.late_minutes = None
            elif record.status != "EXCUSED":
                status, late_minutes = arrival_status(event_time, tz, class_start_time, cutoff, late_threshold)
                if status is not None:
                    record.status = status
                    record.late_minutes = late_minutes
            record.first_scan_time = event_time
        record.last_in_time = event_time
        record.currently_in_school = True
        return

    if record.last_in_time and record.currently_in_school:
        minutes = round_half_up((event_time - _as_utc(record.last_in_time)).total_seconds() / 60)
        if 0 < minutes < MAX_SESSION_MINUTES:
            record.total_time_on_premises = (record.total_time_on_premises or 0) + minutes
    record.last_out_time = event_time
    record.currently_in_school = False


def _new_record(
    school_id: uuid.UUID,
    student_id: uuid.UUID,
    day: date,
    event_type: str,
    event_time: datetime,
    tz: str,
    class_start_time: Optional[str],
    cutoff: int,
    late_threshold: int,
) -> DailyAttendance:
    status, late_minutes = "PRESENT", None
    if event_type == "IN":
        computed, computed_late = arrival_status(event_time, tz, class_start_time, cutoff, late_threshold)
        if computed is not None:
            status, late_minutes = computed, computed_late

    is_in = event_type == "IN"
    return DailyAttendance(
        school_id=school_id,
        student_id=student_id,
        date=day,
        status=status,
        first_scan_time=event_time if is_in else None,
        last_scan_time=event_time,
        last_in_time=event_time if is_in else None,
        last_out_time=None if is_in else event_time,
        currently_in_school=is_in,
        scan_count=1,
        late_minutes=late_minutes,
        notes=None if is_in else "OUT avant le premier IN",
    )


def record_scan(
    db: Session,
    school_id: uuid.UUID,
    data: ScanCreate,
    now: Optional[datetime] = None,
) -> Tuple[ScanResult, Optional[AttendanceEventPayload]]:
    """
    Enregistre un scan IN/OUT et met à jour la présence journalière de l'élève.

    Retourne le résultat et, pour un scan du jour (fuseau de l'école), le message à publier
    sur l'émetteur d'événements. Les scans répétés dans MIN_SCAN_INTERVAL_SECONDS sont
    ignorés sans écriture, de même qu'un premier scan concurrent rejeté par la contrainte
    (student_id, date).

    Lève ValueError si l'école ou l'élève est introuvable.
    """
    now = now or utc_now()
    school = _get_school(db, school_id)
    student = _get_student(db, school_id, data.student_id)
    school_class = db.get(SchoolClass, student.class_id) if student.class_id else None

    tz, cutoff = school_schedule(school)
    late_threshold = school.late_threshold_minutes
    if late_threshold is None:
        late_threshold = settings.DEFAULT_LATE_THRESHOLD_MINUTES
    class_start_time = school_class.start_time if school_class else None

    event_time = _as_utc(data.timestamp or now)
    day = local_today(event_time, tz)
    is_today = day == local_today(now, tz)

    record = _find_record(db, student.id, day)
    if record is not None and is_duplicate_scan(record, data.event_type, event_time):
        logger.info("Scan %s ignoré (doublon) pour l'élève %s", data.event_type, student.id)
        return ScanResult(ignored=True, reason="duplicate_scan", status=record.status), None

    event = AttendanceEvent(
        id=uuid.uuid4(),
        school_id=school_id,
        student_id=student.id,
        event_type=data.event_type,
        timestamp=event_time,
    )
    db.add(event)

    if record is None:
        record = _new_record(
            school_id, student.id, day, data.event_type, event_time, tz, class_start_time, cutoff, late_threshold,
        )
        db.add(record)
        logger.info("Nouvelle présence %s pour l'élève %s (%s)", record.status, student.id, data.event_type)
    else:
        _apply_scan(record, data.event_type, event_time, tz, class_start_time, cutoff, late_threshold)
        logger.info("Présence de l'élève %s mise à jour : %s (%s)", student.id, record.status, data.event_type)

    try:
        db.commit()
    except IntegrityError:
        # Premier scan concurrent pour le même élève et le même jour (contrainte student_id, date)
        db.rollback()
        logger.warning("Scan %s ignoré (écriture concurrente) pour l'élève %s", data.event_type, student.id)
        return ScanResult(ignored=True, reason="duplicate_event"), None

    info = AttendanceEventInfo(
        id=event.id,
        student_id=student.id,
        event_type=event.event_type,
        timestamp=event.timestamp,
        student=EventStudent(
            id=student.id,
            name=student.name,
            class_id=school_class.id if school_class else None,
            class_name=school_class.name if school_class else None,
        ),
    )
    result = ScanResult(status=record.status, event=info)
    payload = AttendanceEventPayload(school_id=school_id, event=info) if is_today else None
    return result, payload


def upsert_status(
    db: Session,
    claims: TokenClaims,
    school_id: uuid.UUID,
    data: AttendanceUpsert,
) -> Tuple[DailyAttendance, Optional[uuid.UUID]]:
    """
    Crée ou modifie le statut d'une présence journalière.

    Un enseignant ne peut marquer qu'EXCUSED, et seulement pour un élève de ses classes.
    Retourne l'enregistrement et la classe de l'élève.

    Lève ValueError (élève introuvable, élève sans classe pour un enseignant)
    et AuthorizationError (classe non assignée, statut interdit).
    """
    student = _get_student(db, school_id, data.student_id)

    if claims.role == access_service.TEACHER:
        if student.class_id is None:
            raise ValueError("L'élève n'a pas de classe assignée.")
        access_service.require_teacher_class(db, claims, student.class_id)
        if data.status != "EXCUSED":
            raise AuthorizationError("Un enseignant ne peut marquer que le statut EXCUSED.")

    record = _find_record(db, student.id, data.date)
    if record is None:
        record = DailyAttendance(
            school_id=school_id,
            student_id=student.id,
            date=data.date,
            status=data.status,
            notes=data.notes,
            currently_in_school=False,
            scan_count=0,
        )
        db.add(record)
    else:
        record.status = data.status
        record.notes = data.notes

    db.commit()
    db.refresh(record)
    logger.info(
        "Statut %s appliqué à l'élève %s le %s par %s (%s)",
        data.status, student.id, data.date, claims.sub, claims.role,
    )
    return record, student.class_id


def is_today_for_school(db: Session, school_id: uuid.UUID, day: date, now: Optional[datetime] = None) -> bool:
    tz, _ = school_schedule(_get_school(db, school_id))
    return day == local_today(now or utc_now(), tz)


def get_today_attendance(
    db: Session,
    claims: TokenClaims,
    school_id: uuid.UUID,
    class_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TodayAttendanceResponse:
    """
    Tous les élèves actifs de l'école avec leur statut effectif du jour.
    Un enseignant ne voit que ses classes (AuthorizationError pour une autre classe).
    """
    now = now or utc_now()
    school = _get_school(db, school_id)
    tz, cutoff = school_schedule(school)
    today = local_today(now, tz)
    now_minutes = get_now_minutes_in_zone(now, tz)

    conditions = [Student.school_id == school_id, Student.is_active.is_(True)]
    if class_id is not None:
        access_service.require_teacher_class(db, claims, class_id)
        conditions.append(Student.class_id == class_id)
    else:
        allowed = access_service.get_allowed_class_ids(db, claims)
        if allowed is not None:
            if not allowed:
                return TodayAttendanceResponse(date=today, timezone=tz, items=[])
            conditions.append(Student.class_id.in_(allowed))

    rows = db.execute(
        select(Student, SchoolClass)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
        .where(*conditions)
        .order_by(Student.name)
    ).all()

    student_ids = [student.id for student, _ in rows]
    records = {}
    if student_ids:
        records = {
            r.student_id: r for r in db.execute(
                select(DailyAttendance).where(
                    DailyAttendance.school_id == school_id,
                    DailyAttendance.date == today,
                    DailyAttendance.student_id.in_(student_ids),
                )
            ).scalars().all()
        }

    items: List[TodayAttendanceItem] = []
    for student, school_class in rows:
        record = records.get(student.id)
        effective = compute_status(
            record.status if record else None,
            school_class.start_time if school_class else None,
            cutoff,
            now_minutes,
        )
        if status and effective != status:
            continue
        items.append(TodayAttendanceItem(
            id=record.id if record else None,
            student_id=student.id,
            student_name=student.name,
            class_id=school_class.id if school_class else None,
            class_name=school_class.name if school_class else None,
            date=today,
            status=effective,
            first_scan_time=record.first_scan_time if record else None,
            last_scan_time=record.last_scan_time if record else None,
            currently_in_school=bool(record.currently_in_school) if record else False,
            scan_count=(record.scan_count or 0) if record else 0,
            late_minutes=record.late_minutes if record else None,
            notes=record.notes if record else None,
        ))

    return TodayAttendanceResponse(date=today, timezone=tz, items=items)

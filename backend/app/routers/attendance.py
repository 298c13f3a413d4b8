"""
Routes des présences : liste du jour, marquage manuel et réception des scans.

Les modifications du jour sont publiées sur l'émetteur d'événements et déclenchent
un recalcul différé des snapshots de l'école et de la classe concernées.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_claims
from app.realtime.hub import RealtimeHub, get_hub
from app.scheduler import SnapshotScheduler, get_snapshot_scheduler
from app.schemas.attendance import (
    AttendanceRecordResponse,
    AttendanceUpsert,
    ScanCreate,
    ScanResult,
    TodayAttendanceResponse,
)
from app.schemas.auth import TokenClaims
from app.services import access_service, attendance_service

router = APIRouter(prefix="/api/v1/schools", tags=["Présences"])

TODAY_ROLES = (access_service.SCHOOL_ADMIN, access_service.TEACHER, access_service.GUARD)
UPSERT_ROLES = (access_service.SCHOOL_ADMIN, access_service.TEACHER)
SCAN_ROLES = (access_service.SCHOOL_ADMIN, access_service.GUARD)


def _http_error(e: ValueError) -> HTTPException:
    msg = str(e)
    if "introuvable" in msg:
        return HTTPException(status_code=404, detail=msg)
    return HTTPException(status_code=400, detail=msg)


@router.get(
    "/{school_id}/attendance/today",
    response_model=TodayAttendanceResponse,
    summary="Présences du jour avec statut effectif",
)
def get_today_attendance(
    school_id: uuid.UUID,
    class_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    """
    Tous les élèves actifs, y compris ceux sans scan (PENDING_EARLY / PENDING_LATE / ABSENT
    selon l'horaire de leur classe). Filtres optionnels par classe et par statut effectif.
    """
    access_service.require_roles(claims, TODAY_ROLES)
    access_service.require_school_scope(claims, school_id)
    try:
        return attendance_service.get_today_attendance(db, claims, school_id, class_id, status)
    except ValueError as e:
        raise _http_error(e)


def _upsert(db: Session, claims: TokenClaims, school_id: uuid.UUID, data: AttendanceUpsert):
    record, class_id = attendance_service.upsert_status(db, claims, school_id, data)
    is_today = attendance_service.is_today_for_school(db, school_id, record.date)
    return AttendanceRecordResponse.model_validate(record), class_id, is_today


@router.post(
    "/{school_id}/attendance/upsert",
    response_model=AttendanceRecordResponse,
    summary="Marquer manuellement une présence",
)
async def upsert_attendance(
    school_id: uuid.UUID,
    data: AttendanceUpsert,
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
    scheduler: SnapshotScheduler = Depends(get_snapshot_scheduler),
):
    """
    Crée ou modifie le statut (PRESENT, LATE, ABSENT, EXCUSED) d'un élève pour une date.
    Un enseignant ne peut marquer qu'EXCUSED, pour les élèves de ses classes.

    Retourne 404 si l'élève est introuvable, 400 s'il n'a pas de classe (enseignant),
    403 si l'enseignant n'a pas le droit.
    """
    access_service.require_roles(claims, UPSERT_ROLES)
    access_service.require_school_scope(claims, school_id)
    try:
        record, class_id, is_today = await run_in_threadpool(_upsert, db, claims, school_id, data)
    except ValueError as e:
        raise _http_error(e)

    if is_today:
        scheduler.mark_school_dirty(school_id)
        if class_id is not None:
            scheduler.mark_class_dirty(school_id, class_id)
    return record


@router.post(
    "/{school_id}/scans",
    response_model=ScanResult,
    summary="Enregistrer un scan IN/OUT",
)
async def record_scan(
    school_id: uuid.UUID,
    data: ScanCreate,
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
    scheduler: SnapshotScheduler = Depends(get_snapshot_scheduler),
):
    """
    Point d'entrée de l'adaptateur des terminaux biométriques.
    Un scan répété trop tôt est ignoré (ignored=true, reason="duplicate_scan"), de même
    qu'un premier scan concurrent pour le même élève (reason="duplicate_event").

    Retourne 404 si l'école ou l'élève est introuvable.
    """
    access_service.require_roles(claims, SCAN_ROLES)
    access_service.require_school_scope(claims, school_id)
    try:
        result, payload = await run_in_threadpool(attendance_service.record_scan, db, school_id, data)
    except ValueError as e:
        raise _http_error(e)

    if payload is not None:
        hub.event_emitter.emit_attendance(payload)
        scheduler.mark_school_dirty(school_id)
        if payload.class_id is not None:
            scheduler.mark_class_dirty(school_id, payload.class_id)
    return result

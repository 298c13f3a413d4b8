"""
Flux SSE temps réel (text/event-stream).

Le jeton est passé en paramètre ?token= (EventSource ne permet pas d'en-tête).
Toute erreur d'authentification ou d'autorisation rejette la connexion avant
l'ouverture du flux, avec un corps {"error": ...}.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.realtime.hub import RealtimeHub, get_hub
from app.realtime.stream_session import StreamSession
from app.schemas.attendance import AttendanceEventPayload
from app.schemas.stream import (
    AttendanceMessage,
    ConnectedMessage,
    ConnectionStatsMessage,
    SchoolStatsUpdate,
)
from app.services import access_service, snapshot_service
from app.services.date_utils import utc_now

router = APIRouter(prefix="/api/v1", tags=["Flux temps réel"])

EVENT_STREAM_ROLES = (access_service.SCHOOL_ADMIN, access_service.TEACHER, access_service.GUARD)
SCHOOL_SNAPSHOT_ROLES = (access_service.SCHOOL_ADMIN, access_service.GUARD)

ADMIN_CONNECTION_KEY = "admin"


def _open_session(request: Request, hub: RealtimeHub, token: Optional[str]) -> StreamSession:
    session = StreamSession(hub, is_disconnected=request.is_disconnected)
    session.authenticate(token)
    return session


def _authorize_class(db: Session, session: StreamSession, school_id: uuid.UUID, class_id: uuid.UUID) -> None:
    access_service.require_class_in_school(db, school_id, class_id)
    access_service.require_teacher_class(db, session.claims, class_id)


@router.get("/schools/{school_id}/events/stream", summary="Flux des scans d'une école")
async def school_events_stream(
    school_id: uuid.UUID,
    request: Request,
    token: Optional[str] = None,
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    """
    Chaque scan du jour de l'école, au fil de l'eau.
    Un enseignant ne reçoit que les scans des élèves de ses classes.
    """
    session = _open_session(request, hub, token)
    session.authorize(EVENT_STREAM_ROLES, school_id)
    allowed = await run_in_threadpool(access_service.get_allowed_class_ids, db, session.claims)
    allowed_set = set(allowed) if allowed is not None else None

    def on_attendance(payload: AttendanceEventPayload) -> None:
        if payload.school_id != school_id:
            return
        if allowed_set is not None and payload.class_id not in allowed_set:
            return
        session.push(AttendanceMessage(school_id=payload.school_id, event=payload.event))

    session.accept(str(school_id), ConnectedMessage(school_id=school_id, server_time=utc_now()))
    session.listen(lambda: hub.event_emitter.on_attendance(school_id, on_attendance))
    return session.response()


@router.get("/schools/{school_id}/classes/{class_id}/events/stream", summary="Flux des scans d'une classe")
async def class_events_stream(
    school_id: uuid.UUID,
    class_id: uuid.UUID,
    request: Request,
    token: Optional[str] = None,
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    session = _open_session(request, hub, token)
    session.authorize(EVENT_STREAM_ROLES, school_id)
    await run_in_threadpool(_authorize_class, db, session, school_id, class_id)

    def on_attendance(payload: AttendanceEventPayload) -> None:
        if payload.school_id != school_id or payload.class_id != class_id:
            return
        session.push(AttendanceMessage(school_id=payload.school_id, event=payload.event))

    session.accept(
        f"{school_id}:{class_id}",
        ConnectedMessage(school_id=school_id, class_id=class_id, server_time=utc_now()),
    )
    session.listen(lambda: hub.event_emitter.on_attendance(school_id, on_attendance))
    return session.response()


@router.get("/schools/{school_id}/snapshots/stream", summary="Flux des snapshots d'une école")
async def school_snapshots_stream(
    school_id: uuid.UUID,
    request: Request,
    token: Optional[str] = None,
    hub: RealtimeHub = Depends(get_hub),
):
    """
    Snapshots "started" et "active" de l'école à la connexion (avec la tendance
    hebdomadaire), puis à chaque recalcul.
    """
    session = _open_session(request, hub, token)
    session.authorize(SCHOOL_SNAPSHOT_ROLES, school_id)

    session.accept(str(school_id), ConnectedMessage(school_id=school_id, server_time=utc_now()))
    session.add_initial(lambda: snapshot_service.fetch_school_snapshots(school_id, include_weekly=True))
    session.listen(lambda: hub.snapshot_bus.on_school_snapshot(school_id, session.push))
    return session.response()


@router.get("/schools/{school_id}/classes/{class_id}/snapshots/stream", summary="Flux des snapshots d'une classe")
async def class_snapshots_stream(
    school_id: uuid.UUID,
    class_id: uuid.UUID,
    request: Request,
    token: Optional[str] = None,
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    session = _open_session(request, hub, token)
    session.authorize(EVENT_STREAM_ROLES, school_id)
    await run_in_threadpool(_authorize_class, db, session, school_id, class_id)

    session.accept(
        f"{school_id}:{class_id}:snapshot",
        ConnectedMessage(school_id=school_id, class_id=class_id, server_time=utc_now()),
    )
    session.add_initial(lambda: snapshot_service.fetch_class_snapshots(school_id, class_id, include_weekly=True))
    session.listen(lambda: hub.snapshot_bus.on_class_snapshot(school_id, class_id, session.push))
    return session.response()


@router.get("/admin/events/stream", summary="Flux global super-admin")
async def admin_events_stream(
    request: Request,
    token: Optional[str] = None,
    hub: RealtimeHub = Depends(get_hub),
):
    """
    Scans de toutes les écoles, résumés de snapshots par école et, toutes les
    SSE_ADMIN_STATS_SECONDS, le nombre de connexions ouvertes.
    """
    session = _open_session(request, hub, token)
    access_service.require_super_admin(session.claims)

    def on_attendance(payload: AttendanceEventPayload) -> None:
        session.push(AttendanceMessage(type="attendance_event", school_id=payload.school_id, event=payload.event))

    def on_snapshot(snapshot) -> None:
        session.push(SchoolStatsUpdate.from_snapshot(snapshot))

    session.accept(
        ADMIN_CONNECTION_KEY,
        ConnectedMessage(
            role="admin",
            server_time=utc_now(),
            connection_stats=hub.connection_tracker.get_stats(),
        ),
    )
    session.listen(lambda: hub.event_emitter.on_any_attendance(on_attendance))
    session.listen(lambda: hub.snapshot_bus.on_admin_snapshot(on_snapshot))
    session.every(
        settings.SSE_ADMIN_STATS_SECONDS,
        lambda: ConnectionStatsMessage(stats=hub.connection_tracker.get_stats()),
    )
    return session.response()

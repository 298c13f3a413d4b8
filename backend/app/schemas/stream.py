"""
Messages envoyés sur les flux SSE (une trame "data: <json>" par message).
Le champ type permet au client d'aiguiller chaque message.
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

from app.schemas.attendance import AttendanceEventInfo
from app.schemas.snapshot import ConnectionStats, SchoolSnapshot


class ConnectedMessage(BaseModel):
    """Premier message de chaque flux."""
    type: Literal["connected"] = "connected"
    school_id: Optional[uuid.UUID] = None
    class_id: Optional[uuid.UUID] = None
    role: Optional[str] = None                          # "admin" sur le flux super-admin
    server_time: datetime
    connection_stats: Optional[ConnectionStats] = None


class AttendanceMessage(BaseModel):
    """Scan du jour : "attendance" sur les flux école / classe, "attendance_event" sur le flux admin."""
    type: Literal["attendance", "attendance_event"] = "attendance"
    school_id: uuid.UUID
    event: AttendanceEventInfo


class SchoolStatsData(BaseModel):
    total_students: int
    present_today: int
    late_today: int
    absent_today: int
    excused_today: int
    pending_early_count: int
    late_pending_count: int
    currently_in_school: int


class SchoolStatsUpdate(BaseModel):
    """Snapshot d'école résumé pour le flux super-admin."""
    type: Literal["school_stats_update"] = "school_stats_update"
    school_id: uuid.UUID
    scope: str
    data: SchoolStatsData

    @classmethod
    def from_snapshot(cls, snapshot: SchoolSnapshot) -> "SchoolStatsUpdate":
        stats = snapshot.stats
        return cls(
            school_id=snapshot.school_id,
            scope=snapshot.scope,
            data=SchoolStatsData(
                total_students=stats.total_students,
                present_today=stats.present,
                late_today=stats.late,
                absent_today=stats.absent,
                excused_today=stats.excused,
                pending_early_count=stats.pending_early,
                late_pending_count=stats.pending_late,
                currently_in_school=stats.currently_in_school,
            ),
        )


class ConnectionStatsMessage(BaseModel):
    type: Literal["connection_stats"] = "connection_stats"
    stats: ConnectionStats

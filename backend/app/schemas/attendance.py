"""
Schémas Pydantic des scans IN/OUT et des présences journalières.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

VALID_EVENT_TYPES = {"IN", "OUT"}
VALID_STATUSES = {"PRESENT", "LATE", "ABSENT", "EXCUSED"}


class EventStudent(BaseModel):
    id: uuid.UUID
    name: str
    class_id: Optional[uuid.UUID] = None
    class_name: Optional[str] = None


class AttendanceEventInfo(BaseModel):
    id: uuid.UUID
    student_id: Optional[uuid.UUID] = None
    event_type: str
    timestamp: datetime
    student: Optional[EventStudent] = None


class AttendanceEventPayload(BaseModel):
    """Message publié sur l'émetteur d'événements pour chaque scan du jour."""
    school_id: uuid.UUID
    event: AttendanceEventInfo

    @property
    def class_id(self) -> Optional[uuid.UUID]:
        return self.event.student.class_id if self.event.student else None


class ScanCreate(BaseModel):
    """Scan transmis par l'adaptateur du terminal biométrique."""
    student_id: uuid.UUID
    event_type: str
    timestamp: Optional[datetime] = None   # Heure du terminal ; maintenant si absente

    @field_validator("event_type")
    @classmethod
    def valid_event_type(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in VALID_EVENT_TYPES:
            raise ValueError(f"Type d'événement invalide. Valeurs acceptées : {sorted(VALID_EVENT_TYPES)}")
        return v


class ScanResult(BaseModel):
    ok: bool = True
    ignored: bool = False
    reason: Optional[str] = None           # duplicate_scan, duplicate_event
    status: Optional[str] = None           # Statut journalier après le scan
    event: Optional[AttendanceEventInfo] = None


class AttendanceUpsert(BaseModel):
    """Marquage manuel d'une présence, même sans enregistrement existant."""
    student_id: uuid.UUID
    date: date
    status: str
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        if v not in VALID_STATUSES:
            raise ValueError(f"Statut invalide. Valeurs acceptées : {sorted(VALID_STATUSES)}")
        return v


class AttendanceRecordResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    school_id: uuid.UUID
    date: date
    status: Optional[str]
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class TodayAttendanceItem(BaseModel):
    """Ligne de la liste du jour : enregistrement éventuel + statut effectif."""
    id: Optional[uuid.UUID] = None         # None = pas encore d'enregistrement en base
    student_id: uuid.UUID
    student_name: str
    class_id: Optional[uuid.UUID] = None
    class_name: Optional[str] = None
    date: date
    status: str
    first_scan_time: Optional[datetime] = None
    last_scan_time: Optional[datetime] = None
    currently_in_school: bool = False
    scan_count: int = 0
    late_minutes: Optional[int] = None
    notes: Optional[str] = None


class TodayAttendanceResponse(BaseModel):
    date: date
    timezone: str
    items: List[TodayAttendanceItem]

"""
Modèles SQLAlchemy pour les présences journalières et les scans bruts.

- DailyAttendance : une ligne par (élève, jour), créée au premier scan ou par upsert manuel,
  modifiée à chaque scan suivant. Le statut stocké fait autorité sur toute inférence horaire.
- AttendanceEvent : journal append-only des scans IN/OUT reçus des terminaux.
"""

import uuid
from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class DailyAttendance(Base):
    """Présence journalière d'un élève."""
    __tablename__ = "daily_attendances"
    __table_args__ = (UniqueConstraint("student_id", "date", name="uq_daily_attendance_student_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False, index=True)          # Jour local de l'école

    status = Column(String(20), nullable=True)               # PRESENT, LATE, ABSENT, EXCUSED
    first_scan_time = Column(DateTime(timezone=True), nullable=True)
    last_scan_time = Column(DateTime(timezone=True), nullable=True)
    last_in_time = Column(DateTime(timezone=True), nullable=True)
    last_out_time = Column(DateTime(timezone=True), nullable=True)
    currently_in_school = Column(Boolean, default=False, nullable=False)
    scan_count = Column(Integer, default=0, nullable=False)
    late_minutes = Column(Integer, nullable=True)
    total_time_on_premises = Column(Integer, nullable=True)  # Minutes cumulées IN → OUT
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class AttendanceEvent(Base):
    """Scan brut IN/OUT (l'élève peut être inconnu du système)."""
    __tablename__ = "attendance_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="SET NULL"), nullable=True)
    event_type = Column(String(3), nullable=False)           # IN, OUT
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())

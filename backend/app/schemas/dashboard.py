"""
Schémas Pydantic des agrégats de présence (tableaux de bord école et super-admin).
"""

import uuid
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from app.schemas.snapshot import WeeklyStat


class StatusCounts(BaseModel):
    """Nombre d'enregistrements persistés par statut sur une plage."""
    present: int = 0
    late: int = 0
    absent: int = 0
    excused: int = 0


class NoScanSplit(BaseModel):
    """Élèves sans scan aujourd'hui, répartis selon l'horaire de leur classe."""
    pending_early: int = 0
    pending_late: int = 0
    absent: int = 0


class ClassBreakdownItem(BaseModel):
    class_id: uuid.UUID
    class_name: str
    total: int
    present: int       # Arrivés (PRESENT + LATE)
    late: int


class PendingStudent(BaseModel):
    id: uuid.UUID
    name: str
    class_name: str
    pending_status: Literal["PENDING_EARLY", "PENDING_LATE"]


class SchoolDashboardResponse(BaseModel):
    period: str
    period_label: str
    start_date: date
    end_date: date
    days_count: int
    timezone: str
    scope: str

    # Moyennes journalières si la plage couvre plusieurs jours (arrondi à l'entier)
    total_students: int
    present_today: int
    late_today: int
    absent_today: int
    excused_today: int
    currently_in_school: int
    present_percentage: int

    # Totaux bruts sur la plage
    total_present: int
    total_late: int
    total_absent: int
    total_excused: int

    current_time: datetime
    class_breakdown: List[ClassBreakdownItem]
    weekly_stats: List[WeeklyStat]
    not_yet_arrived: List[PendingStudent]
    not_yet_arrived_count: int
    pending_early_count: int
    late_pending_count: int


class AdminSchoolSummary(BaseModel):
    id: uuid.UUID
    name: str
    address: Optional[str] = None
    total_students: int
    total_classes: int
    present_today: int
    late_today: int
    absent_today: int
    excused_today: int
    pending_early_count: int
    late_pending_count: int
    currently_in_school: int
    attendance_percent: int


class AdminTotals(BaseModel):
    total_schools: int = 0
    total_students: int = 0
    present_today: int = 0
    late_today: int = 0
    absent_today: int = 0
    excused_today: int = 0
    pending_early_count: int = 0
    late_pending_count: int = 0
    currently_in_school: int = 0
    attendance_percent: int = 0


class AdminDashboardResponse(BaseModel):
    totals: AdminTotals
    schools: List[AdminSchoolSummary]
    weekly_stats: List[WeeklyStat]

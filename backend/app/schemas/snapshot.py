"""
Schémas Pydantic des snapshots agrégés poussés aux tableaux de bord en direct.
Un snapshot n'est jamais persisté : le suivant pour la même clé le remplace.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel


class SnapshotStats(BaseModel):
    total_students: int = 0
    present: int = 0
    late: int = 0
    absent: int = 0
    excused: int = 0
    currently_in_school: int = 0
    pending_early: int = 0
    pending_late: int = 0


class WeeklyStat(BaseModel):
    """Compteurs d'une journée du graphique hebdomadaire."""
    date: str          # ISO YYYY-MM-DD
    day_name: str
    present: int = 0
    late: int = 0
    absent: int = 0


class SchoolSnapshot(BaseModel):
    type: Literal["school_snapshot"] = "school_snapshot"
    school_id: uuid.UUID
    scope: str         # started | active
    timestamp: datetime
    stats: SnapshotStats
    weekly_stats: Optional[List[WeeklyStat]] = None


class ClassSnapshot(SchoolSnapshot):
    type: Literal["class_snapshot"] = "class_snapshot"
    class_id: uuid.UUID


class ConnectionStats(BaseModel):
    """Nombre de connexions SSE ouvertes, au total et par clé de périmètre."""
    total: int
    by_key: Dict[str, int]

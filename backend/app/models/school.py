"""
Modèle SQLAlchemy pour les écoles (tenant).
Le fuseau horaire et les seuils pilotent tout le calcul du statut effectif.
"""

import uuid
from sqlalchemy import Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class School(Base):
    __tablename__ = "schools"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    timezone = Column(String(64), nullable=True)                       # Nom IANA, ex. Asia/Tashkent
    absence_cutoff_minutes = Column(Integer, nullable=False, default=180)  # Après le début du cours → ABSENT
    late_threshold_minutes = Column(Integer, nullable=False, default=15)   # Après le début du cours → LATE
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

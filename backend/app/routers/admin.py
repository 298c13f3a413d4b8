"""
Routes réservées au super-admin : connexions SSE ouvertes et tableau de bord global.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_claims
from app.realtime.hub import RealtimeHub, get_hub
from app.schemas.auth import TokenClaims
from app.schemas.dashboard import AdminDashboardResponse
from app.schemas.snapshot import ConnectionStats
from app.services import access_service, dashboard_service

router = APIRouter(prefix="/api/v1/admin", tags=["Administration"])


@router.get("/connection-stats", response_model=ConnectionStats, summary="Connexions SSE ouvertes")
def get_connection_stats(
    claims: TokenClaims = Depends(get_current_claims),
    hub: RealtimeHub = Depends(get_hub),
):
    """Nombre de flux ouverts, au total et par clé (école, classe, admin)."""
    access_service.require_super_admin(claims)
    return hub.connection_tracker.get_stats()


@router.get("/dashboard", response_model=AdminDashboardResponse, summary="Tableau de bord global")
def get_admin_dashboard(
    period: str = "today",
    scope: str = "started",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    """
    Synthèse par école et totaux. Sur plusieurs jours, les compteurs sont des moyennes
    journalières arrondies par école avant d'être additionnées.
    """
    try:
        return dashboard_service.get_admin_dashboard(db, claims, period, scope, start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

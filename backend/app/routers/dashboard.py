"""
Tableau de bord d'une école (requête/réponse).
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_claims
from app.schemas.auth import TokenClaims
from app.schemas.dashboard import SchoolDashboardResponse
from app.services import access_service, dashboard_service

router = APIRouter(prefix="/api/v1/schools", tags=["Tableau de bord"])

DASHBOARD_ROLES = (access_service.SCHOOL_ADMIN, access_service.TEACHER, access_service.GUARD)


@router.get(
    "/{school_id}/dashboard",
    response_model=SchoolDashboardResponse,
    summary="Statistiques de présence d'une école",
)
def get_school_dashboard(
    school_id: uuid.UUID,
    period: str = "today",
    scope: str = "started",
    class_id: Optional[uuid.UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
):
    """
    period : today | yesterday | week | month | custom (start_date et end_date requis).
    scope  : started | active, appliqué aux compteurs du jour.

    Retourne 404 si l'école ou la classe est introuvable, 400 si la période ou le scope
    est invalide.
    """
    access_service.require_roles(claims, DASHBOARD_ROLES)
    access_service.require_school_scope(claims, school_id)
    try:
        return dashboard_service.get_school_dashboard(
            db, claims, school_id, period, scope, class_id, start_date, end_date,
        )
    except ValueError as e:
        msg = str(e)
        if "introuvable" in msg:
            raise HTTPException(status_code=404, detail=msg)
        raise HTTPException(status_code=400, detail=msg)

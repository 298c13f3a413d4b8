"""
Émission des jetons courts utilisés par les flux SSE.
"""

from fastapi import APIRouter, Depends

from app.dependencies import get_current_claims
from app.schemas.auth import StreamTokenResponse, TokenClaims
from app.services import auth_service

router = APIRouter(prefix="/api/v1/auth", tags=["Authentification"])


@router.get("/stream-token", response_model=StreamTokenResponse, summary="Jeton SSE court")
def get_stream_token(claims: TokenClaims = Depends(get_current_claims)):
    """Échange le jeton Bearer de l'appelant contre un jeton portant le claim "stream"."""
    return auth_service.create_stream_token(claims)

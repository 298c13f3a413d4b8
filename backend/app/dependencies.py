"""
Dépendances FastAPI communes aux routers en requête/réponse.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.exceptions import AuthenticationError
from app.schemas.auth import TokenClaims
from app.services import auth_service

# auto_error=False : l'absence d'en-tête doit produire notre 401 {"error": ...}, pas le 403 de FastAPI
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenClaims:
    """Claims du jeton Bearer de la requête. Lève AuthenticationError si absent ou invalide."""
    if credentials is None:
        raise AuthenticationError("Jeton manquant.")
    return auth_service.decode_token(credentials.credentials)

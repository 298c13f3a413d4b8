"""
Émission et vérification des jetons JWT (PyJWT, HS256).

Les EventSource du navigateur ne savent pas envoyer d'en-tête Authorization :
les flux SSE reçoivent donc le jeton en paramètre d'URL. En production, seuls les
jetons courts portant le claim "stream" sont acceptés pour limiter l'exposition
d'un jeton qui finirait dans des logs de proxy.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import ValidationError

from app.config import settings
from app.exceptions import AuthenticationError
from app.schemas.auth import StreamTokenResponse, TokenClaims

logger = logging.getLogger(__name__)


def _encode(claims: TokenClaims, expires_in: timedelta) -> str:
    payload = claims.model_dump(mode="json", exclude_none=True)
    payload["exp"] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(claims: TokenClaims) -> str:
    """Jeton d'API général (en-tête Authorization: Bearer)."""
    claims = claims.model_copy(update={"stream": False})
    return _encode(claims, timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_stream_token(claims: TokenClaims) -> StreamTokenResponse:
    """
    Jeton court pour les flux SSE, dérivé des claims de l'appelant.
    Durée : STREAM_TOKEN_TTL_SECONDS en production, une heure sinon.
    """
    ttl = settings.STREAM_TOKEN_TTL_SECONDS if settings.is_production else 3600
    stream_claims = claims.model_copy(update={"stream": True})
    return StreamTokenResponse(token=_encode(stream_claims, timedelta(seconds=ttl)), expires_in=ttl)


def decode_token(token: Optional[str]) -> TokenClaims:
    """Vérifie la signature et l'expiration. Lève AuthenticationError sinon."""
    if not token:
        raise AuthenticationError("Jeton manquant.")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return TokenClaims.model_validate(payload)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Jeton expiré.")
    except (jwt.InvalidTokenError, ValidationError) as exc:
        logger.debug("Jeton rejeté : %s", exc)
        raise AuthenticationError("Jeton invalide.")


def decode_stream_token(token: Optional[str], require_stream_claim: Optional[bool] = None) -> TokenClaims:
    """
    Vérifie un jeton reçu en paramètre d'URL par un flux SSE.
    Le claim "stream" est exigé en production (ou si require_stream_claim=True).
    """
    claims = decode_token(token)
    if require_stream_claim is None:
        require_stream_claim = settings.is_production
    if require_stream_claim and not claims.stream:
        raise AuthenticationError("Jeton SSE requis.")
    return claims

"""
Schémas Pydantic des jetons (claims JWT).
"""

import uuid
from typing import Optional

from pydantic import BaseModel


class TokenClaims(BaseModel):
    sub: str                               # Identifiant de l'utilisateur
    role: str                              # SUPER_ADMIN, SCHOOL_ADMIN, TEACHER, GUARD
    school_id: Optional[uuid.UUID] = None
    email: Optional[str] = None
    stream: bool = False                   # Jeton court dédié aux flux SSE

    @property
    def user_id(self) -> uuid.UUID:
        return uuid.UUID(self.sub)


class StreamTokenResponse(BaseModel):
    token: str
    expires_in: int

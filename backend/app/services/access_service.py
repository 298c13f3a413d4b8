"""
Contrôles d'accès par rôle et par périmètre (école, classe).
Le SUPER_ADMIN contourne tous les contrôles de périmètre.
"""

import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.exceptions import AuthorizationError, ResourceNotFoundError
from app.models.school_class import SchoolClass, TeacherClass
from app.schemas.auth import TokenClaims

SUPER_ADMIN = "SUPER_ADMIN"
SCHOOL_ADMIN = "SCHOOL_ADMIN"
TEACHER = "TEACHER"
GUARD = "GUARD"

ALL_ROLES = (SUPER_ADMIN, SCHOOL_ADMIN, TEACHER, GUARD)


def is_super_admin(claims: TokenClaims) -> bool:
    return claims.role == SUPER_ADMIN


def require_roles(claims: TokenClaims, roles: Iterable[str]) -> None:
    if is_super_admin(claims):
        return
    if claims.role not in roles:
        raise AuthorizationError("Accès refusé.")


def require_super_admin(claims: TokenClaims) -> None:
    if not is_super_admin(claims):
        raise AuthorizationError("Accès refusé.")


def require_school_scope(claims: TokenClaims, school_id: uuid.UUID) -> None:
    if is_super_admin(claims):
        return
    if claims.school_id is None or claims.school_id != school_id:
        raise AuthorizationError("Accès refusé.")


def require_class_in_school(db: Session, school_id: uuid.UUID, class_id: uuid.UUID) -> SchoolClass:
    """Lève ResourceNotFoundError si la classe n'existe pas ou appartient à une autre école."""
    school_class = db.get(SchoolClass, class_id)
    if school_class is None or school_class.school_id != school_id:
        raise ResourceNotFoundError("Classe introuvable.")
    return school_class


def get_teacher_class_ids(db: Session, teacher_id: uuid.UUID) -> List[uuid.UUID]:
    return list(db.execute(
        select(TeacherClass.class_id).where(TeacherClass.teacher_id == teacher_id)
    ).scalars().all())


def _teacher_id(claims: TokenClaims) -> uuid.UUID:
    try:
        return claims.user_id
    except ValueError:
        raise AuthorizationError("Accès refusé.")


def require_teacher_class(db: Session, claims: TokenClaims, class_id: uuid.UUID) -> None:
    """Un enseignant ne voit que ses classes ; les autres rôles ne sont pas restreints ici."""
    if claims.role != TEACHER:
        return
    link = db.get(TeacherClass, (_teacher_id(claims), class_id))
    if link is None:
        raise AuthorizationError("Accès refusé.")


def get_allowed_class_ids(db: Session, claims: TokenClaims) -> Optional[List[uuid.UUID]]:
    """Classes visibles par l'appelant : None = toutes (pas de restriction)."""
    if claims.role != TEACHER:
        return None
    return get_teacher_class_ids(db, _teacher_id(claims))

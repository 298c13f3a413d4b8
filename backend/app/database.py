"""
Configuration de la connexion à la base de données PostgreSQL.
Le flux temps réel interroge la base depuis un thread (run_in_threadpool)
avec une session courte ouverte par session_scope().
"""

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.config import settings

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI — fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=SessionLocal):
    """Session hors requête HTTP (scheduler, flux SSE). Toujours fermée en sortie."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()

# database_setup.py

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, Session

import config
from exceptions import ConflictError, NotFoundError, ValidationError
from models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite n'applique les clés étrangères (CASCADE / RESTRICT) que si on le demande."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str = None) -> Engine:
    url = url or config.DATABASE_URL
    engine = create_engine(url, echo=config.SQL_ECHO, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def init_db(bind: Engine = None):
    """Crée toutes les tables du schéma si elles n'existent pas."""
    Base.metadata.create_all(bind or engine)
    logger.info("Schéma initialisé sur %s", (bind or engine).url)


def get_session() -> Session:
    return SessionLocal()


def get_db():
    """Dépendance FastAPI : une session par requête."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ----------------------------------------------------------------------
# OUTILS DE SESSION PARTAGÉS PAR LES OPÉRATIONS MÉTIER
# ----------------------------------------------------------------------

def get_or_404(session: Session, model, ident, label: str):
    obj = session.get(model, ident) if ident is not None else None
    if obj is None:
        raise NotFoundError(f"{label} introuvable", id=ident)
    return obj


@contextmanager
def transaction(session: Session):
    """
    Une opération = une transaction. Commit à la sortie, rollback sur toute
    erreur ; les erreurs d'intégrité sont traduites en erreurs métier.
    """
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        e_msg = str(e.orig).lower() if e.orig else str(e).lower()
        logger.warning("Erreur d'intégrité: %s", e_msg.splitlines()[0])
        if "foreign key" in e_msg:
            raise ConflictError("Opération refusée : des éléments dépendants existent.") from e
        raise ValidationError("Données invalides : contrainte d'unicité ou de validité violée.") from e
    except Exception:
        session.rollback()
        raise

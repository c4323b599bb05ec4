import itertools

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cours_lifecycle
import identity
import structure
from database_setup import _enable_sqlite_foreign_keys
from models import Base
from principal import principal_from_user
from storage import LocalStorage

_counter = itertools.count(1)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "storage"))


@pytest.fixture
def admin(session):
    user = identity.bootstrap_admin(session, "Admin Principal", "admin@courshub.test", "admin-secret")
    return principal_from_user(user)


@pytest.fixture
def filiere(session, admin):
    return structure.create_filiere(session, admin, "Informatique", "Licence info")


@pytest.fixture
def groupe(session, admin, filiere):
    return structure.create_groupe(session, admin, "G7", "2024-2025", 30, filiere.id_filiere)


@pytest.fixture
def autre_groupe(session, admin, filiere):
    return structure.create_groupe(session, admin, "G9", "2024-2025", 30, filiere.id_filiere)


def make_student(session, admin, groupe, **overrides):
    n = next(_counter)
    data = dict(
        role="ETUDIANT",
        nom=f"Etudiant{n}",
        prenom="Test",
        email=f"etudiant{n}@courshub.test",
        password="secret123",
        matricule=f"E2024{n:04d}",
        id_groupe=groupe.id_groupe,
    )
    data.update(overrides)
    user = identity.create_user_with_profile(session, admin, **data)
    return principal_from_user(user)


def make_prof(session, admin, **overrides):
    n = next(_counter)
    data = dict(
        role="PROF",
        nom=f"Prof{n}",
        prenom="Test",
        email=f"prof{n}@courshub.test",
        password="secret123",
        specialite="Réseaux",
    )
    data.update(overrides)
    user = identity.create_user_with_profile(session, admin, **data)
    return principal_from_user(user)


def make_cours(session, principal, storage, groupes, titre="Chapitre 1", type_document="COURS",
               content=b"%PDF-1.4 contenu", filename="chapitre.pdf", description=None):
    return cours_lifecycle.create_cours(
        session, principal, storage, titre, type_document, content, filename,
        [g.id_groupe for g in groupes], description,
    )


@pytest.fixture
def student(session, admin, groupe):
    return make_student(session, admin, groupe)


@pytest.fixture
def prof(session, admin):
    return make_prof(session, admin)

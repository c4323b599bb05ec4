import os

import pytest
from sqlalchemy import select

import config
import cours_lifecycle
from exceptions import AccessDeniedError, NotFoundError, ValidationError
from models import Cours, Diffusion, EtatCours
from tests.conftest import make_cours


def _stored_files(storage):
    folder = os.path.join(storage.root, config.COURS_FOLDER)
    return os.listdir(folder) if os.path.isdir(folder) else []


def test_upload_enters_pending_state(session, prof, storage, groupe, autre_groupe):
    cours = make_cours(session, prof, storage, [groupe, autre_groupe], description="Intro")

    assert cours.est_publie is True
    assert cours.est_valide is False
    assert cours.etat is EtatCours.PUBLISHED_PENDING
    assert [g.id_groupe for g in cours.groupes] == [groupe.id_groupe, autre_groupe.id_groupe]
    assert cours.fichier_url.startswith(f"{config.COURS_FOLDER}/")
    assert cours.fichier_url.endswith(".pdf")
    assert storage.exists(cours.fichier_url)
    for diffusion in cours.diffusions:
        assert diffusion.date_ouverture is None
        assert diffusion.date_fermeture is None


def test_admin_may_upload_too(session, admin, storage, groupe):
    cours = make_cours(session, admin, storage, [groupe])
    assert cours.etat is EtatCours.PUBLISHED_PENDING


def test_student_cannot_upload(session, student, storage, groupe):
    with pytest.raises(AccessDeniedError):
        make_cours(session, student, storage, [groupe])
    assert _stored_files(storage) == []


@pytest.mark.parametrize("kwargs", [
    {"titre": ""},
    {"titre": "x" * 256},
    {"type_document": "PDF"},
    {"content": b""},
])
def test_invalid_upload_creates_nothing(session, prof, storage, groupe, kwargs):
    with pytest.raises(ValidationError):
        make_cours(session, prof, storage, [groupe], **kwargs)
    assert session.scalars(select(Cours)).all() == []
    assert _stored_files(storage) == []


def test_upload_without_groups_is_rejected(session, prof, storage):
    with pytest.raises(ValidationError):
        make_cours(session, prof, storage, [])
    assert session.scalars(select(Cours)).all() == []
    assert _stored_files(storage) == []


def test_upload_to_unknown_group_leaves_no_orphan_file(session, prof, storage, groupe):
    with pytest.raises(ValidationError):
        cours_lifecycle.create_cours(session, prof, storage, "Titre", "TD", b"data", "td.pdf",
                                     [groupe.id_groupe, 999])
    assert session.scalars(select(Cours)).all() == []
    assert _stored_files(storage) == []


def test_upload_too_large(session, prof, storage, groupe, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 10)
    with pytest.raises(ValidationError):
        make_cours(session, prof, storage, [groupe], content=b"x" * 11)


def test_validate_is_idempotent(session, admin, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])

    cours_lifecycle.validate_cours(session, admin, cours.id_cours)
    cours_lifecycle.validate_cours(session, admin, cours.id_cours)

    assert session.get(Cours, cours.id_cours).etat is EtatCours.LIVE


def test_teacher_cannot_validate(session, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])
    with pytest.raises(AccessDeniedError):
        cours_lifecycle.validate_cours(session, prof, cours.id_cours)
    assert session.get(Cours, cours.id_cours).est_valide is False


def test_validate_unknown_cours(session, admin):
    with pytest.raises(NotFoundError):
        cours_lifecycle.validate_cours(session, admin, 404)


def test_reject_removes_row_distribution_and_file(session, admin, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])
    id_cours, key = cours.id_cours, cours.fichier_url

    cours_lifecycle.reject_cours(session, admin, storage, id_cours)

    session.expire_all()
    assert session.get(Cours, id_cours) is None
    assert session.scalars(select(Diffusion).where(Diffusion.id_cours == id_cours)).all() == []
    assert not storage.exists(key)


def test_reject_with_missing_file_still_deletes_row(session, admin, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])
    storage.delete(cours.fichier_url)

    cours_lifecycle.reject_cours(session, admin, storage, cours.id_cours)

    assert session.get(Cours, cours.id_cours) is None


def test_teacher_cannot_reject(session, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])
    with pytest.raises(AccessDeniedError):
        cours_lifecycle.reject_cours(session, prof, storage, cours.id_cours)
    assert storage.exists(cours.fichier_url)


def test_delete_by_teacher(session, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])
    cours_lifecycle.delete_cours(session, prof, storage, cours.id_cours)
    assert session.get(Cours, cours.id_cours) is None
    assert _stored_files(storage) == []


def test_update_keeps_validation(session, admin, prof, storage, groupe, autre_groupe):
    cours = make_cours(session, prof, storage, [groupe])
    cours_lifecycle.validate_cours(session, admin, cours.id_cours)

    updated = cours_lifecycle.update_cours(session, prof, cours.id_cours, titre="Chapitre 1 (v2)",
                                           type_document="TD", groupes=[autre_groupe.id_groupe])

    assert updated.titre == "Chapitre 1 (v2)"
    assert updated.type_document == "TD"
    assert [d.id_groupe for d in updated.diffusions] == [autre_groupe.id_groupe]
    assert updated.etat is EtatCours.LIVE


def test_update_rejects_bad_type(session, prof, storage, groupe):
    cours = make_cours(session, prof, storage, [groupe])
    with pytest.raises(ValidationError):
        cours_lifecycle.update_cours(session, prof, cours.id_cours, type_document="AUDIO")
    session.expire_all()
    assert session.get(Cours, cours.id_cours).type_document == "COURS"


def test_pending_list_excludes_validated(session, admin, prof, storage, groupe):
    a = make_cours(session, prof, storage, [groupe], titre="A")
    b = make_cours(session, prof, storage, [groupe], titre="B")
    cours_lifecycle.validate_cours(session, admin, a.id_cours)

    pending = cours_lifecycle.list_pending_cours(session, admin)
    assert [c.id_cours for c in pending] == [b.id_cours]

    with pytest.raises(AccessDeniedError):
        cours_lifecycle.list_pending_cours(session, prof)


def test_teacher_lists_every_cours(session, admin, prof, storage, groupe):
    own = make_cours(session, prof, storage, [groupe], titre="Du prof")
    other = make_cours(session, admin, storage, [groupe], titre="De l'admin", type_document="TP")

    ids = [c.id_cours for c in cours_lifecycle.list_all_cours(session, prof)]
    assert ids == [other.id_cours, own.id_cours]

    tps = cours_lifecycle.list_all_cours(session, prof, type_document="TP")
    assert [c.id_cours for c in tps] == [other.id_cours]


def test_student_cannot_list_everything(session, student):
    with pytest.raises(AccessDeniedError):
        cours_lifecycle.list_all_cours(session, student)

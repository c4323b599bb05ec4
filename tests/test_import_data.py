import pandas as pd
import pytest
from sqlalchemy import func, select

import config
import identity
import import_data
from models import Etudiant, Filiere, Groupe, Module, Programme


def _count(session, model):
    return session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def structure_file(tmp_path):
    path = tmp_path / "structure.xlsx"
    pd.DataFrame([
        {"Filiere": "Informatique", "Description Filiere": "Licence", "Groupe": "G7",
         "Annee Scolaire": "2024/2025", "Capacite Max": 35, "Code Module": "INFO-101",
         "Nom Module": "Algorithmique", "Credits ECTS": 6, "Semestre": 1, "Coefficient": 2},
        {"Filiere": "Informatique", "Description Filiere": "Licence", "Groupe": "G7",
         "Annee Scolaire": "2024/2025", "Capacite Max": 35, "Code Module": "INFO-201",
         "Nom Module": "Réseaux", "Credits ECTS": 4, "Semestre": 3, "Coefficient": 1},
        {"Filiere": "Mathématiques", "Description Filiere": None, "Groupe": "M1",
         "Annee Scolaire": "2024-2025", "Capacite Max": None, "Code Module": "MATH-101",
         "Nom Module": "Analyse", "Credits ECTS": 5, "Semestre": 9, "Coefficient": 1},
    ]).to_excel(path, index=False)
    return path


@pytest.fixture
def etudiants_file(tmp_path):
    path = tmp_path / "etudiants.xlsx"
    pd.DataFrame([
        {"Matricule": "E001", "Nom": "Rakoto", "Prenom": "Jean", "Email": "jean@courshub.test",
         "Groupe": "G7", "Annee Scolaire": "2024-2025"},
        {"Matricule": "E002", "Nom": "Rasoa", "Prenom": "Marie", "Email": "marie@courshub.test",
         "Groupe": "G7", "Annee Scolaire": "2024/2025"},
        {"Matricule": "E003", "Nom": "Inconnu", "Prenom": "Groupe", "Email": "inconnu@courshub.test",
         "Groupe": "Z99", "Annee Scolaire": "2024-2025"},
        {"Matricule": "E004", "Nom": "Doublon", "Prenom": "Email", "Email": "jean@courshub.test",
         "Groupe": "G7", "Annee Scolaire": "2024-2025"},
    ]).to_excel(path, index=False)
    return path


def test_structure_import_is_replayable(session, structure_file):
    assert import_data.import_structure_to_db(session, structure_file) is True
    assert import_data.import_structure_to_db(session, structure_file) is True

    assert _count(session, Filiere) == 2
    assert _count(session, Groupe) == 2
    assert _count(session, Module) == 3
    # MATH-101 au semestre 9 est écarté
    assert _count(session, Programme) == 2

    g7 = session.scalar(select(Groupe).where(Groupe.nom_groupe == "G7"))
    assert g7.annee_scolaire == "2024-2025"
    assert g7.capacite_max == 35
    m1 = session.scalar(select(Groupe).where(Groupe.nom_groupe == "M1"))
    assert m1.capacite_max == 30


def test_unreadable_structure_file(session, tmp_path):
    assert import_data.import_structure_to_db(session, tmp_path / "absent.xlsx") is False
    assert _count(session, Filiere) == 0


def test_student_import_counts_and_continues(session, structure_file, etudiants_file):
    import_data.import_structure_to_db(session, structure_file)

    stats = import_data.import_etudiants_to_db(session, etudiants_file)

    assert stats == {"crees": 2, "deja_presents": 0, "erreurs": 2}
    matricules = set(session.scalars(select(Etudiant.matricule)))
    assert matricules == {"E001", "E002"}


def test_student_import_is_replayable(session, structure_file, etudiants_file):
    import_data.import_structure_to_db(session, structure_file)
    import_data.import_etudiants_to_db(session, etudiants_file)

    stats = import_data.import_etudiants_to_db(session, etudiants_file)

    assert stats == {"crees": 0, "deja_presents": 2, "erreurs": 2}
    assert _count(session, Etudiant) == 2


def test_imported_students_can_log_in(session, structure_file, etudiants_file):
    import_data.import_structure_to_db(session, structure_file)
    import_data.import_etudiants_to_db(session, etudiants_file)

    principal = identity.authenticate(session, "jean@courshub.test", config.DEFAULT_STUDENT_PASSWORD)
    assert principal.role.profil.matricule == "E001"


def test_bad_numeric_cells_skip_only_their_rows(session, tmp_path, etudiants_file):
    path = tmp_path / "structure.xlsx"
    pd.DataFrame([
        {"Filiere": "Informatique", "Groupe": "G7", "Annee Scolaire": "2024-2025", "Capacite Max": 35,
         "Code Module": "INFO-101", "Nom Module": "Algorithmique", "Credits ECTS": 6,
         "Semestre": "S3", "Coefficient": 2},
        {"Filiere": "Informatique", "Groupe": "G7", "Annee Scolaire": "2024-2025", "Capacite Max": 35,
         "Code Module": "INFO-201", "Nom Module": "Réseaux", "Credits ECTS": 4,
         "Semestre": 3, "Coefficient": 1},
        {"Filiere": "Physique", "Groupe": "P1", "Annee Scolaire": "2024-2025", "Capacite Max": "trente",
         "Code Module": "PHYS-101", "Nom Module": "Mécanique", "Credits ECTS": "six",
         "Semestre": 1, "Coefficient": 1},
    ]).to_excel(path, index=False)

    assert import_data.import_structure_to_db(session, path) is True

    assert set(session.scalars(select(Groupe.nom_groupe))) == {"G7"}
    assert set(session.scalars(select(Module.code_module))) == {"INFO-101", "INFO-201"}
    programme = session.execute(select(Module.code_module, Programme.semestre).join(Programme)).all()
    assert [tuple(r) for r in programme] == [("INFO-201", 3)]

    # la suite de l'import n'est pas bloquée
    stats = import_data.import_etudiants_to_db(session, etudiants_file)
    assert stats["crees"] == 2


def test_numeric_matricule_and_phone_are_stored_as_text(session, tmp_path, structure_file):
    import_data.import_structure_to_db(session, structure_file)
    path = tmp_path / "etudiants.xlsx"
    pd.DataFrame([
        {"Matricule": 2023001, "Nom": "Rakoto", "Prenom": "Jean", "Email": "jean@courshub.test",
         "Groupe": "G7", "Annee Scolaire": "2024-2025", "Telephone": 341234567},
        {"Matricule": None, "Nom": "Sans", "Prenom": "Matricule", "Email": "sans@courshub.test",
         "Groupe": "G7", "Annee Scolaire": "2024-2025", "Telephone": None},
        {"Matricule": 2023002, "Nom": "Rasoa", "Prenom": "Marie", "Email": "marie@courshub.test",
         "Groupe": "G7", "Annee Scolaire": "2024-2025", "Telephone": None},
    ]).to_excel(path, index=False)

    stats = import_data.import_etudiants_to_db(session, path)

    assert stats == {"crees": 2, "deja_presents": 0, "erreurs": 0}
    etudiants = {e.matricule: e for e in session.scalars(select(Etudiant))}
    assert set(etudiants) == {"2023001", "2023002"}
    assert etudiants["2023001"].telephone == "341234567"
    assert etudiants["2023002"].telephone is None

# structure.py
"""
Structure pédagogique : filières, groupes, modules et les deux pivots
avec attributs (Programme : filière <-> module, Enseigner : prof <-> module).

Les pivots sont en « sync sans détachement » : rattacher une paire déjà
présente met à jour ses attributs, sans créer de doublon ni retirer les
autres liens.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from database_setup import get_or_404, transaction
from exceptions import ConflictError, ValidationError
from models import Enseigner, Etudiant, Filiere, Groupe, Module, Professeur, Programme
from principal import Principal, require_admin, require_prof, require_staff
from validators import optional_text, require_int, require_text, safe_string

logger = logging.getLogger(__name__)

_UNSET = object()


# ==================================================
# FILIÈRES
# ==================================================

def list_filieres(session: Session):
    return session.scalars(select(Filiere).order_by(Filiere.nom_filiere)).all()


def _check_nom_filiere_unique(session, nom, exclude_id=None):
    stmt = select(Filiere.id_filiere).where(Filiere.nom_filiere == nom)
    if exclude_id is not None:
        stmt = stmt.where(Filiere.id_filiere != exclude_id)
    if session.scalar(stmt) is not None:
        raise ValidationError(f"La filière '{nom}' existe déjà.", field="nom_filiere")


def create_filiere(session: Session, principal: Principal, nom_filiere, description=None) -> Filiere:
    require_admin(principal)
    nom = require_text(nom_filiere, "nom_filiere")
    _check_nom_filiere_unique(session, nom)

    with transaction(session):
        filiere = Filiere(nom_filiere=nom, description=optional_text(description, "description"))
        session.add(filiere)
    logger.info("Filière créée: %s", filiere)
    return filiere


def update_filiere(session: Session, principal: Principal, id_filiere,
                   nom_filiere=_UNSET, description=_UNSET) -> Filiere:
    require_admin(principal)
    filiere = get_or_404(session, Filiere, id_filiere, "Filière")

    with transaction(session):
        if nom_filiere is not _UNSET:
            nom = require_text(nom_filiere, "nom_filiere")
            # Le nom actuel reste autorisé pour la filière elle-même
            _check_nom_filiere_unique(session, nom, exclude_id=filiere.id_filiere)
            filiere.nom_filiere = nom
        if description is not _UNSET:
            filiere.description = optional_text(description, "description")
    return filiere


def delete_filiere(session: Session, principal: Principal, id_filiere):
    require_admin(principal)
    filiere = get_or_404(session, Filiere, id_filiere, "Filière")

    nb_groupes = session.scalar(
        select(Groupe.id_groupe).where(Groupe.id_filiere == filiere.id_filiere).limit(1)
    )
    if nb_groupes is not None:
        raise ConflictError("Impossible de supprimer cette filière car elle contient des groupes.",
                            id_filiere=filiere.id_filiere)

    with transaction(session):
        session.delete(filiere)
    logger.info("Filière supprimée: %s", id_filiere)


# ==================================================
# GROUPES
# ==================================================

def list_groupes(session: Session, principal: Principal = None):
    """Tous les groupes avec leur filière (choix des destinataires d'un cours)."""
    if principal is not None:
        require_staff(principal)
    stmt = select(Groupe).options(selectinload(Groupe.filiere)).order_by(Groupe.id_groupe)
    return session.scalars(stmt).all()


def create_groupe(session: Session, principal: Principal, nom_groupe, annee_scolaire,
                  capacite_max, id_filiere) -> Groupe:
    require_admin(principal)
    nom = require_text(nom_groupe, "nom_groupe", max_length=100)
    annee = require_text(annee_scolaire, "annee_scolaire", max_length=9)  # ex: 2024-2025
    capacite = require_int(capacite_max, "capacite_max", minimum=1)
    get_or_404(session, Filiere, id_filiere, "Filière")

    with transaction(session):
        groupe = Groupe(nom_groupe=nom, annee_scolaire=annee, capacite_max=capacite, id_filiere=id_filiere)
        session.add(groupe)
    logger.info("Groupe créé: %s", groupe)
    return groupe


def update_groupe(session: Session, principal: Principal, id_groupe, nom_groupe=_UNSET,
                  annee_scolaire=_UNSET, capacite_max=_UNSET, id_filiere=_UNSET) -> Groupe:
    require_admin(principal)
    groupe = get_or_404(session, Groupe, id_groupe, "Groupe")

    with transaction(session):
        if nom_groupe is not _UNSET:
            groupe.nom_groupe = require_text(nom_groupe, "nom_groupe", max_length=100)
        if annee_scolaire is not _UNSET:
            groupe.annee_scolaire = require_text(annee_scolaire, "annee_scolaire", max_length=9)
        if capacite_max is not _UNSET:
            groupe.capacite_max = require_int(capacite_max, "capacite_max", minimum=1)
        if id_filiere is not _UNSET:
            groupe.filiere = get_or_404(session, Filiere, id_filiere, "Filière")
    return groupe


def delete_groupe(session: Session, principal: Principal, id_groupe):
    """Refusé tant qu'un étudiant référence le groupe (politique RESTRICT)."""
    require_admin(principal)
    groupe = get_or_404(session, Groupe, id_groupe, "Groupe")

    premier_etudiant = session.scalar(
        select(Etudiant.id_etudiant).where(Etudiant.id_groupe == groupe.id_groupe).limit(1)
    )
    if premier_etudiant is not None:
        raise ConflictError("Impossible de supprimer ce groupe car il contient encore des étudiants.",
                            id_groupe=groupe.id_groupe)

    with transaction(session):
        session.delete(groupe)
    logger.info("Groupe supprimé: %s", id_groupe)


# ==================================================
# MODULES
# ==================================================

def list_modules(session: Session):
    return session.scalars(select(Module).order_by(Module.code_module)).all()


def _check_code_module_unique(session, code, exclude_id=None):
    stmt = select(Module.id_module).where(Module.code_module == code)
    if exclude_id is not None:
        stmt = stmt.where(Module.id_module != exclude_id)
    if session.scalar(stmt) is not None:
        raise ValidationError(f"Le code module '{code}' existe déjà.", field="code_module")


def create_module(session: Session, principal: Principal, nom_module, code_module, credits_ects) -> Module:
    require_admin(principal)
    nom = require_text(nom_module, "nom_module")
    code = require_text(code_module, "code_module", max_length=20)
    credits = require_int(credits_ects, "credits_ects", minimum=0)
    _check_code_module_unique(session, code)

    with transaction(session):
        module = Module(nom_module=nom, code_module=code, credits_ects=credits)
        session.add(module)
    logger.info("Module créé: %s (%s)", code, nom)
    return module


def update_module(session: Session, principal: Principal, id_module, nom_module=_UNSET,
                  code_module=_UNSET, credits_ects=_UNSET) -> Module:
    require_admin(principal)
    module = get_or_404(session, Module, id_module, "Module")

    with transaction(session):
        if nom_module is not _UNSET:
            module.nom_module = require_text(nom_module, "nom_module")
        if code_module is not _UNSET:
            code = require_text(code_module, "code_module", max_length=20)
            _check_code_module_unique(session, code, exclude_id=module.id_module)
            module.code_module = code
        if credits_ects is not _UNSET:
            module.credits_ects = require_int(credits_ects, "credits_ects", minimum=0)
    return module


def delete_module(session: Session, principal: Principal, id_module):
    """Supprime le module et ses lignes de programme / d'enseignement."""
    require_admin(principal)
    module = get_or_404(session, Module, id_module, "Module")
    with transaction(session):
        session.delete(module)
    logger.info("Module supprimé: %s", id_module)


# ==================================================
# PROGRAMME (Filière <-> Module)
# ==================================================

def attach_module_to_filiere(session: Session, principal: Principal, id_filiere, id_module,
                             semestre, coefficient) -> Programme:
    """Insère ou met à jour la ligne (filière, module) ; jamais de doublon."""
    require_admin(principal)
    semestre = require_int(semestre, "semestre", minimum=1, maximum=6)
    coefficient = require_int(coefficient, "coefficient", minimum=1)
    get_or_404(session, Filiere, id_filiere, "Filière")
    get_or_404(session, Module, id_module, "Module")

    with transaction(session):
        ligne = session.get(Programme, (id_filiere, id_module))
        if ligne is None:
            ligne = Programme(id_filiere=id_filiere, id_module=id_module)
            session.add(ligne)
        ligne.semestre = semestre
        ligne.coefficient = coefficient
    return ligne


def detach_module_from_filiere(session: Session, principal: Principal, id_filiere, id_module) -> bool:
    """Retire la ligne de programme ; sans effet si elle n'existait pas."""
    require_admin(principal)
    get_or_404(session, Filiere, id_filiere, "Filière")

    with transaction(session):
        ligne = session.get(Programme, (id_filiere, id_module))
        if ligne is None:
            return False
        session.delete(ligne)
    return True


def list_programme(session: Session, id_filiere):
    get_or_404(session, Filiere, id_filiere, "Filière")
    stmt = (select(Programme)
            .where(Programme.id_filiere == id_filiere)
            .options(selectinload(Programme.module))
            .order_by(Programme.semestre, Programme.id_module))
    return session.scalars(stmt).all()


# ==================================================
# ENSEIGNEMENT (Professeur <-> Module)
# ==================================================

def assign_prof_to_module(session: Session, principal: Principal, id_prof, id_module,
                          annee_affectation, est_coordinateur=False) -> Enseigner:
    require_admin(principal)
    annee = require_text(annee_affectation, "annee_affectation", max_length=9)
    if not isinstance(est_coordinateur, bool):
        raise ValidationError("Le champ 'est_coordinateur' doit être un booléen.", field="est_coordinateur")
    get_or_404(session, Professeur, id_prof, "Professeur")
    get_or_404(session, Module, id_module, "Module")

    with transaction(session):
        ligne = session.get(Enseigner, (id_prof, id_module))
        if ligne is None:
            ligne = Enseigner(id_prof=id_prof, id_module=id_module)
            session.add(ligne)
        ligne.annee_affectation = annee
        ligne.est_coordinateur = est_coordinateur
    return ligne


def detach_prof_from_module(session: Session, principal: Principal, id_prof, id_module) -> bool:
    require_admin(principal)
    get_or_404(session, Professeur, id_prof, "Professeur")

    with transaction(session):
        ligne = session.get(Enseigner, (id_prof, id_module))
        if ligne is None:
            return False
        session.delete(ligne)
    return True


def list_teacher_modules(session: Session, principal: Principal):
    """Modules enseignés par le professeur connecté (vide s'il n'a pas de profil)."""
    profil = require_prof(principal)
    if profil is None:
        return []
    stmt = (select(Module)
            .join(Enseigner, Enseigner.id_module == Module.id_module)
            .where(Enseigner.id_prof == profil.id_prof)
            .order_by(Module.code_module))
    return session.scalars(stmt).all()


def normalize_annee(value):
    """'2024/2025' ou ' 2024-2025 ' -> '2024-2025'."""
    value = safe_string(value)
    if isinstance(value, str):
        value = value.replace("/", "-").replace(" ", "")
    return value

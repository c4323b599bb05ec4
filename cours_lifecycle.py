# cours_lifecycle.py
"""
Cycle de vie d'un cours.

    DRAFT --(dépôt)--> PUBLISHED_PENDING --(validation admin)--> LIVE
                              |                                   |
                              +--------(rejet admin)--------------+--> supprimé

Un dépôt entre directement en PUBLISHED_PENDING : « publié » signifie ici
« soumis à modération ». La visibilité étudiante exige en plus la validation.
Le rejet est une suppression définitive (ligne + fichier, sans trace).

Les modifications (titre, description, type, groupes) ne remettent pas
``est_valide`` à False : un cours déjà validé peut être modifié sans
nouvelle modération.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

import config
from database_setup import get_or_404, transaction
from diffusion import normalize_group_ids, replace_diffusion
from exceptions import ValidationError
from models import Cours, Diffusion, TypeDocument
from principal import Principal, require_admin, require_staff
from storage import LocalStorage
from validators import optional_text, require_text, safe_string

logger = logging.getLogger(__name__)

_UNSET = object()


def _require_type(value) -> str:
    try:
        return TypeDocument(safe_string(value)).value
    except ValueError:
        allowed = ", ".join(t.value for t in TypeDocument)
        raise ValidationError(f"Type de document invalide: {value!r} (attendu: {allowed})",
                              field="type_document")


def _cours_query():
    return select(Cours).options(selectinload(Cours.diffusions).selectinload(Diffusion.groupe))


def _newest_first(stmt):
    return stmt.order_by(Cours.created_at.desc(), Cours.id_cours.desc())


# ----------------------------------------------------------------------
# DÉPÔT
# ----------------------------------------------------------------------

def create_cours(session: Session, principal: Principal, storage: LocalStorage, titre, type_document,
                 fichier: bytes, filename: str, groupes, description=None) -> Cours:
    """
    Dépose un fichier et crée le cours, diffusé aux groupes donnés
    (au moins un). Le cours est publié et en attente de validation.
    """
    require_staff(principal)
    titre = require_text(titre, "titre", max_length=255)
    type_document = _require_type(type_document)
    description = optional_text(description, "description")

    if not fichier:
        raise ValidationError("Le fichier est requis.", field="fichier")
    if len(fichier) > config.MAX_UPLOAD_BYTES:
        raise ValidationError("Le fichier dépasse la taille maximale autorisée (20 Mo).", field="fichier")

    group_ids = normalize_group_ids(groupes)
    if not group_ids:
        raise ValidationError("Au moins un groupe destinataire est requis.", field="groupes")

    key = storage.write(fichier, config.COURS_FOLDER, filename)
    try:
        with transaction(session):
            cours = Cours(
                titre=titre,
                description=description,
                type_document=type_document,
                fichier_url=key,
                est_publie=True,
                est_valide=False,
            )
            session.add(cours)
            replace_diffusion(session, cours, group_ids)
    except Exception:
        # Pas de fichier orphelin si la ligne n'a pas pu être créée
        storage.delete(key)
        raise

    logger.info("Cours déposé par %s: %s", principal.email, cours)
    return cours


# ----------------------------------------------------------------------
# MODÉRATION (ADMIN)
# ----------------------------------------------------------------------

def validate_cours(session: Session, principal: Principal, id_cours) -> Cours:
    """Rend le cours visible aux groupes destinataires. Idempotent."""
    require_admin(principal)
    cours = get_or_404(session, Cours, id_cours, "Cours")

    with transaction(session):
        cours.est_valide = True
        # On s'assure qu'il est aussi publié
        cours.est_publie = True

    logger.info("Cours validé: %s", id_cours)
    return cours


def _remove_file(storage: LocalStorage, key: str):
    """Suppression du fichier physique au mieux ; son absence ne bloque rien."""
    try:
        if not storage.delete(key):
            logger.warning("Fichier déjà absent lors de la suppression: %s", key)
    except OSError as e:
        logger.error("Échec de suppression du fichier %s: %s", key, e)


def reject_cours(session: Session, principal: Principal, storage: LocalStorage, id_cours):
    """Rejet = suppression définitive du cours et de son fichier."""
    require_admin(principal)
    cours = get_or_404(session, Cours, id_cours, "Cours")
    key = cours.fichier_url

    with transaction(session):
        session.delete(cours)
    _remove_file(storage, key)
    logger.info("Cours rejeté et supprimé: %s", id_cours)


# ----------------------------------------------------------------------
# MODIFICATION / SUPPRESSION (PROF OU ADMIN)
# ----------------------------------------------------------------------

def update_cours(session: Session, principal: Principal, id_cours, titre=_UNSET, description=_UNSET,
                 type_document=_UNSET, groupes=_UNSET) -> Cours:
    require_staff(principal)
    cours = get_or_404(session, Cours, id_cours, "Cours")

    with transaction(session):
        if titre is not _UNSET:
            cours.titre = require_text(titre, "titre", max_length=255)
        if description is not _UNSET:
            cours.description = optional_text(description, "description")
        if type_document is not _UNSET:
            cours.type_document = _require_type(type_document)
        if groupes is not _UNSET:
            replace_diffusion(session, cours, groupes)
    return cours


def delete_cours(session: Session, principal: Principal, storage: LocalStorage, id_cours):
    require_staff(principal)
    cours = get_or_404(session, Cours, id_cours, "Cours")
    key = cours.fichier_url

    with transaction(session):
        session.delete(cours)
    _remove_file(storage, key)
    logger.info("Cours supprimé par %s: %s", principal.email, id_cours)


# ----------------------------------------------------------------------
# CONSULTATION NON FILTRÉE (PROF OU ADMIN)
# ----------------------------------------------------------------------

def list_all_cours(session: Session, principal: Principal, type_document=None):
    """
    Tous les cours, du plus récent au plus ancien. Les professeurs voient
    l'ensemble des cours, pas seulement les leurs (aucun lien de dépôt).
    """
    require_staff(principal)
    stmt = _cours_query()
    if type_document is not None:
        stmt = stmt.where(Cours.type_document == _require_type(type_document))
    return session.scalars(_newest_first(stmt)).all()


def list_pending_cours(session: Session, principal: Principal):
    require_admin(principal)
    stmt = _cours_query().where(Cours.est_valide.is_(False))
    return session.scalars(_newest_first(stmt)).all()

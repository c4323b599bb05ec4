# visibility.py
"""
Moteur de visibilité : quel cours est accessible à quel étudiant.

Un cours est accessible à un étudiant si et seulement si :

* il est publié ET validé,
* une ligne de diffusion le relie au groupe de l'étudiant,
* l'instant courant est dans la fenêtre [ouverture, fermeture] de cette
  diffusion (une borne absente n'est pas limitante).

``check_access`` est le seul point de décision ; la liste, la recherche,
les notifications et le téléchargement l'appellent tous. Le téléchargement
refait la vérification à chaque appel, la fenêtre ayant pu se refermer
depuis l'affichage de la liste.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from exceptions import AccessDeniedError, DenialReason, NotFoundError, StorageInconsistencyError
from models import Cours, Diffusion, utcnow
from principal import Principal, RoleAdmin, RoleEtudiant, RoleProfesseur, require_student
from storage import LocalStorage

logger = logging.getLogger(__name__)

DENIAL_MESSAGES = {
    DenialReason.NOT_A_STUDENT: "Accès refusé : réservé aux étudiants.",
    DenialReason.NO_GROUP: "Accès refusé : profil étudiant incomplet ou sans groupe.",
    DenialReason.UNKNOWN_COURS: "Ce cours n'existe pas.",
    DenialReason.NOT_PUBLISHED: "Accès refusé : ce cours n'est pas publié.",
    DenialReason.NOT_VALIDATED: "Accès refusé : ce cours n'a pas encore été validé par l'administrateur.",
    DenialReason.WRONG_GROUP: "Accès refusé : ce cours n'est pas destiné à votre groupe.",
    DenialReason.WINDOW_NOT_OPEN: "Accès refusé : ce cours n'est pas encore disponible.",
    DenialReason.WINDOW_CLOSED: "Accès refusé : ce cours n'est plus disponible.",
}


def _student_group(principal: Principal):
    """Identifiant du groupe de l'étudiant, ou un motif de refus."""
    role = principal.role
    if isinstance(role, RoleEtudiant):
        profil = role.profil
        if profil is None or profil.id_groupe is None:
            return None, DenialReason.NO_GROUP
        return profil.id_groupe, None
    if isinstance(role, (RoleProfesseur, RoleAdmin)):
        return None, DenialReason.NOT_A_STUDENT
    raise TypeError(f"Variante de rôle inconnue: {role!r}")


def _naive_utc(now: Optional[datetime]) -> datetime:
    """Instant de référence en UTC naïf, comme les bornes des fenêtres."""
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def check_access(principal: Principal, cours: Optional[Cours], now: datetime = None) -> Optional[DenialReason]:
    """None si l'accès est accordé, sinon le motif du refus. Sans effet de bord."""
    id_groupe, reason = _student_group(principal)
    if reason is not None:
        return reason
    if cours is None:
        return DenialReason.UNKNOWN_COURS
    if not cours.est_publie:
        return DenialReason.NOT_PUBLISHED
    if not cours.est_valide:
        return DenialReason.NOT_VALIDATED

    diffusion = cours.diffusion_pour(id_groupe)
    if diffusion is None:
        return DenialReason.WRONG_GROUP

    now = _naive_utc(now)
    if diffusion.date_ouverture is not None and now < diffusion.date_ouverture:
        return DenialReason.WINDOW_NOT_OPEN
    if diffusion.date_fermeture is not None and now > diffusion.date_fermeture:
        return DenialReason.WINDOW_CLOSED
    return None


def can_access(principal: Principal, cours: Optional[Cours], now: datetime = None) -> bool:
    return check_access(principal, cours, now) is None


def _require_student_group(principal: Principal) -> int:
    require_student(principal)
    id_groupe, reason = _student_group(principal)
    if reason is not None:
        raise AccessDeniedError(DENIAL_MESSAGES[reason], reason=reason)
    return id_groupe


# ----------------------------------------------------------------------
# LISTE, RECHERCHE, NOTIFICATIONS
# ----------------------------------------------------------------------

def list_visible_cours(session: Session, principal: Principal, now: datetime = None):
    """Cours accessibles à l'étudiant, du plus récent au plus ancien."""
    id_groupe = _require_student_group(principal)
    now = _naive_utc(now)

    # Présélection SQL par groupe ; la décision reste celle de check_access
    stmt = (select(Cours)
            .join(Diffusion, Diffusion.id_cours == Cours.id_cours)
            .where(Diffusion.id_groupe == id_groupe)
            .options(selectinload(Cours.diffusions).selectinload(Diffusion.groupe))
            .order_by(Cours.created_at.desc(), Cours.id_cours.desc()))
    return [c for c in session.scalars(stmt).unique() if can_access(principal, c, now)]


def search_visible_cours(session: Session, principal: Principal, q: str, now: datetime = None):
    """Recherche (titre ou description) limitée aux cours accessibles."""
    needle = (q or "").strip().lower()
    cours = list_visible_cours(session, principal, now)
    if not needle:
        return cours
    return [c for c in cours
            if needle in c.titre.lower() or needle in (c.description or "").lower()]


def latest_visible_cours(session: Session, principal: Principal, limit: int = 5, now: datetime = None):
    return list_visible_cours(session, principal, now)[:limit]


# ----------------------------------------------------------------------
# TÉLÉCHARGEMENT
# ----------------------------------------------------------------------

@dataclass
class Telechargement:
    cours: Cours
    stream: BinaryIO
    filename: str
    path: str


def download_filename(cours: Cours) -> str:
    ext = os.path.splitext(cours.fichier_url)[1]
    return f"{cours.titre}{ext}"


def resolve_download(session: Session, principal: Principal, storage: LocalStorage, id_cours,
                     now: datetime = None) -> Telechargement:
    """
    Revérifie l'accès puis ouvre le fichier. Lève NotFoundError (cours
    inconnu), AccessDeniedError (avec son motif) ou StorageInconsistencyError
    (fichier physique absent).
    """
    id_groupe = _require_student_group(principal)

    cours = session.get(Cours, id_cours)
    reason = check_access(principal, cours, now)
    if reason is DenialReason.UNKNOWN_COURS:
        raise NotFoundError(DENIAL_MESSAGES[reason], id=id_cours, reason=reason)
    if reason is not None:
        logger.info("Téléchargement refusé (%s): cours %s, groupe %s", reason.value, id_cours, id_groupe)
        raise AccessDeniedError(DENIAL_MESSAGES[reason], reason=reason, id_cours=id_cours,
                                votre_groupe_id=id_groupe)

    path = storage.resolve(cours.fichier_url)
    if path is None:
        logger.error("Fichier physique introuvable pour le cours %s: %s", id_cours, cours.fichier_url)
        raise StorageInconsistencyError("Erreur serveur : le fichier physique est introuvable.",
                                        id_cours=id_cours, url_stockee=cours.fichier_url)

    return Telechargement(cours=cours, stream=storage.read(cours.fichier_url),
                          filename=download_filename(cours), path=path)

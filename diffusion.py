# diffusion.py
"""
Diffusion d'un cours aux groupes.

``set_diffusion`` remplace intégralement l'ensemble des groupes d'un cours :
les groupes absents de la nouvelle liste sont détachés, les nouveaux sont
rattachés sans fenêtre de disponibilité, ceux qui restent conservent la leur.
Le remplacement se fait dans une seule transaction.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from database_setup import get_or_404, transaction
from exceptions import NotFoundError, ValidationError
from models import Cours, Diffusion, Groupe
from principal import Principal, require_staff
from validators import optional_datetime, require_int

logger = logging.getLogger(__name__)


def normalize_group_ids(group_ids):
    if group_ids is None or isinstance(group_ids, (str, bytes)):
        raise ValidationError("Le champ 'groupes' doit être une liste d'identifiants.", field="groupes")
    try:
        ids = list(group_ids)
    except TypeError:
        raise ValidationError("Le champ 'groupes' doit être une liste d'identifiants.", field="groupes")

    result = []
    for value in ids:
        id_groupe = require_int(value, "groupes", minimum=1)
        if id_groupe not in result:
            result.append(id_groupe)
    return result


def _check_groups_exist(session: Session, group_ids):
    if not group_ids:
        return
    found = set(session.scalars(select(Groupe.id_groupe).where(Groupe.id_groupe.in_(group_ids))))
    missing = [g for g in group_ids if g not in found]
    if missing:
        raise ValidationError(f"Groupe(s) inexistant(s): {missing}", field="groupes", missing=missing)


def replace_diffusion(session: Session, cours: Cours, group_ids):
    """
    Remplace les lignes de diffusion du cours, sans commit : l'appelant
    décide de la transaction englobante.
    """
    group_ids = normalize_group_ids(group_ids)
    _check_groups_exist(session, group_ids)

    wanted = set(group_ids)
    for diffusion in list(cours.diffusions):
        if diffusion.id_groupe not in wanted:
            cours.diffusions.remove(diffusion)

    present = {d.id_groupe for d in cours.diffusions}
    for id_groupe in group_ids:
        if id_groupe not in present:
            cours.diffusions.append(Diffusion(id_groupe=id_groupe))
    return cours


def set_diffusion(session: Session, principal: Principal, id_cours, group_ids) -> Cours:
    require_staff(principal)
    cours = get_or_404(session, Cours, id_cours, "Cours")

    with transaction(session):
        replace_diffusion(session, cours, group_ids)
    logger.info("Diffusion du cours %s: groupes %s", id_cours, [d.id_groupe for d in cours.diffusions])
    return cours


def set_window(session: Session, principal: Principal, id_cours, id_groupe,
               date_ouverture=None, date_fermeture=None) -> Diffusion:
    """Fixe la fenêtre de disponibilité d'une diffusion existante (None = non bornée)."""
    require_staff(principal)
    get_or_404(session, Cours, id_cours, "Cours")

    ouverture = optional_datetime(date_ouverture, "date_ouverture")
    fermeture = optional_datetime(date_fermeture, "date_fermeture")
    if ouverture is not None and fermeture is not None and fermeture < ouverture:
        raise ValidationError("La date de fermeture précède la date d'ouverture.", field="date_fermeture")

    diffusion = session.get(Diffusion, (id_cours, id_groupe))
    if diffusion is None:
        raise NotFoundError("Ce cours n'est pas diffusé à ce groupe.", id_cours=id_cours, id_groupe=id_groupe)

    with transaction(session):
        diffusion.date_ouverture = ouverture
        diffusion.date_fermeture = fermeture
    return diffusion

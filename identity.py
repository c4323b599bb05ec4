# identity.py
"""
Provisionnement des comptes : un compte de connexion et exactement un
profil métier correspondant (étudiant ou professeur), créés dans la même
transaction. Si le profil échoue, le compte n'est pas conservé.
"""

import logging

from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from database_setup import get_or_404, transaction
from exceptions import (
    AccessDeniedError, AuthenticationError, DenialReason, NotFoundError, ValidationError
)
from models import Etudiant, Groupe, Professeur, Role, Utilisateur, utcnow
from principal import Principal, principal_from_user, require_admin, require_student
from validators import optional_date, optional_text, require_text, safe_string

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


# ----------------------------------------------------------------------
# CONTRÔLES D'UNICITÉ
# ----------------------------------------------------------------------

def _check_email_unique(session: Session, email: str, exclude_user_id=None):
    stmt = select(Utilisateur.id).where(Utilisateur.email == email)
    if exclude_user_id is not None:
        stmt = stmt.where(Utilisateur.id != exclude_user_id)
    if session.scalar(stmt) is not None:
        raise ValidationError(f"L'email '{email}' est déjà utilisé.", field="email")

    # L'email est recopié dans les profils, eux aussi uniques
    for model in (Etudiant, Professeur):
        stmt = select(model.user_id).where(model.email == email)
        if exclude_user_id is not None:
            stmt = stmt.where(model.user_id != exclude_user_id)
        if session.scalar(stmt) is not None:
            raise ValidationError(f"L'email '{email}' est déjà utilisé.", field="email")


def _check_matricule_unique(session: Session, matricule: str, exclude_user_id=None):
    stmt = select(Etudiant.id_etudiant).where(Etudiant.matricule == matricule)
    if exclude_user_id is not None:
        stmt = stmt.where(Etudiant.user_id != exclude_user_id)
    if session.scalar(stmt) is not None:
        raise ValidationError(f"Le matricule '{matricule}' est déjà attribué.", field="matricule")


def _require_email(value) -> str:
    email = require_text(value, "email")
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise ValidationError(f"L'email '{email}' n'est pas valide.", field="email")
    return email.lower()


def _require_groupe(session: Session, id_groupe) -> Groupe:
    if id_groupe in (None, ""):
        raise ValidationError("Le champ 'id_groupe' est requis pour un étudiant.", field="id_groupe")
    groupe = session.get(Groupe, id_groupe)
    if groupe is None:
        raise ValidationError(f"Le groupe {id_groupe} n'existe pas.", field="id_groupe")
    return groupe


# ----------------------------------------------------------------------
# CRÉATION
# ----------------------------------------------------------------------

def create_user_with_profile(session: Session, principal: Principal, role, nom, prenom, email, password,
                             telephone=None, adresse=None, date_naissance=None,
                             matricule=None, id_groupe=None, specialite=None) -> Utilisateur:
    """
    Crée un utilisateur (Admin, Prof ou Étudiant) avec son profil associé.

    Étudiant : ``matricule`` unique et ``id_groupe`` existant obligatoires.
    Professeur : ``specialite`` optionnelle.
    """
    require_admin(principal)

    try:
        role = Role(safe_string(role))
    except ValueError:
        raise ValidationError(f"Rôle inconnu: {role!r}", field="role")

    nom = require_text(nom, "nom", max_length=50)
    prenom = require_text(prenom, "prenom", max_length=50)
    email = _require_email(email)
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Le mot de passe doit contenir au moins {MIN_PASSWORD_LENGTH} caractères.",
                              field="password")
    _check_email_unique(session, email)

    profil_data = dict(
        nom=nom,
        prenom=prenom,
        email=email,
        telephone=optional_text(telephone, "telephone", max_length=20),
        adresse=optional_text(adresse, "adresse", max_length=255),
        date_naissance=optional_date(date_naissance, "date_naissance"),
    )

    if role is Role.ETUDIANT:
        matricule = safe_string(matricule)
        if not matricule:
            raise ValidationError("Le champ 'matricule' est requis pour un étudiant.", field="matricule")
        matricule = require_text(matricule, "matricule", max_length=50)
        _check_matricule_unique(session, matricule)
        groupe = _require_groupe(session, id_groupe)

    with transaction(session):
        user = Utilisateur(
            name=f"{prenom} {nom}",
            email=email,
            password_hash=hash_password(password),
            role=role.value,
        )
        session.add(user)
        session.flush()

        if role is Role.ETUDIANT:
            user.etudiant = Etudiant(matricule=matricule, groupe=groupe, date_inscription=utcnow(),
                                     **profil_data)
        elif role is Role.PROF:
            user.professeur = Professeur(specialite=optional_text(specialite, "specialite", max_length=100),
                                         date_embauche=utcnow().date(), est_actif=True, **profil_data)

    logger.info("Utilisateur créé: %s", user)
    return user


def bootstrap_admin(session: Session, name, email, password) -> Utilisateur:
    """Crée le premier administrateur ; refusé si un administrateur existe déjà."""
    if session.scalar(select(Utilisateur.id).where(Utilisateur.role == Role.ADMIN.value).limit(1)) is not None:
        raise ValidationError("Un administrateur existe déjà.")
    email = _require_email(email)
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Le mot de passe doit contenir au moins {MIN_PASSWORD_LENGTH} caractères.",
                              field="password")
    _check_email_unique(session, email)

    with transaction(session):
        user = Utilisateur(name=require_text(name, "name"), email=email,
                           password_hash=hash_password(password), role=Role.ADMIN.value)
        session.add(user)
    logger.info("Administrateur initial créé: %s", email)
    return user


# ----------------------------------------------------------------------
# CONSULTATION / MISE À JOUR / SUPPRESSION
# ----------------------------------------------------------------------

def _user_query():
    return select(Utilisateur).options(
        selectinload(Utilisateur.etudiant).selectinload(Etudiant.groupe),
        selectinload(Utilisateur.professeur),
    )


def list_users(session: Session, principal: Principal):
    require_admin(principal)
    stmt = _user_query().order_by(Utilisateur.created_at.desc(), Utilisateur.id.desc())
    return session.scalars(stmt).all()


def get_user(session: Session, principal: Principal, user_id) -> Utilisateur:
    require_admin(principal)
    user = session.scalar(_user_query().where(Utilisateur.id == user_id))
    if user is None:
        raise NotFoundError("Utilisateur introuvable", id=user_id)
    return user


_PROFILE_FIELDS = ("nom", "prenom", "telephone", "adresse", "date_naissance")


def update_user(session: Session, principal: Principal, user_id, **fields) -> Utilisateur:
    """
    Met à jour le compte et son profil. Champs acceptés : name, email,
    nom, prenom, telephone, adresse, date_naissance, plus id_groupe
    (étudiant) ou date_embauche, specialite, est_actif (professeur).
    """
    require_admin(principal)
    user = get_user(session, principal, user_id)

    allowed = {"name", "email", "id_groupe", "date_embauche", "specialite", "est_actif"} | set(_PROFILE_FIELDS)
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Champs non modifiables: {', '.join(sorted(unknown))}")

    profil = user.etudiant or user.professeur

    with transaction(session):
        if "name" in fields:
            user.name = require_text(fields["name"], "name")
        if "email" in fields:
            email = _require_email(fields["email"])
            _check_email_unique(session, email, exclude_user_id=user.id)
            user.email = email
            if profil is not None:
                profil.email = email

        if profil is not None:
            if "nom" in fields:
                profil.nom = require_text(fields["nom"], "nom", max_length=50)
            if "prenom" in fields:
                profil.prenom = require_text(fields["prenom"], "prenom", max_length=50)
            if "telephone" in fields:
                profil.telephone = optional_text(fields["telephone"], "telephone", max_length=20)
            if "adresse" in fields:
                profil.adresse = optional_text(fields["adresse"], "adresse", max_length=255)
            if "date_naissance" in fields:
                profil.date_naissance = optional_date(fields["date_naissance"], "date_naissance")

        if user.etudiant is not None and "id_groupe" in fields:
            user.etudiant.groupe = _require_groupe(session, fields["id_groupe"])

        if user.professeur is not None:
            if "date_embauche" in fields:
                user.professeur.date_embauche = optional_date(fields["date_embauche"], "date_embauche")
            if "specialite" in fields:
                user.professeur.specialite = optional_text(fields["specialite"], "specialite", max_length=100)
            if "est_actif" in fields:
                if not isinstance(fields["est_actif"], bool):
                    raise ValidationError("Le champ 'est_actif' doit être un booléen.", field="est_actif")
                user.professeur.est_actif = fields["est_actif"]

    return user


def _super_admin_id(session: Session):
    """Le Super Admin est le plus ancien compte administrateur (celui de bootstrap_admin)."""
    return session.scalar(select(func.min(Utilisateur.id)).where(Utilisateur.role == Role.ADMIN.value))


def delete_user(session: Session, principal: Principal, user_id):
    """Supprime le compte ; le profil lié part avec lui (cascade)."""
    require_admin(principal)
    user = get_or_404(session, Utilisateur, user_id, "Utilisateur")

    if user.role == Role.ADMIN.value and user.id == _super_admin_id(session):
        raise AccessDeniedError("Impossible de supprimer le Super Admin.", reason=DenialReason.ROLE_FORBIDDEN)

    with transaction(session):
        session.delete(user)
    logger.info("Utilisateur %s et son profil supprimés", user_id)


# ----------------------------------------------------------------------
# AUTHENTIFICATION
# ----------------------------------------------------------------------

def load_principal(session: Session, user_id) -> Principal:
    user = session.scalar(_user_query().where(Utilisateur.id == user_id))
    if user is None:
        raise AuthenticationError("Utilisateur inconnu.")
    return principal_from_user(user)


def authenticate(session: Session, email, password) -> Principal:
    email = safe_string(email)
    email = email.lower() if isinstance(email, str) else email
    user = session.scalar(_user_query().where(Utilisateur.email == email))
    if user is None or not isinstance(password, str) or not verify_password(password, user.password_hash):
        raise AuthenticationError("Identifiants incorrects.")
    return principal_from_user(user)


def get_student_profile(principal: Principal) -> Etudiant:
    profil = require_student(principal)
    if profil is None:
        raise NotFoundError("Profil étudiant non trouvé.")
    return profil

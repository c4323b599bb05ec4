# principal.py
"""
Principal authentifié passé explicitement à chaque opération métier.

Le rôle est une variante étiquetée : ``RoleEtudiant(profil)``,
``RoleProfesseur(profil)`` ou ``RoleAdmin()``. Les fonctions qui
dépendent du rôle traitent chaque variante et échouent sur une variante
inconnue, si bien qu'ajouter un rôle oblige à revoir ces fonctions.
"""

from dataclasses import dataclass
from typing import Optional, Union

from exceptions import AccessDeniedError, DenialReason
from models import Etudiant, Professeur, Role, Utilisateur


@dataclass(frozen=True)
class RoleEtudiant:
    profil: Optional[Etudiant]


@dataclass(frozen=True)
class RoleProfesseur:
    profil: Optional[Professeur]


@dataclass(frozen=True)
class RoleAdmin:
    pass


RoleVariant = Union[RoleEtudiant, RoleProfesseur, RoleAdmin]


@dataclass(frozen=True)
class Principal:
    user_id: int
    name: str
    email: str
    role: RoleVariant

    @property
    def role_code(self) -> Role:
        return role_code(self.role)


def role_code(variant: RoleVariant) -> Role:
    if isinstance(variant, RoleEtudiant):
        return Role.ETUDIANT
    if isinstance(variant, RoleProfesseur):
        return Role.PROF
    if isinstance(variant, RoleAdmin):
        return Role.ADMIN
    raise TypeError(f"Variante de rôle inconnue: {variant!r}")


def principal_from_user(user: Utilisateur) -> Principal:
    """Construit le principal à partir du compte et de son profil métier chargé."""
    role = Role(user.role)
    if role is Role.ETUDIANT:
        variant = RoleEtudiant(user.etudiant)
    elif role is Role.PROF:
        variant = RoleProfesseur(user.professeur)
    elif role is Role.ADMIN:
        variant = RoleAdmin()
    else:
        raise TypeError(f"Rôle inconnu: {role!r}")
    return Principal(user_id=user.id, name=user.name, email=user.email, role=variant)


def require_admin(principal: Principal):
    if not isinstance(principal.role, RoleAdmin):
        raise AccessDeniedError("Action réservée à l'administrateur.", reason=DenialReason.ROLE_FORBIDDEN)


def require_staff(principal: Principal):
    """Professeur ou administrateur."""
    if not isinstance(principal.role, (RoleProfesseur, RoleAdmin)):
        raise AccessDeniedError("Action réservée aux professeurs et administrateurs.",
                                reason=DenialReason.ROLE_FORBIDDEN)


def require_prof(principal: Principal) -> Professeur:
    if not isinstance(principal.role, RoleProfesseur):
        raise AccessDeniedError("Action réservée aux professeurs.", reason=DenialReason.ROLE_FORBIDDEN)
    return principal.role.profil


def require_student(principal: Principal) -> Optional[Etudiant]:
    if not isinstance(principal.role, RoleEtudiant):
        raise AccessDeniedError("Action réservée aux étudiants.", reason=DenialReason.NOT_A_STUDENT)
    return principal.role.profil

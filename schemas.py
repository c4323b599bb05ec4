"""
Schémas d'échange de l'API CoursHub.

Les modèles ``*Payload`` valident les corps de requête ; les modèles ``*Out``
décrivent les réponses. Le hash du mot de passe n'apparaît dans aucun
modèle de sortie.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from models import Cours, Etudiant, Filiere, Groupe, Module, Professeur, Utilisateur


# -------------------- Requêtes -------------------- #

class LoginPayload(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


class FilierePayload(BaseModel):
    nom_filiere: str
    description: Optional[str] = None


class FiliereUpdatePayload(BaseModel):
    nom_filiere: Optional[str] = None
    description: Optional[str] = None


class GroupePayload(BaseModel):
    nom_groupe: str
    annee_scolaire: str = Field(..., description="ex: 2024-2025")
    capacite_max: int
    id_filiere: int


class GroupeUpdatePayload(BaseModel):
    nom_groupe: Optional[str] = None
    annee_scolaire: Optional[str] = None
    capacite_max: Optional[int] = None
    id_filiere: Optional[int] = None


class ModulePayload(BaseModel):
    nom_module: str
    code_module: str
    credits_ects: int


class ModuleUpdatePayload(BaseModel):
    nom_module: Optional[str] = None
    code_module: Optional[str] = None
    credits_ects: Optional[int] = None


class ProgrammePayload(BaseModel):
    id_filiere: int
    id_module: int
    semestre: int
    coefficient: int


class EnseignementPayload(BaseModel):
    id_prof: int
    id_module: int
    annee_affectation: str
    est_coordinateur: bool = False


class UserCreatePayload(BaseModel):
    nom: str
    prenom: str
    email: str
    password: str
    role: Literal["ETUDIANT", "PROF", "ADMIN"]
    telephone: Optional[str] = None
    adresse: Optional[str] = None
    date_naissance: Optional[date] = None
    matricule: Optional[str] = None
    id_groupe: Optional[int] = None
    specialite: Optional[str] = None


class UserUpdatePayload(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    nom: Optional[str] = None
    prenom: Optional[str] = None
    telephone: Optional[str] = None
    adresse: Optional[str] = None
    date_naissance: Optional[date] = None
    id_groupe: Optional[int] = None
    date_embauche: Optional[date] = None
    specialite: Optional[str] = None
    est_actif: Optional[bool] = None


class CoursUpdatePayload(BaseModel):
    titre: Optional[str] = None
    description: Optional[str] = None
    type_document: Optional[str] = None
    groupes: Optional[List[int]] = None


class DiffusionPayload(BaseModel):
    groupes: List[int]


class FenetrePayload(BaseModel):
    date_ouverture: Optional[datetime] = None
    date_fermeture: Optional[datetime] = None


# -------------------- Réponses -------------------- #

class GroupRef(BaseModel):
    id: int
    name: str


class CoursOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    kind: str
    createdAt: datetime
    groups: List[GroupRef] = []


class CoursAdminOut(CoursOut):
    published: bool
    validated: bool
    state: str


class FiliereOut(BaseModel):
    id: int
    nom_filiere: str
    description: Optional[str] = None


class GroupeOut(BaseModel):
    id: int
    nom_groupe: str
    annee_scolaire: str
    capacite_max: int
    id_filiere: int
    filiere: Optional[str] = None


class ModuleOut(BaseModel):
    id: int
    nom_module: str
    code_module: str
    credits_ects: int


class EtudiantOut(BaseModel):
    id_etudiant: int
    matricule: str
    nom: str
    prenom: str
    email: str
    telephone: Optional[str] = None
    adresse: Optional[str] = None
    date_naissance: Optional[date] = None
    date_inscription: datetime
    groupe: Optional[GroupeOut] = None


class ProfesseurOut(BaseModel):
    id_prof: int
    nom: str
    prenom: str
    email: str
    specialite: Optional[str] = None
    date_embauche: Optional[date] = None
    est_actif: bool


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    created_at: datetime
    etudiant: Optional[EtudiantOut] = None
    professeur: Optional[ProfesseurOut] = None


# -------------------- Conversion ORM -> réponse -------------------- #

def groupe_out(groupe: Groupe) -> GroupeOut:
    return GroupeOut(
        id=groupe.id_groupe,
        nom_groupe=groupe.nom_groupe,
        annee_scolaire=groupe.annee_scolaire,
        capacite_max=groupe.capacite_max,
        id_filiere=groupe.id_filiere,
        filiere=groupe.filiere.nom_filiere if groupe.filiere else None,
    )


def cours_out(cours: Cours) -> CoursOut:
    return CoursOut(
        id=cours.id_cours,
        title=cours.titre,
        description=cours.description,
        kind=cours.type_document,
        createdAt=cours.created_at,
        groups=[GroupRef(id=g.id_groupe, name=g.nom_groupe) for g in cours.groupes],
    )


def cours_admin_out(cours: Cours) -> CoursAdminOut:
    return CoursAdminOut(
        **cours_out(cours).model_dump(),
        published=cours.est_publie,
        validated=cours.est_valide,
        state=cours.etat.value,
    )


def etudiant_out(etudiant: Etudiant) -> EtudiantOut:
    return EtudiantOut(
        id_etudiant=etudiant.id_etudiant,
        matricule=etudiant.matricule,
        nom=etudiant.nom,
        prenom=etudiant.prenom,
        email=etudiant.email,
        telephone=etudiant.telephone,
        adresse=etudiant.adresse,
        date_naissance=etudiant.date_naissance,
        date_inscription=etudiant.date_inscription,
        groupe=groupe_out(etudiant.groupe) if etudiant.groupe else None,
    )


def professeur_out(prof: Professeur) -> ProfesseurOut:
    return ProfesseurOut(
        id_prof=prof.id_prof,
        nom=prof.nom,
        prenom=prof.prenom,
        email=prof.email,
        specialite=prof.specialite,
        date_embauche=prof.date_embauche,
        est_actif=prof.est_actif,
    )


def user_out(user: Utilisateur) -> UserOut:
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        created_at=user.created_at,
        etudiant=etudiant_out(user.etudiant) if user.etudiant else None,
        professeur=professeur_out(user.professeur) if user.professeur else None,
    )


def filiere_out(filiere: Filiere) -> FiliereOut:
    return FiliereOut(id=filiere.id_filiere, nom_filiere=filiere.nom_filiere, description=filiere.description)


def module_out(module: Module) -> ModuleOut:
    return ModuleOut(id=module.id_module, nom_module=module.nom_module, code_module=module.code_module,
                     credits_ects=module.credits_ects)

# models.py

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, ForeignKey,
    Text, Boolean, CheckConstraint
)
from sqlalchemy.orm import relationship, declarative_base

# Définition de la base déclarative pour SQLAlchemy
Base = declarative_base()


def utcnow() -> datetime:
    """Horodatage UTC naïf (les colonnes DateTime sont stockées sans fuseau)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, enum.Enum):
    ETUDIANT = "ETUDIANT"
    PROF = "PROF"
    ADMIN = "ADMIN"


class TypeDocument(str, enum.Enum):
    """ Nature du support: Cours magistral, TD, TP, Vidéo """
    COURS = "COURS"
    TD = "TD"
    TP = "TP"
    VIDEO = "VIDEO"


class EtatCours(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED_PENDING = "PUBLISHED_PENDING"
    LIVE = "LIVE"


# ===================================================================
# --- COMPTES DE CONNEXION ET PROFILS MÉTIER ---
# ===================================================================

class Utilisateur(Base):
    """
    Compte de connexion (le « principal »). Un seul rôle par compte.
    La suppression du compte entraîne celle de son profil métier.
    """
    __tablename__ = 'users'
    __table_args__ = (
        CheckConstraint("role IN ('ETUDIANT', 'PROF', 'ADMIN')", name='check_role_utilisateur'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(10), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    etudiant = relationship("Etudiant", back_populates="user", uselist=False,
                            cascade="all, delete-orphan", passive_deletes=True)
    professeur = relationship("Professeur", back_populates="user", uselist=False,
                              cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Utilisateur {self.id} {self.email} ({self.role})>"


class Etudiant(Base):
    __tablename__ = 'etudiants'

    id_etudiant = Column(Integer, primary_key=True, autoincrement=True)

    # Un compte = un seul profil étudiant
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)

    nom = Column(String(100), nullable=False)
    prenom = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    telephone = Column(String(20))
    adresse = Column(String(255))
    date_naissance = Column(Date, nullable=True)

    matricule = Column(String(50), nullable=False, unique=True)  # Ex: E2023001
    date_inscription = Column(DateTime, default=utcnow, nullable=False)

    # RESTRICT : un groupe qui contient encore des étudiants ne peut pas être supprimé
    id_groupe = Column(Integer, ForeignKey('groupes.id_groupe', ondelete='RESTRICT'), nullable=False)

    user = relationship("Utilisateur", back_populates="etudiant")
    groupe = relationship("Groupe", back_populates="etudiants")


class Professeur(Base):
    __tablename__ = 'professeurs'

    id_prof = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)

    nom = Column(String(100), nullable=False)
    prenom = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    telephone = Column(String(20))
    adresse = Column(String(255))
    date_naissance = Column(Date, nullable=True)

    date_embauche = Column(Date, nullable=True)
    specialite = Column(String(100))  # Ex: "IA", "Réseaux"
    est_actif = Column(Boolean, default=True, nullable=False)

    user = relationship("Utilisateur", back_populates="professeur")
    affectations = relationship("Enseigner", back_populates="professeur",
                                cascade="all, delete-orphan", passive_deletes=True)


# ===================================================================
# --- STRUCTURE PÉDAGOGIQUE: FILIÈRES, GROUPES, MODULES ---
# ===================================================================

class Filiere(Base):
    __tablename__ = 'filieres'

    id_filiere = Column(Integer, primary_key=True, autoincrement=True)
    nom_filiere = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    groupes = relationship("Groupe", back_populates="filiere", passive_deletes='all')
    programme = relationship("Programme", back_populates="filiere",
                             cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Filiere {self.id_filiere} {self.nom_filiere}>"


class Groupe(Base):
    __tablename__ = 'groupes'

    id_groupe = Column(Integer, primary_key=True, autoincrement=True)
    nom_groupe = Column(String(100), nullable=False)
    annee_scolaire = Column(String(9), nullable=False)  # Ex: 2024-2025
    capacite_max = Column(Integer, nullable=False)

    id_filiere = Column(Integer, ForeignKey('filieres.id_filiere', ondelete='RESTRICT'), nullable=False)

    filiere = relationship("Filiere", back_populates="groupes")
    etudiants = relationship("Etudiant", back_populates="groupe", passive_deletes='all')
    diffusions = relationship("Diffusion", back_populates="groupe",
                              cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Groupe {self.id_groupe} {self.nom_groupe} ({self.annee_scolaire})>"


class Module(Base):
    __tablename__ = 'modules'

    id_module = Column(Integer, primary_key=True, autoincrement=True)
    nom_module = Column(String(255), nullable=False)
    code_module = Column(String(20), nullable=False, unique=True)  # Ex: INFO-101
    credits_ects = Column(Integer, nullable=False)

    programme = relationship("Programme", back_populates="module",
                             cascade="all, delete-orphan", passive_deletes=True)
    affectations = relationship("Enseigner", back_populates="module",
                                cascade="all, delete-orphan", passive_deletes=True)


class Programme(Base):
    """
    Pivot Filière <-> Module. Un module n'apparaît qu'une fois par filière,
    avec son semestre (1 à 6) et son coefficient.
    """
    __tablename__ = 'programme'
    __table_args__ = (
        CheckConstraint("semestre BETWEEN 1 AND 6", name='check_programme_semestre'),
        CheckConstraint("coefficient >= 1", name='check_programme_coefficient'),
    )

    id_filiere = Column(Integer, ForeignKey('filieres.id_filiere', ondelete='CASCADE'), primary_key=True)
    id_module = Column(Integer, ForeignKey('modules.id_module', ondelete='CASCADE'), primary_key=True)

    semestre = Column(Integer, nullable=False)
    coefficient = Column(Integer, nullable=False)

    filiere = relationship("Filiere", back_populates="programme")
    module = relationship("Module", back_populates="programme")

    def __repr__(self):
        return (f"<Programme filiere={self.id_filiere} module={self.id_module} "
                f"(S{self.semestre}, coef {self.coefficient})>")


class Enseigner(Base):
    """
    Pivot Professeur <-> Module (charge d'enseignement pour une année).
    """
    __tablename__ = 'enseigner'

    id_prof = Column(Integer, ForeignKey('professeurs.id_prof', ondelete='CASCADE'), primary_key=True)
    id_module = Column(Integer, ForeignKey('modules.id_module', ondelete='CASCADE'), primary_key=True)

    annee_affectation = Column(String(9), nullable=False)
    est_coordinateur = Column(Boolean, default=False, nullable=False)

    professeur = relationship("Professeur", back_populates="affectations")
    module = relationship("Module", back_populates="affectations")


# ===================================================================
# --- CONTENUS: COURS ET DIFFUSION ---
# ===================================================================

class Cours(Base):
    """
    Support de cours déposé. Cycle de vie :
    DRAFT (non publié) -> PUBLISHED_PENDING (publié, en attente) -> LIVE (validé par l'admin).
    Le rejet est une suppression définitive.
    """
    __tablename__ = 'cours'
    __table_args__ = (
        CheckConstraint("type_document IN ('COURS', 'TD', 'TP', 'VIDEO')", name='check_type_document'),
    )

    id_cours = Column(Integer, primary_key=True, autoincrement=True)
    titre = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    fichier_url = Column(String(255), nullable=False)
    type_document = Column(String(10), nullable=False)

    est_publie = Column(Boolean, default=False, nullable=False)
    est_valide = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    diffusions = relationship("Diffusion", back_populates="cours", order_by="Diffusion.id_groupe",
                              cascade="all, delete-orphan", passive_deletes=True)

    @property
    def groupes(self):
        return [d.groupe for d in self.diffusions]

    @property
    def etat(self) -> EtatCours:
        if self.est_publie and self.est_valide:
            return EtatCours.LIVE
        if self.est_publie:
            return EtatCours.PUBLISHED_PENDING
        return EtatCours.DRAFT

    def diffusion_pour(self, id_groupe):
        for diffusion in self.diffusions:
            if diffusion.id_groupe == id_groupe:
                return diffusion
        return None

    def __repr__(self):
        return f"<Cours {self.id_cours} '{self.titre}' [{self.type_document}] {self.etat.value}>"


class Diffusion(Base):
    """
    Pivot Cours <-> Groupe : à qui le cours est montré, avec une fenêtre
    de disponibilité optionnelle (bornes nulles = non bornée).
    """
    __tablename__ = 'diffusion'

    id_cours = Column(Integer, ForeignKey('cours.id_cours', ondelete='CASCADE'), primary_key=True)
    id_groupe = Column(Integer, ForeignKey('groupes.id_groupe', ondelete='CASCADE'), primary_key=True)

    date_ouverture = Column(DateTime, nullable=True)
    date_fermeture = Column(DateTime, nullable=True)

    cours = relationship("Cours", back_populates="diffusions")
    groupe = relationship("Groupe", back_populates="diffusions")

    def __repr__(self):
        return (f"<Diffusion cours={self.id_cours} groupe={self.id_groupe} "
                f"[{self.date_ouverture} -> {self.date_fermeture}]>")

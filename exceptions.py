# exceptions.py

import enum


class CoursHubError(Exception):
    """Erreur métier de base : locale à une opération, jamais fatale au processus."""

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CoursHubError):
    """Saisie invalide : champ requis manquant, doublon, valeur hors bornes."""


class NotFoundError(CoursHubError):
    """Identifiant référencé inexistant."""


class ConflictError(CoursHubError):
    """Violation d'intégrité référentielle (filière avec groupes, groupe avec étudiants)."""


class AuthenticationError(CoursHubError):
    """Identifiants incorrects ou jeton invalide."""


class DenialReason(str, enum.Enum):
    """ Motif de refus d'accès (diagnostic uniquement) """
    NOT_A_STUDENT = "NOT_A_STUDENT"
    NO_GROUP = "NO_GROUP"
    UNKNOWN_COURS = "UNKNOWN_COURS"
    NOT_PUBLISHED = "NOT_PUBLISHED"
    NOT_VALIDATED = "NOT_VALIDATED"
    WRONG_GROUP = "WRONG_GROUP"
    WINDOW_NOT_OPEN = "WINDOW_NOT_OPEN"
    WINDOW_CLOSED = "WINDOW_CLOSED"
    ROLE_FORBIDDEN = "ROLE_FORBIDDEN"


class AccessDeniedError(CoursHubError, PermissionError):
    """Action refusée pour ce principal. L'état du système n'est pas affecté."""

    def __init__(self, message, reason: DenialReason = DenialReason.ROLE_FORBIDDEN, **details):
        super().__init__(message, **details)
        self.reason = reason


class StorageInconsistencyError(CoursHubError):
    """La ligne Cours référence un fichier que le stockage ne trouve pas."""

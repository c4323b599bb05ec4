# storage.py
"""
Stockage des fichiers de cours : magasin clé -> octets sur disque local.

Les clés enregistrées en base peuvent porter un préfixe ``/storage/`` ou
``storage/`` (URL publique) ou être déjà relatives au disque
(``cours_files/xxx.pdf``). La normalisation est faite ici, pas dans le
moteur de visibilité.
"""

import logging
import os
import uuid
from typing import BinaryIO, Optional

import config

logger = logging.getLogger(__name__)

_PUBLIC_PREFIXES = ("/storage/", "storage/")


class LocalStorage:

    def __init__(self, root: str = None):
        self.root = os.path.abspath(root or config.STORAGE_ROOT)
        os.makedirs(self.root, exist_ok=True)

    # -------------------------------------------------------------------
    # Résolution des clés
    # -------------------------------------------------------------------

    def _path(self, key: str) -> Optional[str]:
        if not key:
            return None
        full = os.path.abspath(os.path.join(self.root, key))
        # Une clé ne doit jamais sortir de la racine
        if os.path.commonpath([self.root, full]) != self.root:
            return None
        return full

    def _candidates(self, key: str):
        """Clé sans préfixe public d'abord, puis la clé brute."""
        stripped = key
        for prefix in _PUBLIC_PREFIXES:
            if key.startswith(prefix):
                stripped = key[len(prefix):]
                break
        stripped = stripped.lstrip("/")
        yield stripped
        if stripped != key:
            yield key.lstrip("/")

    def resolve(self, key: str) -> Optional[str]:
        """Chemin absolu du fichier existant désigné par la clé, sinon None."""
        if not key:
            return None
        for candidate in self._candidates(key):
            path = self._path(candidate)
            if path and os.path.isfile(path):
                return path
        return None

    # -------------------------------------------------------------------
    # Interface du collaborateur de stockage
    # -------------------------------------------------------------------

    def exists(self, key: str) -> bool:
        return self.resolve(key) is not None

    def read(self, key: str) -> BinaryIO:
        path = self.resolve(key)
        if path is None:
            raise FileNotFoundError(key)
        return open(path, "rb")

    def write(self, data: bytes, folder: str = config.COURS_FOLDER, filename: str = None) -> str:
        ext = os.path.splitext(filename)[1].lower() if filename else ""
        key = f"{folder.strip('/')}/{uuid.uuid4().hex}{ext}"
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.debug("Fichier écrit: %s (%d octets)", key, len(data))
        return key

    def delete(self, key: str) -> bool:
        """Supprime le fichier ; False (sans erreur) s'il est absent."""
        path = self.resolve(key)
        if path is None:
            return False
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        logger.debug("Fichier supprimé: %s", key)
        return True

# config.py

import os

# ===================================================================
# --- BASE DE DONNÉES ---
# ===================================================================

DATABASE_URL = os.getenv("COURSHUB_DATABASE_URL", "sqlite:///courshub.db")
SQL_ECHO = os.getenv("COURSHUB_SQL_ECHO", "0") == "1"

# ===================================================================
# --- STOCKAGE DES FICHIERS DE COURS ---
# ===================================================================

STORAGE_ROOT = os.getenv("COURSHUB_STORAGE_ROOT", os.path.join(os.getcwd(), "storage"))
COURS_FOLDER = "cours_files"
MAX_UPLOAD_BYTES = 20 * 1024 * 1024  # 20 Mo

# ===================================================================
# --- AUTHENTIFICATION ---
# ===================================================================

SECRET_KEY = os.getenv("COURSHUB_SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("COURSHUB_TOKEN_EXPIRE_MINUTES", 60 * 8))


# ===================================================================
# --- IMPORTATION EXCEL ---
# ===================================================================

STRUCTURE_FILE_PATH = os.getenv("COURSHUB_STRUCTURE_FILE", "data/structure.xlsx")
ETUDIANTS_FILE_PATH = os.getenv("COURSHUB_ETUDIANTS_FILE", "data/etudiants.xlsx")
DEFAULT_STUDENT_PASSWORD = os.getenv("COURSHUB_DEFAULT_PASSWORD", "changeme123")

LOG_FILE = os.getenv("COURSHUB_LOG_FILE", "import_errors.log")

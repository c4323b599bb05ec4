# import_data.py

import logging
import sys

import pandas as pd
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tqdm import tqdm

import config
import database_setup
from exceptions import CoursHubError
from identity import create_user_with_profile
from models import Etudiant, Filiere, Groupe, Module, Programme, Role
from principal import Principal, RoleAdmin
from structure import normalize_annee
from validators import safe_string

logger = logging.getLogger(__name__)

# Principal technique utilisé pour le provisionnement en masse
IMPORT_PRINCIPAL = Principal(user_id=0, name="import", email="import@courshub.local", role=RoleAdmin())


def configure_logging():
    logging.basicConfig(filename=config.LOG_FILE,
                        filemode='w',
                        encoding='utf-8',
                        level=logging.ERROR,
                        format='%(asctime)s - %(levelname)s - %(message)s')


def _read_workbook(path, dtype=None) -> pd.DataFrame:
    df = pd.read_excel(path, dtype=dtype)
    df.columns = df.columns.str.lower().str.strip().str.replace(' ', '_')
    df = df.astype(object).where(pd.notnull(df), None)
    return df


def _int_or_none(value):
    """Entier de la cellule ; ValueError si la cellule n'est pas un nombre entier."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"valeur non entière: {value!r}")
    return int(number)


def _cell_text(value):
    """Texte de la cellule ; 2023001.0 (colonne numérique lue en float) devient '2023001'."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return safe_string(str(value)) or None


# ----------------------------------------------------------------------
# FONCTIONS D'IMPORTATION UNITAIRE DE LA STRUCTURE PÉDAGOGIQUE
# ----------------------------------------------------------------------

def _load_and_clean_structure(path):
    """
    Charge le fichier de structure : une ligne par (filière, groupe, module).
    Colonnes attendues : filiere, description_filiere, groupe, annee_scolaire,
    capacite_max, code_module, nom_module, credits_ects, semestre, coefficient.
    """
    try:
        df = _read_workbook(path)
        print(f"Fichier de structure chargé. {len(df)} lignes trouvées.")

        for col in ('filiere', 'groupe', 'code_module', 'nom_module'):
            if col in df.columns:
                df[col] = df[col].apply(safe_string)
        if 'annee_scolaire' in df.columns:
            df['annee_scolaire'] = df['annee_scolaire'].apply(normalize_annee)
        return df

    except Exception as e:
        print(f"❌ ERREUR: Impossible de lire le fichier de structure. {e}", file=sys.stderr)
        logger.error("STRUCTURE: lecture impossible de %s | %s", path, e)
        return None


def _import_filieres(session: Session, df: pd.DataFrame) -> dict:
    """Filières par nom (créées si absentes). Retourne {nom: id_filiere}."""
    print("\n--- Importation des Filières ---")
    ids = {}
    if 'filiere' not in df.columns:
        print("Colonne 'filiere' manquante dans la structure.")
        return ids

    df_filieres = df.drop_duplicates(subset=['filiere']).dropna(subset=['filiere'])
    for _, row in tqdm(df_filieres.iterrows(), total=len(df_filieres), desc="Filières"):
        nom = row['filiere']
        filiere = session.scalar(select(Filiere).where(Filiere.nom_filiere == nom))
        if filiere is None:
            filiere = Filiere(nom_filiere=nom, description=safe_string(row.get('description_filiere')))
            session.add(filiere)
            session.flush()
        ids[nom] = filiere.id_filiere
    return ids


def _import_groupes(session: Session, df: pd.DataFrame, filieres: dict):
    """Groupes identifiés par (nom, année scolaire, filière)."""
    print("\n--- Importation des Groupes ---")
    if 'groupe' not in df.columns:
        print("Colonne 'groupe' manquante dans la structure.")
        return

    df_groupes = (df.drop_duplicates(subset=['filiere', 'groupe', 'annee_scolaire'])
                    .dropna(subset=['filiere', 'groupe', 'annee_scolaire']))
    for _, row in tqdm(df_groupes.iterrows(), total=len(df_groupes), desc="Groupes"):
        id_filiere = filieres.get(row['filiere'])
        if id_filiere is None:
            continue
        existing = session.scalar(select(Groupe).where(
            Groupe.nom_groupe == row['groupe'],
            Groupe.annee_scolaire == row['annee_scolaire'],
            Groupe.id_filiere == id_filiere,
        ))
        try:
            capacite = _int_or_none(row.get('capacite_max')) or 30
        except (ValueError, TypeError) as e:
            print(f"❌ [GROUPE] {row['groupe']} - capacité invalide: {row.get('capacite_max')!r}")
            logger.error("GROUPE: %s | capacite_max invalide: %s", row['groupe'], e)
            continue
        if existing is None:
            session.add(Groupe(nom_groupe=row['groupe'], annee_scolaire=row['annee_scolaire'],
                               capacite_max=capacite, id_filiere=id_filiere))
        else:
            existing.capacite_max = capacite


def _import_modules_et_programme(session: Session, df: pd.DataFrame, filieres: dict):
    """Modules par code, puis lignes de programme en insertion-ou-mise-à-jour."""
    print("\n--- Importation des Modules et du Programme ---")
    if 'code_module' not in df.columns:
        print("Colonne 'code_module' manquante dans la structure.")
        return

    df_modules = df.drop_duplicates(subset=['code_module']).dropna(subset=['code_module', 'nom_module'])
    modules = {}
    for _, row in tqdm(df_modules.iterrows(), total=len(df_modules), desc="Modules"):
        module = session.scalar(select(Module).where(Module.code_module == row['code_module']))
        if module is None:
            try:
                credits = _int_or_none(row.get('credits_ects')) or 0
            except (ValueError, TypeError) as e:
                print(f"❌ [MODULE] {row['code_module']} - crédits invalides: {row.get('credits_ects')!r}")
                logger.error("MODULE: %s | credits_ects invalide: %s", row['code_module'], e)
                continue
            module = Module(code_module=row['code_module'], nom_module=row['nom_module'],
                            credits_ects=credits)
            session.add(module)
            session.flush()
        modules[row['code_module']] = module.id_module

    df_programme = (df.drop_duplicates(subset=['filiere', 'code_module'], keep='last')
                      .dropna(subset=['filiere', 'code_module', 'semestre', 'coefficient']))
    for _, row in tqdm(df_programme.iterrows(), total=len(df_programme), desc="Programme"):
        cle = (filieres.get(row['filiere']), modules.get(row['code_module']))
        if None in cle:
            continue
        try:
            semestre, coefficient = _int_or_none(row['semestre']), _int_or_none(row['coefficient'])
            valide = 1 <= semestre <= 6 and coefficient >= 1
        except (ValueError, TypeError):
            valide = False
        if not valide:
            print(f"❌ [PROGRAMME] {row['filiere']}/{row['code_module']} - semestre ou coefficient invalide")
            logger.error("PROGRAMME: %s/%s | semestre=%r coefficient=%r invalides",
                         row['filiere'], row['code_module'], row['semestre'], row['coefficient'])
            continue
        ligne = session.get(Programme, cle)
        if ligne is None:
            ligne = Programme(id_filiere=cle[0], id_module=cle[1])
            session.add(ligne)
        ligne.semestre = semestre
        ligne.coefficient = coefficient


# ----------------------------------------------------------------------
# FONCTION ORCHESTRATRICE DE LA STRUCTURE PÉDAGOGIQUE
# ----------------------------------------------------------------------

def import_structure_to_db(session: Session, path=None) -> bool:
    print("\n--- 1. Démarrage de l'importation de la structure ---")
    df = _load_and_clean_structure(path or config.STRUCTURE_FILE_PATH)
    if df is None:
        return False

    try:
        filieres = _import_filieres(session, df)
        _import_groupes(session, df, filieres)
        _import_modules_et_programme(session, df, filieres)
        session.commit()
        print("✅ Importation de la structure terminée.")
        return True
    except IntegrityError as e:
        session.rollback()
        print(f"\n❌ ERREUR D'IMPORTATION (Structure): {e.orig}", file=sys.stderr)
        logger.error("STRUCTURE (Intégrité): %s", e.orig)
        return False
    except Exception:
        session.rollback()
        raise


# ----------------------------------------------------------------------
# IMPORTATION DES ÉTUDIANTS
# ----------------------------------------------------------------------

def _load_and_clean_etudiants(path):
    """
    Colonnes attendues : matricule, nom, prenom, email, groupe, annee_scolaire,
    et en option telephone, adresse, date_naissance, password.
    """
    try:
        # dtype=object : une colonne d'entiers avec des cases vides ne passe pas en float
        df = _read_workbook(path, dtype=object)
        if 'date_naissance' in df.columns:
            df['date_naissance'] = pd.to_datetime(df['date_naissance'], errors='coerce', dayfirst=True).dt.date
            df = df.astype(object).where(pd.notnull(df), None)
        for col in ('matricule', 'nom', 'prenom', 'email', 'groupe', 'telephone', 'password'):
            if col in df.columns:
                df[col] = df[col].apply(_cell_text)
        if 'annee_scolaire' in df.columns:
            df['annee_scolaire'] = df['annee_scolaire'].apply(normalize_annee)
        print(f"Fichier XLSX d'étudiants chargé. {len(df)} lignes trouvées.")
        return df

    except Exception as e:
        print(f"❌ ERREUR: Impossible de lire le fichier d'étudiants. {e}", file=sys.stderr)
        logger.error("ETUDIANTS: lecture impossible de %s | %s", path, e)
        return None


def _find_groupe(session: Session, nom, annee):
    stmt = select(Groupe.id_groupe).where(Groupe.nom_groupe == nom)
    if annee:
        stmt = stmt.where(Groupe.annee_scolaire == annee)
    return session.scalars(stmt.order_by(Groupe.id_groupe.desc())).first()


def import_etudiants_to_db(session: Session, path=None) -> dict:
    """
    Provisionne chaque étudiant (compte + profil) ; une ligne en erreur est
    journalisée et n'interrompt pas l'import. Les matricules déjà présents
    sont ignorés, ce qui rend l'import rejouable.
    """
    print("\n--- 2. Démarrage de l'importation des étudiants ---")
    stats = {"crees": 0, "deja_presents": 0, "erreurs": 0}

    df = _load_and_clean_etudiants(path or config.ETUDIANTS_FILE_PATH)
    if df is None:
        print("❌ Importation des étudiants annulée car le fichier est illisible ou corrompu.")
        return stats

    df_etudiants = df.drop_duplicates(subset=['matricule']).dropna(subset=['matricule'])

    for _, row in tqdm(df_etudiants.iterrows(), total=len(df_etudiants), desc="Import Etudiants"):
        matricule = row['matricule']

        if session.scalar(select(Etudiant.id_etudiant).where(Etudiant.matricule == matricule)) is not None:
            stats["deja_presents"] += 1
            continue

        try:
            create_user_with_profile(
                session, IMPORT_PRINCIPAL,
                role=Role.ETUDIANT.value,
                nom=row.get('nom'),
                prenom=row.get('prenom'),
                email=row.get('email'),
                password=row.get('password') or config.DEFAULT_STUDENT_PASSWORD,
                telephone=row.get('telephone'),
                adresse=row.get('adresse'),
                date_naissance=row.get('date_naissance'),
                matricule=matricule,
                id_groupe=_find_groupe(session, row.get('groupe'), row.get('annee_scolaire')),
            )
            stats["crees"] += 1

        except CoursHubError as e:
            stats["erreurs"] += 1
            print(f"❌ [ETUDIANT] Ligne Excel {row.name} ({matricule}) - ERREUR: {e.message}")
            logger.error(f"ETUDIANT: {matricule} | Erreur: {e.message} | LIGNE_EXCEL_IDX: {row.name}")

    print(f"\n✅ Insertion des étudiants terminée. {stats['crees']} créé(s), "
          f"{stats['deja_presents']} déjà présent(s), {stats['erreurs']} erreur(s).")
    return stats


# ----------------------------------------------------------------------
# BLOC PRINCIPAL ET ORCHESTRATEUR GLOBAL
# ----------------------------------------------------------------------

def import_all_data():
    print("=====================================================")
    print("🚀 DÉMARRAGE DU PROCESSUS D'IMPORTATION DE DONNÉES 🚀")
    print("=====================================================")

    database_setup.init_db()
    session = database_setup.get_session()

    try:
        if import_structure_to_db(session):
            import_etudiants_to_db(session)

        print("\n=====================================================")
        print("✅ IMPORTATION GLOBALE TERMINÉE (erreurs éventuelles dans le journal)")
        print("=====================================================")
    finally:
        session.close()


if __name__ == '__main__':
    configure_logging()
    import_all_data()

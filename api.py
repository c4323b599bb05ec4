import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from jose import JWTError, jwt
from sqlalchemy.orm import Session

import config
import cours_lifecycle
import diffusion
import identity
import structure
import visibility
from database_setup import get_db
from exceptions import (
    AccessDeniedError, AuthenticationError, ConflictError, CoursHubError,
    NotFoundError, StorageInconsistencyError, ValidationError
)
from principal import Principal
from schemas import (
    CoursUpdatePayload, DiffusionPayload, EnseignementPayload, FenetrePayload,
    FilierePayload, FiliereUpdatePayload, GroupePayload, GroupeUpdatePayload,
    LoginPayload, ModulePayload, ModuleUpdatePayload, ProgrammePayload, TokenResponse,
    UserCreatePayload, UserUpdatePayload,
    cours_admin_out, cours_out, etudiant_out, filiere_out, groupe_out, module_out, user_out
)
from storage import LocalStorage

logger = logging.getLogger(__name__)

app = FastAPI(title="CoursHub API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------- Erreurs métier -> HTTP -------------------- #

_STATUS_BY_ERROR = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (AuthenticationError, 401),
    (AccessDeniedError, 403),
    (StorageInconsistencyError, 500),
]


@app.exception_handler(CoursHubError)
async def courshub_error_handler(request: Request, exc: CoursHubError):
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 400)
    body = {"message": exc.message, **exc.details}
    if isinstance(exc, AccessDeniedError):
        body["reason"] = exc.reason.value
    return JSONResponse(status_code=status, content=jsonable_encoder(body))


# -------------------- Auth & Sécurité -------------------- #

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def get_storage() -> LocalStorage:
    return LocalStorage(config.STORAGE_ROOT)


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})
    token = auth.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id = int(payload["sub"])
    except (JWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Could not validate credentials",
                            headers={"WWW-Authenticate": "Bearer"})
    return identity.load_principal(db, user_id)


def require_roles(*roles: str):
    def _dep(principal: Principal = Depends(get_current_principal)):
        if roles and principal.role_code.value not in roles:
            raise HTTPException(status_code=403, detail="Forbidden for role")
        return principal
    return _dep


@app.get("/")
def read_root():
    return {"message": "CoursHub backend is running"}


@app.post("/login", response_model=TokenResponse)
def login(payload: LoginPayload, db: Session = Depends(get_db)):
    principal = identity.authenticate(db, payload.email, payload.password)
    token = create_access_token({"sub": str(principal.user_id), "role": principal.role_code.value})
    return TokenResponse(access_token=token, role=principal.role_code.value)


def _set_fields(payload):
    return payload.model_dump(exclude_unset=True)


# ==========================================
# 1. ESPACE ADMINISTRATEUR
# ==========================================

admin = APIRouter(prefix="/admin", tags=["admin"])
admin_only = require_roles("ADMIN")


# A. Utilisateurs

@admin.get("/users")
def list_users(db: Session = Depends(get_db), principal=Depends(admin_only)):
    users = identity.list_users(db, principal)
    return {"count": len(users), "data": [user_out(u) for u in users]}


@admin.post("/users", status_code=201)
def create_user(payload: UserCreatePayload, db: Session = Depends(get_db), principal=Depends(admin_only)):
    user = identity.create_user_with_profile(db, principal, **payload.model_dump())
    return {"message": "Utilisateur et profil complets créés avec succès", "user": user_out(user)}


@admin.get("/users/{user_id}")
def show_user(user_id: int, db: Session = Depends(get_db), principal=Depends(admin_only)):
    return user_out(identity.get_user(db, principal, user_id))


@admin.put("/users/{user_id}")
def update_user(user_id: int, payload: UserUpdatePayload, db: Session = Depends(get_db),
                principal=Depends(admin_only)):
    user = identity.update_user(db, principal, user_id, **_set_fields(payload))
    return {"message": "Utilisateur mis à jour", "data": user_out(user)}


@admin.delete("/users/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db), principal=Depends(admin_only)):
    identity.delete_user(db, principal, user_id)
    return {"message": "Utilisateur et profil supprimés avec succès"}


# B. Structure pédagogique

@admin.get("/filieres")
def list_filieres(db: Session = Depends(get_db), principal=Depends(admin_only)):
    return [filiere_out(f) for f in structure.list_filieres(db)]


@admin.post("/filieres", status_code=201)
def create_filiere(payload: FilierePayload, db: Session = Depends(get_db), principal=Depends(admin_only)):
    filiere = structure.create_filiere(db, principal, payload.nom_filiere, payload.description)
    return {"message": "Filière créée", "data": filiere_out(filiere)}


@admin.put("/filieres/{id_filiere}")
def update_filiere(id_filiere: int, payload: FiliereUpdatePayload, db: Session = Depends(get_db),
                   principal=Depends(admin_only)):
    filiere = structure.update_filiere(db, principal, id_filiere, **_set_fields(payload))
    return {"message": "Filière mise à jour", "data": filiere_out(filiere)}


@admin.delete("/filieres/{id_filiere}")
def delete_filiere(id_filiere: int, db: Session = Depends(get_db), principal=Depends(admin_only)):
    structure.delete_filiere(db, principal, id_filiere)
    return {"message": "Filière supprimée"}


@admin.get("/filieres/{id_filiere}/programme")
def list_programme(id_filiere: int, db: Session = Depends(get_db), principal=Depends(admin_only)):
    return [{"id_module": p.id_module, "code_module": p.module.code_module, "nom_module": p.module.nom_module,
             "semestre": p.semestre, "coefficient": p.coefficient}
            for p in structure.list_programme(db, id_filiere)]


@admin.get("/groupes")
def list_groupes(db: Session = Depends(get_db), principal=Depends(admin_only)):
    return [groupe_out(g) for g in structure.list_groupes(db, principal)]


@admin.post("/groupes", status_code=201)
def create_groupe(payload: GroupePayload, db: Session = Depends(get_db), principal=Depends(admin_only)):
    groupe = structure.create_groupe(db, principal, **payload.model_dump())
    return {"message": "Groupe créé", "data": groupe_out(groupe)}


@admin.put("/groupes/{id_groupe}")
def update_groupe(id_groupe: int, payload: GroupeUpdatePayload, db: Session = Depends(get_db),
                  principal=Depends(admin_only)):
    groupe = structure.update_groupe(db, principal, id_groupe, **_set_fields(payload))
    return {"message": "Groupe mis à jour", "data": groupe_out(groupe)}


@admin.delete("/groupes/{id_groupe}")
def delete_groupe(id_groupe: int, db: Session = Depends(get_db), principal=Depends(admin_only)):
    structure.delete_groupe(db, principal, id_groupe)
    return {"message": "Groupe supprimé"}


@admin.get("/modules")
def list_modules(db: Session = Depends(get_db), principal=Depends(admin_only)):
    return [module_out(m) for m in structure.list_modules(db)]


@admin.post("/modules", status_code=201)
def create_module(payload: ModulePayload, db: Session = Depends(get_db), principal=Depends(admin_only)):
    module = structure.create_module(db, principal, **payload.model_dump())
    return {"message": "Module créé", "data": module_out(module)}


@admin.put("/modules/{id_module}")
def update_module(id_module: int, payload: ModuleUpdatePayload, db: Session = Depends(get_db),
                  principal=Depends(admin_only)):
    module = structure.update_module(db, principal, id_module, **_set_fields(payload))
    return {"message": "Module mis à jour", "data": module_out(module)}


@admin.delete("/modules/{id_module}")
def delete_module(id_module: int, db: Session = Depends(get_db), principal=Depends(admin_only)):
    structure.delete_module(db, principal, id_module)
    return {"message": "Module supprimé"}


# C. Affectations (pivots)

@admin.post("/programme/assign")
def add_module_to_filiere(payload: ProgrammePayload, db: Session = Depends(get_db), principal=Depends(admin_only)):
    structure.attach_module_to_filiere(db, principal, **payload.model_dump())
    return {"message": "Module ajouté au programme de la filière"}


@admin.delete("/programme/{id_filiere}/{id_module}")
def remove_module_from_filiere(id_filiere: int, id_module: int, db: Session = Depends(get_db),
                               principal=Depends(admin_only)):
    structure.detach_module_from_filiere(db, principal, id_filiere, id_module)
    return {"message": "Module retiré du programme"}


@admin.post("/enseignement/assign")
def assign_prof_to_module(payload: EnseignementPayload, db: Session = Depends(get_db),
                          principal=Depends(admin_only)):
    structure.assign_prof_to_module(db, principal, **payload.model_dump())
    return {"message": "Professeur assigné au module"}


@admin.delete("/enseignement/{id_prof}/{id_module}")
def detach_prof_from_module(id_prof: int, id_module: int, db: Session = Depends(get_db),
                            principal=Depends(admin_only)):
    structure.detach_prof_from_module(db, principal, id_prof, id_module)
    return {"message": "Professeur désassigné du module"}


# D. Validation des cours

@admin.get("/cours/all")
def list_all_cours(type_document: Optional[str] = None, db: Session = Depends(get_db),
                   principal=Depends(admin_only)):
    cours = cours_lifecycle.list_all_cours(db, principal, type_document)
    return {"status": "success", "count": len(cours), "data": [cours_admin_out(c) for c in cours]}


@admin.get("/cours/pending")
def list_pending_cours(db: Session = Depends(get_db), principal=Depends(admin_only)):
    cours = cours_lifecycle.list_pending_cours(db, principal)
    return {"status": "success", "data": [cours_admin_out(c) for c in cours]}


@admin.patch("/cours/{id_cours}/validate")
def validate_cours(id_cours: int, db: Session = Depends(get_db), principal=Depends(admin_only)):
    cours = cours_lifecycle.validate_cours(db, principal, id_cours)
    return {"status": "success", "message": "Le cours a été validé.", "data": cours_admin_out(cours)}


@admin.delete("/cours/{id_cours}/reject")
def reject_cours(id_cours: int, db: Session = Depends(get_db), principal=Depends(admin_only),
                 storage: LocalStorage = Depends(get_storage)):
    cours_lifecycle.reject_cours(db, principal, storage, id_cours)
    return {"status": "success", "message": "Cours rejeté et supprimé."}


# ==========================================
# 2. DÉPÔT ET GESTION DES COURS (PROF, ADMIN)
# ==========================================

prof = APIRouter(prefix="/prof", tags=["prof"])
staff_only = require_roles("PROF", "ADMIN")


@prof.get("/my-modules")
def my_modules(db: Session = Depends(get_db), principal=Depends(require_roles("PROF"))):
    return {"data": [module_out(m) for m in structure.list_teacher_modules(db, principal)]}


@prof.get("/my-groupes")
def my_groupes(db: Session = Depends(get_db), principal=Depends(staff_only)):
    return {"data": [groupe_out(g) for g in structure.list_groupes(db, principal)]}


@prof.get("/cours")
def list_prof_cours(db: Session = Depends(get_db), principal=Depends(staff_only)):
    return {"data": [cours_admin_out(c) for c in cours_lifecycle.list_all_cours(db, principal)]}


@prof.post("/cours", status_code=201)
def upload_cours(titre: str = Form(...), type_document: str = Form(...),
                       groupes: List[int] = Form(...), description: Optional[str] = Form(None),
                       fichier: UploadFile = File(...), db: Session = Depends(get_db),
                       principal=Depends(staff_only), storage: LocalStorage = Depends(get_storage)):
    if not fichier.filename:
        raise HTTPException(status_code=422, detail="Filename required")
    content = fichier.file.read()
    cours = cours_lifecycle.create_cours(db, principal, storage, titre, type_document, content,
                                         fichier.filename, groupes, description)
    return {"message": "Cours déposé avec succès. En attente de validation admin.",
            "data": cours_admin_out(cours)}


@prof.put("/cours/{id_cours}")
def update_cours(id_cours: int, payload: CoursUpdatePayload, db: Session = Depends(get_db),
                 principal=Depends(staff_only)):
    cours = cours_lifecycle.update_cours(db, principal, id_cours, **_set_fields(payload))
    return {"message": "Cours mis à jour", "data": cours_admin_out(cours)}


@prof.delete("/cours/{id_cours}")
def delete_cours(id_cours: int, db: Session = Depends(get_db), principal=Depends(staff_only),
                 storage: LocalStorage = Depends(get_storage)):
    cours_lifecycle.delete_cours(db, principal, storage, id_cours)
    return {"message": "Cours supprimé"}


@prof.put("/cours/{id_cours}/diffusion")
def set_diffusion(id_cours: int, payload: DiffusionPayload, db: Session = Depends(get_db),
                  principal=Depends(staff_only)):
    cours = diffusion.set_diffusion(db, principal, id_cours, payload.groupes)
    return {"message": "Diffusion mise à jour", "data": cours_admin_out(cours)}


@prof.put("/cours/{id_cours}/diffusion/{id_groupe}")
def set_window(id_cours: int, id_groupe: int, payload: FenetrePayload, db: Session = Depends(get_db),
               principal=Depends(staff_only)):
    row = diffusion.set_window(db, principal, id_cours, id_groupe, payload.date_ouverture, payload.date_fermeture)
    return {"message": "Fenêtre de disponibilité mise à jour",
            "data": {"id_cours": row.id_cours, "id_groupe": row.id_groupe,
                     "date_ouverture": row.date_ouverture, "date_fermeture": row.date_fermeture}}


# ==========================================
# 3. ESPACE ÉTUDIANT
# ==========================================

etudiant = APIRouter(prefix="/etudiant", tags=["etudiant"])
student_only = require_roles("ETUDIANT")


@etudiant.get("/cours")
def list_student_cours(db: Session = Depends(get_db), principal=Depends(student_only)):
    cours = visibility.list_visible_cours(db, principal)
    return {"status": "success", "groupe_etudiant": principal.role.profil.id_groupe,
            "count": len(cours), "data": [cours_out(c) for c in cours]}


@etudiant.get("/search")
def search_cours(q: str = "", db: Session = Depends(get_db), principal=Depends(student_only)):
    cours = visibility.search_visible_cours(db, principal, q)
    return {"status": "success", "query": q, "count": len(cours), "data": [cours_out(c) for c in cours]}


@etudiant.get("/notifications")
def notifications(db: Session = Depends(get_db), principal=Depends(student_only)):
    data = [{
        "id": c.id_cours,
        "titre": f"Nouveau cours: {c.titre}",
        "message": f'Un nouveau cours "{c.titre}" a été publié pour votre groupe.',
        "created_at": c.created_at,
    } for c in visibility.latest_visible_cours(db, principal)]
    return {"status": "success", "data": data}


@etudiant.get("/profile")
def student_profile(principal=Depends(student_only)):
    return {"status": "success", "data": etudiant_out(identity.get_student_profile(principal))}


def _iter_file(stream, chunk_size=64 * 1024):
    with stream:
        while True:
            data = stream.read(chunk_size)
            if not data:
                break
            yield data


@etudiant.get("/cours/{id_cours}/download")
def download_cours(id_cours: int, db: Session = Depends(get_db), principal=Depends(student_only),
                   storage: LocalStorage = Depends(get_storage)):
    ticket = visibility.resolve_download(db, principal, storage, id_cours)
    headers = {"Content-Disposition": f"attachment; filename*=utf-8''{quote(ticket.filename)}"}
    return StreamingResponse(_iter_file(ticket.stream), media_type="application/octet-stream", headers=headers)


app.include_router(admin)
app.include_router(prof)
app.include_router(etudiant)


if __name__ == "__main__":
    import os
    import uvicorn
    from database_setup import init_db

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')
    init_db()
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))

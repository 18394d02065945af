"""
Routes d'authentification administrateur
========================================

- POST /auth/admin/login  : vérifie ADMIN_USER / ADMIN_PASSWORD et POSE un cookie 'admin_session'
- POST /auth/admin/logout : supprime la session côté serveur + EFFACE le cookie client

Sécurité
--------
- Cookie **HttpOnly** (inaccessible au JavaScript), `SameSite="lax"`,
  `Secure=True` quand `DEBUG=False`.
- Les routes protégées utilisent `Depends(admin_required)`, qui accepte aussi
  `Authorization: Bearer <ADMIN_TOKEN>`.

Flux typique côté front
-----------------------
1) La page de login POSTe `username/password` avec `credentials: "include"`.
2) Le tableau de bord crée ses parties (`POST /games`) avec le cookie.
3) `/auth/admin/logout` invalide la session.
"""
import secrets

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

from app.config.settings import settings
from app.deps.auth import (
    ADMIN_COOKIE_NAME,
    ADMIN_TTL_SECONDS,
    create_admin_session,
    delete_admin_session,
)

router = APIRouter(prefix="/auth/admin", tags=["auth"])


class AdminLogin(BaseModel):
    username: str
    password: str


@router.post("/login")
def admin_login(p: AdminLogin, response: Response):
    """
    Authentifie l'administrateur et pose le cookie de session.

    Réponse: { "ok": true, "ttl": <seconds> } ; 401 si identifiants invalides.
    """
    user_ok = secrets.compare_digest(p.username.encode("utf-8"), settings.ADMIN_USER.encode("utf-8"))
    password_ok = secrets.compare_digest(p.password.encode("utf-8"), settings.ADMIN_PASSWORD.encode("utf-8"))
    if not (user_ok and password_ok):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    sid = create_admin_session()
    response.set_cookie(
        key=ADMIN_COOKIE_NAME,
        value=sid,
        httponly=True,
        samesite="lax",
        secure=not settings.DEBUG,
        max_age=ADMIN_TTL_SECONDS,
        path="/",
    )
    return {"ok": True, "ttl": ADMIN_TTL_SECONDS}


@router.post("/logout")
def admin_logout(request: Request, response: Response):
    sid = request.cookies.get(ADMIN_COOKIE_NAME)
    delete_admin_session(sid)
    response.delete_cookie(ADMIN_COOKIE_NAME, path="/")
    return {"ok": True}

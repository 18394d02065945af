"""
Dépendances d'authentification (administrateur et hôte de partie)
=================================================================

Objectif
--------
- `admin_required` : accès administrateur (création de parties, reset) via
  1) un **cookie de session HttpOnly** posé par `/auth/admin/login`, *ou*
  2) un **Bearer token** `settings.ADMIN_TOKEN` (pratique en dev/CLI).
- `host_required` : actions d'hôte sur une partie, autorisées par l'en-tête
  `X-Host-Key` (clé secrète remise à la création) ou par un accès administrateur.

Intégrations
------------
- Sessions admin persistées dans `DATA_DIR/admin_sessions.json` (orjson).
- Clé d'hôte lue dans les secrets du document de partie (`game_service.verify_host_key`).

Comportement & codes retour
---------------------------
- 401 si aucune authentification (ni cookie valide, ni Bearer, ni clé d'hôte).
- 403 si un Bearer ou une clé d'hôte est fourni mais invalide.
- 404 si la partie n'existe pas (routes hôte).
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config.settings import settings
from app.services.game_service import verify_host_key
from app.services.game_store import GameNotFoundError
from app.services.io_utils import read_json, write_json

# ----------------------------
# Constantes & utilitaires
# ----------------------------
ADMIN_COOKIE_NAME = "admin_session"
ADMIN_TTL_SECONDS = 12 * 3600  # 12 heures
HOST_KEY_HEADER = "X-Host-Key"

_SESSIONS_LOCK = RLock()


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _sessions_path() -> Path:
    return Path(settings.DATA_DIR) / "admin_sessions.json"


def _load_sessions() -> Dict[str, Any]:
    data = read_json(_sessions_path())
    return data if isinstance(data, dict) else {}


def create_admin_session() -> str:
    """Crée une session admin avec TTL et renvoie son identifiant (cookie)."""
    sid = uuid4().hex
    with _SESSIONS_LOCK:
        sessions = _load_sessions()
        now = _now_ts()
        # purge des sessions expirées au passage
        sessions = {k: v for k, v in sessions.items() if int((v or {}).get("exp", 0)) >= now}
        sessions[sid] = {"exp": now + ADMIN_TTL_SECONDS}
        write_json(_sessions_path(), sessions)
    return sid


def delete_admin_session(sid: Optional[str]) -> None:
    if not sid:
        return
    with _SESSIONS_LOCK:
        sessions = _load_sessions()
        if sessions.pop(sid, None) is not None:
            write_json(_sessions_path(), sessions)


def _cookie_valid(request: Request) -> bool:
    """True si le cookie admin existe et n'a pas expiré (la session expirée est supprimée)."""
    sid = request.cookies.get(ADMIN_COOKIE_NAME)
    if not sid:
        return False
    with _SESSIONS_LOCK:
        rec = _load_sessions().get(sid)
    if not isinstance(rec, dict):
        return False
    if int(rec.get("exp", 0)) < _now_ts():
        delete_admin_session(sid)
        return False
    return True


# Schéma Bearer (désactive l'erreur auto pour qu'on rende nos 401/403)
bearer = HTTPBearer(auto_error=False)


def _admin_status(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[int]:
    """None si admin authentifié, sinon le code d'erreur à renvoyer (401/403)."""
    if _cookie_valid(request):
        return None
    if credentials and (credentials.scheme or "").lower() == "bearer":
        if credentials.credentials == settings.ADMIN_TOKEN:
            return None
        return 403
    return 401


def admin_required(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
):
    """
    Dépendance d'accès administrateur.
    - Cookie de session admin valide (HttpOnly), OU
    - Authorization: Bearer <settings.ADMIN_TOKEN>
    """
    status = _admin_status(request, credentials)
    if status == 403:
        raise HTTPException(status_code=403, detail="Invalid token")
    if status == 401:
        raise HTTPException(status_code=401, detail="Admin authentication required")
    return True


def host_required(
    game_id: str,
    request: Request,
    x_host_key: Optional[str] = Header(default=None, alias=HOST_KEY_HEADER),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
):
    """
    Dépendance d'accès hôte pour `game_id` (paramètre de chemin).
    La clé d'hôte est prioritaire ; sinon un accès admin suffit.
    """
    if x_host_key:
        try:
            valid = verify_host_key(game_id, x_host_key)
        except GameNotFoundError:
            raise HTTPException(status_code=404, detail="Game not found")
        if not valid:
            raise HTTPException(status_code=403, detail="Invalid host key")
        return True

    status = _admin_status(request, credentials)
    if status is None:
        return True
    if status == 403:
        raise HTTPException(status_code=403, detail="Invalid token")
    raise HTTPException(status_code=401, detail="Host key required")

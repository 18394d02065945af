"""
Routes de parties (création, inscription, lecture, pilotage hôte).

Objectifs :
- Création d'une partie par l'administrateur (renvoie la clé d'hôte, jamais rediffusée).
- Inscription des joueurs par code court ; lien d'invitation + QR code.
- Lecture du document, du classement et du journal d'événements.
- Pilotage hôte : démarrage, ajout du joueur IA, passage au round suivant.

Erreurs :
- 404 partie inconnue, 409 action refusée par les règles (phase, statut…).
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.deps.auth import admin_required, host_required
from app.models.game import Game
from app.services import game_service
from app.services.game_service import GameRuleError
from app.services.game_store import SAFE_KEY_PATTERN, GameNotFoundError, find_game_id_by_code, get_game_document
from app.services.join_links import build_join_url, join_qr_data_url
from app.services.round_engine import get_round_engine

router = APIRouter(prefix="/games", tags=["games"])


# ---------------------------------------------------------------------------
# Modèles Pydantic
# ---------------------------------------------------------------------------
class GameCreatePayload(BaseModel):
    host_name: str = Field("Hôte", min_length=1, max_length=40)
    total_rounds: Optional[int] = Field(None, ge=1, le=50, description="Défaut: TOTAL_ROUNDS")


class GameCreateResponse(BaseModel):
    game_id: str
    code: str
    host_id: str
    host_key: str
    join_url: str
    game: Dict[str, Any]


class JoinPayload(BaseModel):
    code: str = Field(..., min_length=1, max_length=12)
    display_name: str = Field(..., min_length=1, max_length=40)
    player_id: Optional[str] = Field(
        None, pattern=SAFE_KEY_PATTERN, description="Identifiant client (réinscription idempotente)"
    )


class JoinResponse(BaseModel):
    game_id: str
    player_id: str


class JoinLinkResponse(BaseModel):
    game_id: str
    code: str
    join_url: str
    qr_data_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers internes
# ---------------------------------------------------------------------------
def _snapshot_or_404(game_id: str) -> Dict[str, Any]:
    try:
        return get_game_document(game_id).snapshot()
    except GameNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _game_or_404(game_id: str) -> Game:
    try:
        return game_service.load_game(game_id)
    except GameNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _engine_or_404(game_id: str):
    try:
        return get_round_engine(game_id)
    except GameNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


# ---------------------------------------------------------------------------
# Création / lecture
# ---------------------------------------------------------------------------
@router.post("", response_model=GameCreateResponse, dependencies=[Depends(admin_required)])
async def create_game(
    payload: GameCreatePayload = Body(default_factory=GameCreatePayload),
) -> GameCreateResponse:
    """Crée une partie en lobby ; l'hôte est inscrit comme joueur."""
    try:
        game, host_key = game_service.create_game(payload.host_name, total_rounds=payload.total_rounds)
    except GameRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return GameCreateResponse(
        game_id=game.id,
        code=game.code,
        host_id=game.host_id,
        host_key=host_key,
        join_url=build_join_url(game.code),
        game=game.model_dump(),
    )


@router.get("/code/{code}")
async def game_by_code(code: str):
    """Résout un code court (la partie la plus récente l'emporte)."""
    game_id = find_game_id_by_code(code)
    if not game_id:
        raise HTTPException(status_code=404, detail="Game not found")
    snap = _snapshot_or_404(game_id)
    return {"game_id": game_id, "status": snap.get("status"), "code": snap.get("code")}


@router.post("/join", response_model=JoinResponse)
async def join_game(payload: JoinPayload) -> JoinResponse:
    try:
        joined = game_service.join_game(payload.code, payload.player_id, payload.display_name)
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if joined is None:
        raise HTTPException(status_code=404, detail="Game not found")
    game_id, player_id = joined
    return JoinResponse(game_id=game_id, player_id=player_id)


@router.get("/{game_id}", response_model=Game)
async def get_game(game_id: str) -> Game:
    """Document public de la partie (sans secrets), validé par le modèle `Game`."""
    return _game_or_404(game_id)


@router.get("/{game_id}/join-link", response_model=JoinLinkResponse)
async def join_link(game_id: str) -> JoinLinkResponse:
    snap = _snapshot_or_404(game_id)
    code = str(snap.get("code") or "")
    return JoinLinkResponse(
        game_id=game_id,
        code=code,
        join_url=build_join_url(code),
        qr_data_url=join_qr_data_url(code),
    )


@router.get("/{game_id}/leaderboard")
async def leaderboard(game_id: str) -> Dict[str, Any]:
    snap = _snapshot_or_404(game_id)
    return {
        "game_id": game_id,
        "status": snap.get("status"),
        "leaderboard": game_service.leaderboard(snap),
    }


@router.get("/{game_id}/events")
async def game_events(
    game_id: str,
    limit: int = Query(100, ge=1, le=2000),
    _: bool = Depends(host_required),
) -> Dict[str, Any]:
    """Dernières entrées du journal de la partie (hôte)."""
    try:
        events = get_game_document(game_id).events_snapshot()
    except GameNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc
    return {"game_id": game_id, "events": events[-limit:]}


# ---------------------------------------------------------------------------
# Pilotage hôte
# ---------------------------------------------------------------------------
@router.post("/{game_id}/start")
async def start_game(game_id: str, _: bool = Depends(host_required)) -> Dict[str, Any]:
    """lobby → playing, ajoute le joueur IA et ouvre le round 1."""
    engine = _engine_or_404(game_id)
    try:
        round_id = await engine.start()
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, "round_id": round_id, "status": engine.status()}


@router.post("/{game_id}/ai-player")
async def add_ai_player(game_id: str, _: bool = Depends(host_required)) -> Dict[str, Any]:
    """Ajoute le joueur IA (idempotent)."""
    _snapshot_or_404(game_id)
    return {"ok": True, "ai_player_id": game_service.add_ai_player(game_id)}


@router.post("/{game_id}/next")
async def next_round(game_id: str, _: bool = Depends(host_required)) -> Dict[str, Any]:
    """Termine le round courant et ouvre le suivant (ou clôt la partie)."""
    engine = _engine_or_404(game_id)
    try:
        result = await engine.next_round()
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, **result}


@router.get("/{game_id}/status")
async def engine_status(game_id: str) -> Dict[str, Any]:
    return _engine_or_404(game_id).status()


@router.get("/{game_id}/players")
async def list_players(game_id: str) -> Dict[str, Any]:
    game = _game_or_404(game_id)
    return {"game_id": game_id, "players": [p.model_dump() for p in game.players.values()]}

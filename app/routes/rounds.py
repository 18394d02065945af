"""
Routes de round : propositions des joueurs et transitions pilotées par l'hôte.

- POST /games/{id}/rounds/{rid}/guess       (joueur)  proposition de techniques
- POST /games/{id}/rounds/{rid}/ai-guess    (hôte)    proposition du joueur IA
- POST /games/{id}/rounds/{rid}/close       (hôte)    guessing → reveal + analyse
- POST /games/{id}/rounds/{rid}/analyze     (hôte)    (ré)analyse et scores (idempotent)
- POST /games/{id}/rounds/{rid}/techniques  (hôte)    techniques correctes
- POST /games/{id}/rounds/{rid}/analysis    (hôte)    analyse de secours fournie par le client
- POST /games/{id}/rounds/{rid}/comparison  (hôte)    reveal → comparison
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.deps.auth import host_required
from app.services import game_service
from app.services.game_service import GameRuleError
from app.services.game_store import SAFE_KEY_PATTERN, GameNotFoundError
from app.services.round_engine import RoundEngine, get_round_engine

router = APIRouter(prefix="/games/{game_id}/rounds/{round_id}", tags=["rounds"])


class GuessPayload(BaseModel):
    player_id: str = Field(..., pattern=SAFE_KEY_PATTERN)
    techniques: List[str] = Field(default_factory=list, description="Tags inconnus ignorés")


class AIGuessPayload(BaseModel):
    techniques: Optional[List[str]] = Field(None, description="Proposition imposée (sinon LLM)")
    should_make_mistake: Optional[bool] = None


class TechniquesPayload(BaseModel):
    techniques: List[str]


class AnalysisPayload(BaseModel):
    correct_techniques: List[str] = Field(default_factory=list)
    explanation: str = ""
    neutral_alternative: str = ""
    manipulation_level: int = Field(50, ge=0, le=100)
    ai_commentary: str = ""


def _engine(game_id: str) -> RoundEngine:
    try:
        return get_round_engine(game_id)
    except GameNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


@router.post("/guess")
async def submit_guess(game_id: str, round_id: str, payload: GuessPayload) -> Dict[str, Any]:
    engine = _engine(game_id)
    try:
        guess = game_service.submit_guess(game_id, round_id, payload.player_id, payload.techniques)
        closed = await engine.maybe_close_early(round_id)
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, "guess": guess, "closed": closed}


@router.post("/ai-guess")
async def submit_ai_guess(
    game_id: str,
    round_id: str,
    payload: Optional[AIGuessPayload] = None,
    _: bool = Depends(host_required),
) -> Dict[str, Any]:
    engine = _engine(game_id)
    payload = payload or AIGuessPayload()
    try:
        result = await engine.submit_ai_guess(
            round_id,
            should_make_mistake=payload.should_make_mistake,
            techniques=payload.techniques,
        )
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, **result}


@router.post("/close")
async def close_guessing(game_id: str, round_id: str, _: bool = Depends(host_required)) -> Dict[str, Any]:
    engine = _engine(game_id)
    try:
        result = await engine.close_guessing(round_id)
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, **result}


@router.post("/analyze")
async def analyze_round(game_id: str, round_id: str, _: bool = Depends(host_required)) -> Dict[str, Any]:
    engine = _engine(game_id)
    try:
        result = await engine.analyze_round(round_id)
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, **result}


@router.post("/techniques")
async def store_techniques(
    game_id: str,
    round_id: str,
    payload: TechniquesPayload,
    _: bool = Depends(host_required),
) -> Dict[str, Any]:
    try:
        stored = game_service.store_round_techniques(game_id, round_id, payload.techniques)
    except GameNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, "techniques": stored}


@router.post("/analysis")
async def upload_analysis(
    game_id: str,
    round_id: str,
    payload: AnalysisPayload,
    _: bool = Depends(host_required),
) -> Dict[str, Any]:
    """Remplace l'analyse du round (analyse de secours calculée côté client)."""
    try:
        game_service.update_round_analysis(game_id, round_id, payload.model_dump())
    except GameNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True}


@router.post("/comparison")
async def to_comparison(game_id: str, round_id: str, _: bool = Depends(host_required)) -> Dict[str, Any]:
    engine = _engine(game_id)
    try:
        comparison = await engine.to_comparison(round_id)
    except GameRuleError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"ok": True, "comparison": comparison}


@router.get("/comparison")
async def get_comparison(game_id: str, round_id: str) -> Dict[str, Any]:
    engine = _engine(game_id)
    try:
        return engine.comparison(round_id)
    except GameRuleError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

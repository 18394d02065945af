"""
Module routes/ai.py
Rôle:
- Helpers IA sans état (aucune écriture dans les parties) : génération de post,
  analyse d'un post, proposition du joueur IA.

Intégrations:
- manipulation_ai : prompts + textes de secours (ces routes ne renvoient jamais d'erreur LLM).
- Routes synchrones : FastAPI les exécute dans son threadpool (appels HTTP bloquants).
"""
from typing import List

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.services.manipulation_ai import analyze_post, generate_ai_player_guess, generate_manipulative_post

router = APIRouter(prefix="/ai", tags=["ai"])


class AnalyzePayload(BaseModel):
    post: str = Field(..., min_length=1)
    topic: str = ""
    techniques: List[str] = Field(default_factory=list)


class AIPlayerGuessPayload(BaseModel):
    post: str = Field(..., min_length=1)
    topic: str = ""
    should_make_mistake: bool = False


@router.post("/generate-post")
def generate_post():
    """Thème + post + techniques (generated_by = llm | fallback)."""
    return generate_manipulative_post()


@router.post("/analyze")
def analyze(payload: AnalyzePayload):
    return analyze_post(payload.post, payload.topic, payload.techniques)


@router.post("/ai-player-guess")
def ai_player_guess(payload: AIPlayerGuessPayload):
    return generate_ai_player_guess(payload.post, payload.topic, payload.should_make_mistake)

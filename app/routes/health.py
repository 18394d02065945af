"""
Module routes/health.py
Rôle:
- Endpoints de santé (service OK, parties en cours, ping LLM).

Intégrations:
- settings: nom d’app + paramètres LLM.
- game_store: décompte des parties par statut (lobby / playing / finished).
- run_llm: ping rapide du provider / modèle (latence, échantillon).
"""
from collections import Counter

from fastapi import APIRouter
import time

from app.config.settings import settings
from app.services.game_store import iter_game_documents
from app.services.llm_engine import LLMServiceError, run_llm
from app.services.ws_manager import WS

router = APIRouter(prefix="/health", tags=["health"])

@router.get("")
async def health():
    """Nom du service, parties par statut et sockets ouvertes."""
    games = Counter(str(doc.get("status") or "unknown") for doc in iter_game_documents())
    return {
        "ok": True,
        "service": settings.APP_NAME,
        "games": dict(games),
        "active_games": games.get("lobby", 0) + games.get("playing", 0),
        "ws": WS.stats()["connections_total"],
    }

@router.get("/llm")
def health_llm():
    """
    Ping du LLM configuré (prompt très court). Avec `LLM_PROVIDER=stub`, `ok` vaut False
    et les parties tournent sur les textes de secours.
    """
    report = {"provider": settings.LLM_PROVIDER, "model": settings.LLM_MODEL}
    started = time.perf_counter()
    try:
        sample = run_llm("Réponds: pong.", temperature=0.0).get("text", "")
    except LLMServiceError as exc:
        report.update(ok=False, error=str(exc))
    else:
        report.update(ok=True, sample=sample[:120])
    report["latency_s"] = round(time.perf_counter() - started, 3)
    return report

"""
Service: game_service.py
Rôle:
- Opérations élémentaires sur le document de partie : création, inscription, rounds,
  propositions, analyses, scores, fin de partie.
- Chaque écriture passe par `GameDocument.patch` (chemins pointés) et est journalisée.

Règles:
- L'inscription n'est possible qu'en lobby et reste idempotente pour un joueur déjà inscrit.
- Une proposition n'est acceptée qu'en phase `guessing`, avant l'échéance, pour un joueur connu.
- Toute liste de techniques est filtrée sur les 8 tags connus.
"""
from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from app.config.settings import settings
from app.models.game import (
    GAME_FINISHED,
    GAME_LOBBY,
    GAME_PLAYING,
    ROUND_GUESSING,
    ROUND_WAITING,
    Game,
)
from app.models.technique import filter_techniques
from app.services.game_store import (
    GameDocument,
    create_game_document,
    find_game_id_by_code,
    generate_join_code,
    get_game_document,
    is_safe_key,
    now_ms,
)

logger = logging.getLogger(__name__)

VALID_PHASES = ("waiting", "guessing", "reveal", "comparison", "complete")
MAX_DISPLAY_NAME = 40


class GameRuleError(ValueError):
    """Action refusée par les règles du jeu (phase, statut, joueur inconnu…)."""


def round_id_for(number: int) -> str:
    return f"round-{number}"


def _clean_name(name: Optional[str]) -> str:
    value = " ".join((name or "").split())
    if not value:
        raise GameRuleError("display_name required")
    return value[:MAX_DISPLAY_NAME]


def _check_id(value: Optional[str], what: str) -> str:
    """Un identifiant client devient un segment de chemin : ni point ni caractère exotique."""
    if not is_safe_key(value):
        raise GameRuleError(f"invalid {what}")
    return value


def load_game(game_id: str) -> Game:
    """Vue typée du document (lève GameNotFoundError)."""
    return Game.model_validate(get_game_document(game_id).snapshot())


def _round(doc: GameDocument, round_id: str) -> Dict[str, Any]:
    _check_id(round_id, "round_id")
    data = doc.get(f"rounds.{round_id}")
    if not isinstance(data, dict):
        raise GameRuleError(f"unknown round: {round_id}")
    return data


# -----------------------------
# Création / inscription
# -----------------------------
def create_game(host_name: str = "Hôte", *, total_rounds: Optional[int] = None) -> Tuple[Game, str]:
    """
    Crée une partie en lobby. L'hôte est inscrit comme joueur (`is_host=True`).
    Retourne (game, host_key) ; la clé n'est jamais écrite dans le document public.
    """
    rounds = int(total_rounds or settings.TOTAL_ROUNDS)
    if rounds < 1:
        raise GameRuleError("total_rounds must be >= 1")
    host_id = uuid4().hex
    host_key = secrets.token_urlsafe(24)
    created = now_ms()
    data = {
        "code": generate_join_code(),
        "host_id": host_id,
        "status": GAME_LOBBY,
        "current_round_id": None,
        "total_rounds": rounds,
        "current_round_number": 0,
        "created_at": created,
        "players": {
            host_id: {
                "id": host_id,
                "display_name": _clean_name(host_name),
                "is_host": True,
                "is_ai": False,
                "score": 0,
            }
        },
        "rounds": {},
    }
    doc = create_game_document(data, secrets={"host_key": host_key})
    doc.log_event("game_created", {"code": data["code"], "total_rounds": rounds})
    logger.info("game created", extra={"game_id": doc.game_id, "code": data["code"]})
    return Game.model_validate(doc.snapshot()), host_key


def verify_host_key(game_id: str, key: Optional[str]) -> bool:
    doc = get_game_document(game_id)
    expected = str(doc.secrets.get("host_key") or "")
    if not key or not expected:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), str(key).encode("utf-8"))


def join_game(code: str, player_id: Optional[str], display_name: str) -> Optional[Tuple[str, str]]:
    """
    Inscrit un joueur dans la partie du code donné.
    Retourne (game_id, player_id), ou None si aucune partie ne correspond.
    """
    game_id = find_game_id_by_code(code)
    if not game_id:
        return None
    doc = get_game_document(game_id)
    pid = _check_id((player_id or "").strip() or uuid4().hex, "player_id")
    if isinstance(doc.get(f"players.{pid}"), dict):
        return game_id, pid
    if doc.get("status") != GAME_LOBBY:
        raise GameRuleError("game already started")
    name = _clean_name(display_name)
    doc.patch({f"players.{pid}": {
        "id": pid,
        "display_name": name,
        "is_host": False,
        "is_ai": False,
        "score": 0,
    }})
    doc.log_event("player_joined", {"player_id": pid, "display_name": name}, scope="player")
    logger.info("player joined", extra={"game_id": game_id, "player_id": pid})
    return game_id, pid


def add_ai_player(game_id: str, name: Optional[str] = None) -> str:
    """Ajoute le joueur IA (réutilise celui qui existe déjà)."""
    doc = get_game_document(game_id)
    for pid, player in (doc.get("players") or {}).items():
        if isinstance(player, dict) and player.get("is_ai"):
            return pid
    pid = f"ai-{uuid4().hex[:8]}"
    doc.patch({f"players.{pid}": {
        "id": pid,
        "display_name": name or settings.AI_PLAYER_NAME,
        "is_host": False,
        "is_ai": True,
        "score": 0,
    }})
    doc.log_event("ai_player_added", {"player_id": pid})
    return pid


# -----------------------------
# Déroulé
# -----------------------------
def start_game(game_id: str) -> None:
    doc = get_game_document(game_id)
    if doc.get("status") != GAME_LOBBY:
        raise GameRuleError("game already started")
    doc.patch({"status": GAME_PLAYING, "current_round_number": 1})
    doc.log_event("game_started", {})


def create_round(game_id: str, number: int, topic: str, post: str, techniques: Iterable[str],
                 generated_by: Optional[str] = None) -> str:
    doc = get_game_document(game_id)
    rid = round_id_for(number)
    doc.patch({
        f"rounds.{rid}": {
            "id": rid,
            "round_number": number,
            "topic": topic,
            "manipulative_post": post,
            "correct_techniques": filter_techniques(techniques),
            "player_guesses": {},
            "phase": ROUND_WAITING,
            "scores": {},
            "scored": False,
            "generated_by": generated_by,
        },
        "current_round_id": rid,
    })
    doc.log_event("round_created", {"round_id": rid, "topic": topic, "generated_by": generated_by})
    return rid


def update_round_phase(game_id: str, round_id: str, phase: str, guessing_ends_at: Optional[int] = None) -> None:
    if phase not in VALID_PHASES:
        raise GameRuleError(f"invalid phase: {phase}")
    doc = get_game_document(game_id)
    _round(doc, round_id)
    updates: Dict[str, Any] = {
        f"rounds.{round_id}.phase": phase,
        f"rounds.{round_id}.started_at": now_ms(),
    }
    if guessing_ends_at is not None:
        updates[f"rounds.{round_id}.guessing_ends_at"] = int(guessing_ends_at)
    doc.patch(updates)
    doc.log_event("round_phase", {"round_id": round_id, "phase": phase})
    logger.info("round phase", extra={"game_id": game_id, "round_id": round_id, "phase": phase})


def submit_guess(game_id: str, round_id: str, player_id: str, techniques: Iterable[str],
                 *, timestamp: Optional[int] = None) -> Dict[str, Any]:
    """Enregistre (ou remplace) la proposition d'un joueur pour le round."""
    doc = get_game_document(game_id)
    rnd = _round(doc, round_id)
    _check_id(player_id, "player_id")
    if not isinstance(doc.get(f"players.{player_id}"), dict):
        raise GameRuleError("unknown player")
    if rnd.get("phase") != ROUND_GUESSING:
        raise GameRuleError("round is not accepting guesses")
    ts = int(timestamp if timestamp is not None else now_ms())
    ends_at = rnd.get("guessing_ends_at")
    if ends_at and ts > int(ends_at):
        raise GameRuleError("guessing time is over")
    guess = {"techniques": filter_techniques(techniques), "timestamp": ts}
    doc.patch({f"rounds.{round_id}.player_guesses.{player_id}": guess})
    doc.log_event("guess_submitted", {"round_id": round_id, "player_id": player_id}, scope="player")
    return guess


def update_round_analysis(game_id: str, round_id: str, analysis: Dict[str, Any]) -> None:
    doc = get_game_document(game_id)
    rnd = _round(doc, round_id)
    payload = dict(analysis)
    # une analyse sans techniques garde celles déjà enregistrées
    previous = (rnd.get("ai_analysis") or {}).get("correct_techniques") or rnd.get("correct_techniques") or []
    payload["correct_techniques"] = filter_techniques(payload.get("correct_techniques") or previous)
    doc.patch({f"rounds.{round_id}.ai_analysis": payload})


def store_round_techniques(game_id: str, round_id: str, techniques: Iterable[str]) -> List[str]:
    """Écrit `ai_analysis.correct_techniques` (crée l'analyse partielle si besoin)."""
    doc = get_game_document(game_id)
    _round(doc, round_id)
    cleaned = filter_techniques(techniques)
    doc.patch({f"rounds.{round_id}.ai_analysis.correct_techniques": cleaned})
    return cleaned


def update_player_score(game_id: str, player_id: str, delta: int) -> int:
    doc = get_game_document(game_id)
    _check_id(player_id, "player_id")
    player = doc.get(f"players.{player_id}")
    if not isinstance(player, dict):
        raise GameRuleError("unknown player")
    new_score = int(player.get("score") or 0) + int(delta)
    doc.patch({f"players.{player_id}.score": new_score})
    return new_score


def increment_round_number(game_id: str) -> int:
    doc = get_game_document(game_id)
    number = int(doc.get("current_round_number") or 0) + 1
    doc.patch({"current_round_number": number})
    return number


def finish_game(game_id: str) -> None:
    doc = get_game_document(game_id)
    if doc.get("status") == GAME_FINISHED:
        return
    doc.patch({"status": GAME_FINISHED, "finished_at": now_ms()})
    doc.log_event("game_finished", {"scores": leaderboard(doc.snapshot())})
    logger.info("game finished", extra={"game_id": game_id})


def leaderboard(game: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Classement décroissant par score, ex aequo triés par nom."""
    players = [p for p in (game.get("players") or {}).values() if isinstance(p, dict)]
    players.sort(key=lambda p: (-int(p.get("score") or 0), str(p.get("display_name") or "").lower()))
    board = []
    for rank, p in enumerate(players, start=1):
        board.append({
            "rank": rank,
            "player_id": p.get("id"),
            "display_name": p.get("display_name"),
            "is_ai": bool(p.get("is_ai")),
            "score": int(p.get("score") or 0),
        })
    return board

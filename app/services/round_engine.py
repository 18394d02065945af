"""
Service: round_engine.py
Rôle:
- Machine d'état des rounds, pilotée par le serveur :
  guessing → reveal (analyse + scores) → comparison → complete → round suivant / fin.
- Timers par partie (tâches asyncio) : fin des propositions, fin de révélation, proposition IA.
  Un timer qui se déclenche vérifie le round et la phase attendus, sinon il s'annule (timer périmé).

API interne exposée aux routes:
- get_round_engine(game_id) → RoundEngine
- engine.start(), open_round(n), submit_ai_guess(rid), close_guessing(rid), analyze_round(rid),
  to_comparison(rid), next_round(), maybe_close_early(rid), abort_timers()

Notes:
- Les appels LLM (bloquants, `requests`) passent par `anyio.to_thread.run_sync`.
- `AUTO_ADVANCE=false` coupe toute transition automatique : l'hôte pilote via l'API.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Awaitable, Callable, Dict, List, Optional

import anyio

from app.config.settings import settings
from app.engine.scoring import guess_breakdown, score_round
from app.models.game import (
    GAME_LOBBY,
    GAME_PLAYING,
    ROUND_COMPARISON,
    ROUND_COMPLETE,
    ROUND_GUESSING,
    ROUND_REVEAL,
)
from app.services import game_service
from app.services.game_service import GameRuleError
from app.services.game_store import get_game_document, now_ms
from app.services.manipulation_ai import (
    DISCUSSION_QUESTIONS,
    REFLECTION_QUESTIONS,
    analyze_post,
    generate_ai_player_guess,
    generate_manipulative_post,
)

logger = logging.getLogger(__name__)


@dataclass
class RoundEngine:
    game_id: str
    rng: random.Random = field(default_factory=random.Random, repr=False)
    _timer_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _ai_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    # === lecture ===
    def _doc(self):
        return get_game_document(self.game_id)

    def _round(self, round_id: str) -> Dict[str, Any]:
        rnd = self._doc().get(f"rounds.{round_id}")
        if not isinstance(rnd, dict):
            raise GameRuleError(f"unknown round: {round_id}")
        return rnd

    def _require_current(self, round_id: str) -> Dict[str, Any]:
        rnd = self._round(round_id)
        if self._doc().get("current_round_id") != round_id:
            raise GameRuleError("round is not the current round")
        return rnd

    def status(self) -> Dict[str, Any]:
        game = game_service.load_game(self.game_id)
        current = game.current_round
        return {
            "game_id": self.game_id,
            "status": game.status,
            "round_id": game.current_round_id,
            "phase": current.phase if current else None,
            "round_number": game.current_round_number,
            "has_timer": bool(self._timer_task and not self._timer_task.done()),
        }

    # === cycle ===
    async def start(self) -> str:
        """Lance la partie (lobby → playing) et ouvre le round 1."""
        async with self._lock:
            game = game_service.load_game(self.game_id)
            if game.status != GAME_LOBBY:
                raise GameRuleError("game already started")
            if len(game.human_players()) < settings.MIN_PLAYERS:
                raise GameRuleError(f"at least {settings.MIN_PLAYERS} players are required")
            if settings.AI_PLAYER_ENABLED:
                game_service.add_ai_player(self.game_id)
            game_service.start_game(self.game_id)
            return await self.open_round(1)

    async def open_round(self, number: int) -> str:
        """Génère le post, crée le round et ouvre les propositions."""
        post = await anyio.to_thread.run_sync(generate_manipulative_post, self.rng)
        rid = game_service.create_round(
            self.game_id, number, post["topic"], post["post"], post["techniques"],
            generated_by=post.get("generated_by"),
        )
        game_service.store_round_techniques(self.game_id, rid, post["techniques"])
        ends_at = now_ms() + settings.GUESSING_DURATION_SEC * 1000
        game_service.update_round_phase(self.game_id, rid, ROUND_GUESSING, guessing_ends_at=ends_at)

        if settings.AUTO_ADVANCE:
            self._schedule_ai_guess(rid)
            self._start_timer(settings.GUESSING_DURATION_SEC, rid, ROUND_GUESSING, self._on_guessing_timeout)
        return rid

    def _all_humans_guessed(self, round_id: str) -> bool:
        doc = self._doc()
        guesses = doc.get(f"rounds.{round_id}.player_guesses") or {}
        expected = [
            pid for pid, p in (doc.get("players") or {}).items()
            if isinstance(p, dict) and not p.get("is_ai") and not p.get("is_host")
        ]
        return bool(expected) and all(pid in guesses for pid in expected)

    async def maybe_close_early(self, round_id: str) -> bool:
        """Clôture anticipée quand tous les joueurs (hors hôte et IA) ont proposé."""
        if not settings.AUTO_ADVANCE:
            return False
        if self._round(round_id).get("phase") != ROUND_GUESSING:
            return False
        if not self._all_humans_guessed(round_id):
            return False
        logger.info("all players guessed, closing early", extra={"game_id": self.game_id, "round_id": round_id})
        await self.close_guessing(round_id)
        return True

    async def submit_ai_guess(self, round_id: str, should_make_mistake: Optional[bool] = None,
                              techniques: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Proposition du joueur IA. Sans `techniques`, elle est demandée au LLM
        (erreur volontaire avec la probabilité AI_MISTAKE_PROBABILITY).
        """
        doc = self._doc()
        ai = game_service.load_game(self.game_id).ai_player()
        if ai is None:
            raise GameRuleError("no AI player in this game")
        ai_id = ai.id
        rnd = self._round(round_id)
        if techniques is None:
            if should_make_mistake is None:
                should_make_mistake = self.rng.random() < settings.AI_MISTAKE_PROBABILITY
            proposal = await anyio.to_thread.run_sync(
                generate_ai_player_guess,
                rnd.get("manipulative_post") or "",
                rnd.get("topic") or "",
                should_make_mistake,
                self.rng,
            )
        else:
            proposal = {"techniques": techniques, "analysis": ""}
        guess = game_service.submit_guess(self.game_id, round_id, ai_id, proposal["techniques"])
        doc.patch({f"rounds.{round_id}.ai_player_guess": {
            "techniques": guess["techniques"],
            "analysis": proposal.get("analysis") or "",
        }})
        return {"player_id": ai_id, **guess, "analysis": proposal.get("analysis") or ""}

    async def close_guessing(self, round_id: str) -> Dict[str, Any]:
        """guessing → reveal, puis analyse et scores (idempotent)."""
        async with self._lock:
            rnd = self._require_current(round_id)
            if rnd.get("phase") == ROUND_GUESSING:
                self._cancel_ai_task()
                self._cancel_timer()
                game_service.update_round_phase(self.game_id, round_id, ROUND_REVEAL)
            elif rnd.get("phase") != ROUND_REVEAL:
                raise GameRuleError(f"cannot close guessing from phase {rnd.get('phase')}")
        return await self.analyze_round(round_id)

    async def analyze_round(self, round_id: str) -> Dict[str, Any]:
        """
        Analyse le post, enregistre l'analyse et attribue les points une seule fois
        (drapeau `scored`). Renvoie {analysis, scores}.
        """
        async with self._lock:
            rnd = self._round(round_id)
            if rnd.get("phase") in (None, "waiting", ROUND_GUESSING):
                raise GameRuleError("guessing is still open")
            correct = (rnd.get("ai_analysis") or {}).get("correct_techniques") or rnd.get("correct_techniques") or []
            if not correct:
                raise GameRuleError("correct techniques not found")

            analysis = rnd.get("ai_analysis") or {}
            if not analysis.get("explanation"):
                analysis = await anyio.to_thread.run_sync(
                    analyze_post, rnd.get("manipulative_post") or "", rnd.get("topic") or "", correct,
                )
            if rnd.get("ai_player_guess"):
                analysis["ai_player_guess"] = rnd["ai_player_guess"]
            game_service.update_round_analysis(self.game_id, round_id, analysis)

            scores = self._apply_scores(round_id)

        if settings.AUTO_ADVANCE and self._round(round_id).get("phase") == ROUND_REVEAL:
            ready = bool(self._doc().get(f"rounds.{round_id}.ai_analysis.explanation"))
            delay = settings.REVEAL_DURATION_SEC if ready else settings.REVEAL_PENDING_DURATION_SEC
            self._start_timer(delay, round_id, ROUND_REVEAL, self._on_reveal_timeout)
        return {"analysis": self._doc().get(f"rounds.{round_id}.ai_analysis"), "scores": scores}

    def _apply_scores(self, round_id: str) -> Dict[str, int]:
        doc = self._doc()
        rnd = self._round(round_id)
        if rnd.get("scored"):
            return dict(rnd.get("scores") or {})
        correct = (rnd.get("ai_analysis") or {}).get("correct_techniques") or []
        total_ms = settings.GUESSING_DURATION_SEC * 1000
        scores = score_round(rnd, correct, total_ms)
        players = doc.get("players") or {}
        updates: Dict[str, Any] = {
            f"rounds.{round_id}.scores": scores,
            f"rounds.{round_id}.scored": True,
        }
        for pid, points in scores.items():
            if pid in players:
                updates[f"players.{pid}.score"] = int(players[pid].get("score") or 0) + points
        doc.patch(updates)
        doc.log_event("round_scored", {"round_id": round_id, "scores": scores})
        logger.info("round scored", extra={"game_id": self.game_id, "round_id": round_id, "scores": scores})
        return scores

    async def to_comparison(self, round_id: str) -> Dict[str, Any]:
        """reveal → comparison (aucune avance automatique ensuite)."""
        async with self._lock:
            rnd = self._require_current(round_id)
            if rnd.get("phase") != ROUND_COMPARISON:
                if rnd.get("phase") != ROUND_REVEAL:
                    raise GameRuleError(f"cannot compare from phase {rnd.get('phase')}")
                self._cancel_timer()
                game_service.update_round_phase(self.game_id, round_id, ROUND_COMPARISON)
        return self.comparison(round_id)

    def comparison(self, round_id: str) -> Dict[str, Any]:
        rnd = self._round(round_id)
        analysis = rnd.get("ai_analysis") or {}
        correct = analysis.get("correct_techniques") or rnd.get("correct_techniques") or []
        return {
            "round_id": round_id,
            "manipulative_post": rnd.get("manipulative_post"),
            "neutral_alternative": analysis.get("neutral_alternative"),
            "manipulation_level": analysis.get("manipulation_level"),
            "correct_techniques": correct,
            "guesses": {
                pid: guess_breakdown(g.get("techniques") or [], correct)
                for pid, g in (rnd.get("player_guesses") or {}).items()
                if isinstance(g, dict)
            },
            "scores": rnd.get("scores") or {},
            "reflection_questions": list(REFLECTION_QUESTIONS),
            "discussion_questions": list(DISCUSSION_QUESTIONS),
        }

    async def next_round(self) -> Dict[str, Any]:
        """Termine le round courant puis ouvre le suivant, ou clôt la partie."""
        async with self._lock:
            doc = self._doc()
            if doc.get("status") != GAME_PLAYING:
                raise GameRuleError("game is not in progress")
            rid = doc.get("current_round_id")
            if rid:
                phase = doc.get(f"rounds.{rid}.phase")
                if phase == ROUND_GUESSING:
                    raise GameRuleError("close the current round first")
                self._cancel_timer()
                if phase != ROUND_COMPLETE:
                    game_service.update_round_phase(self.game_id, rid, ROUND_COMPLETE)
            number = int(doc.get("current_round_number") or 0)
            if number >= int(doc.get("total_rounds") or settings.TOTAL_ROUNDS):
                game_service.finish_game(self.game_id)
                return {"finished": True, "leaderboard": game_service.leaderboard(doc.snapshot())}
            number = game_service.increment_round_number(self.game_id)
            # le verrou couvre la génération du post : un second "next" voit le round ouvert
            rid = await self.open_round(number)
        return {"finished": False, "round_id": rid, "round_number": number}

    # ---------------- timers ----------------
    def _start_timer(self, seconds: float, round_id: str, phase: str,
                     callback: Callable[[str], Awaitable[Any]]) -> None:
        self._cancel_timer()

        async def _runner():
            try:
                await asyncio.sleep(seconds)
            except asyncio.CancelledError:
                return
            if not self._still_in(round_id, phase):
                logger.info("stale timer ignored", extra={"game_id": self.game_id, "round_id": round_id, "phase": phase})
                return
            logger.info("timer fired", extra={"game_id": self.game_id, "round_id": round_id, "phase": phase})
            try:
                await callback(round_id)
            except GameRuleError as exc:
                logger.warning("timer transition refused: %s", exc, extra={"game_id": self.game_id})

        self._timer_task = asyncio.create_task(_runner())

    def _still_in(self, round_id: str, phase: str) -> bool:
        doc = self._doc()
        return (
            doc.get("status") == GAME_PLAYING
            and doc.get("current_round_id") == round_id
            and doc.get(f"rounds.{round_id}.phase") == phase
        )

    async def _on_guessing_timeout(self, round_id: str) -> None:
        await self.close_guessing(round_id)

    async def _on_reveal_timeout(self, round_id: str) -> None:
        await self.to_comparison(round_id)

    def _schedule_ai_guess(self, round_id: str) -> None:
        if not self._doc_has_ai():
            return
        delay = self.rng.uniform(settings.AI_GUESS_DELAY_MIN_SEC, settings.AI_GUESS_DELAY_MAX_SEC)
        self._cancel_ai_task()

        async def _runner():
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                return
            if not self._still_in(round_id, ROUND_GUESSING):
                return
            try:
                await self.submit_ai_guess(round_id)
            except GameRuleError as exc:
                logger.warning("AI guess refused: %s", exc, extra={"game_id": self.game_id, "round_id": round_id})

        self._ai_task = asyncio.create_task(_runner())

    def _doc_has_ai(self) -> bool:
        return game_service.load_game(self.game_id).ai_player() is not None

    def _cancel_timer(self) -> None:
        if self._timer_task and not self._timer_task.done():
            if self._timer_task is not asyncio.current_task():
                self._timer_task.cancel()
        self._timer_task = None

    def _cancel_ai_task(self) -> None:
        if self._ai_task and not self._ai_task.done():
            if self._ai_task is not asyncio.current_task():
                self._ai_task.cancel()
        self._ai_task = None

    def abort_timers(self) -> None:
        self._cancel_timer()
        self._cancel_ai_task()


# -----------------------------
# Registre
# -----------------------------
_ENGINES: Dict[str, RoundEngine] = {}
_ENGINES_LOCK = RLock()


def get_round_engine(game_id: str) -> RoundEngine:
    """Moteur de la partie (créé à la demande ; GameNotFoundError si la partie n'existe pas)."""
    get_game_document(game_id)
    with _ENGINES_LOCK:
        engine = _ENGINES.get(game_id)
        if engine is None:
            engine = RoundEngine(game_id=game_id)
            _ENGINES[game_id] = engine
        return engine


def drop_round_engine(game_id: str) -> None:
    with _ENGINES_LOCK:
        engine = _ENGINES.pop(game_id, None)
    if engine:
        engine.abort_timers()


def drop_all_round_engines() -> int:
    with _ENGINES_LOCK:
        engines = list(_ENGINES.values())
        _ENGINES.clear()
    for engine in engines:
        engine.abort_timers()
    return len(engines)

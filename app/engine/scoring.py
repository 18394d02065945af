"""
Scoring engine.

Computes the points earned by a guess and applies them to every guess of a
round. Pure functions: nothing here touches the game document, callers
persist the result (see `round_engine.analyze_round`).
"""
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

POINTS_PER_CORRECT = 10
PERFECT_GUESS_BONUS = 20
MAX_SPEED_BONUS = 10
PENALTY_PER_WRONG = 5
DEFAULT_TOTAL_TIME_MS = 60_000


def _unique(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values:
        if v not in out:
            out.append(v)
    return out


def calculate_score(
    player_techniques: Iterable[str],
    correct_techniques: Iterable[str],
    time_remaining_ms: float,
    total_time_ms: float = DEFAULT_TOTAL_TIME_MS,
) -> int:
    """
    +10 per correct technique, +20 when the guess is exactly right,
    up to +10 for speed, -5 per wrong technique. Never negative.
    """
    guessed = _unique(player_techniques)
    correct = set(correct_techniques)

    correct_count = sum(1 for t in guessed if t in correct)
    incorrect_count = len(guessed) - correct_count

    score = correct_count * POINTS_PER_CORRECT

    if correct_count == len(correct) and incorrect_count == 0:
        score += PERFECT_GUESS_BONUS

    time_ratio = max(0.0, time_remaining_ms / total_time_ms) if total_time_ms > 0 else 0.0
    score += math.floor(time_ratio * MAX_SPEED_BONUS)

    score -= incorrect_count * PENALTY_PER_WRONG
    return max(0, score)


def time_remaining_ms(guessing_ends_at: Optional[int], guess_timestamp: Optional[int]) -> int:
    if not guessing_ends_at or guess_timestamp is None:
        return 0
    return max(0, int(guessing_ends_at) - int(guess_timestamp))


def score_round(
    round_data: Mapping[str, Any],
    correct_techniques: Iterable[str],
    total_time_ms: float = DEFAULT_TOTAL_TIME_MS,
) -> Dict[str, int]:
    """Return {player_id: points} for every guess recorded in the round."""
    correct = list(correct_techniques)
    ends_at = round_data.get("guessing_ends_at")
    results: Dict[str, int] = {}
    for player_id, guess in (round_data.get("player_guesses") or {}).items():
        if not isinstance(guess, Mapping):
            continue
        remaining = time_remaining_ms(ends_at, guess.get("timestamp"))
        results[player_id] = calculate_score(guess.get("techniques") or [], correct, remaining, total_time_ms)
    return results


def guess_breakdown(guessed: Iterable[str], correct_techniques: Iterable[str]) -> Dict[str, List[str]]:
    """Split a guess into correct / incorrect / missed techniques (reveal screen)."""
    guessed_list = _unique(guessed)
    correct = list(correct_techniques)
    return {
        "correct": [t for t in guessed_list if t in correct],
        "incorrect": [t for t in guessed_list if t not in correct],
        "missed": [t for t in correct if t not in guessed_list],
    }

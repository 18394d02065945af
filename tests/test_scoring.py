import pytest

from app.engine.scoring import calculate_score, guess_breakdown, score_round, time_remaining_ms


def test_perfect_guess_with_full_time():
    # 2 correctes (20) + parfait (20) + vitesse max (10)
    assert calculate_score(["bandwagon", "ad_hominem"], ["ad_hominem", "bandwagon"], 60_000, 60_000) == 50


def test_partial_guess_with_wrong_technique():
    # 1 correcte (10) + vitesse 5 - 1 fausse (5)
    score = calculate_score(["bandwagon", "scapegoating"], ["bandwagon", "ad_hominem"], 30_000, 60_000)
    assert score == 10


def test_score_never_negative():
    assert calculate_score(["scapegoating", "inconsistency", "false_dilemma"], ["bandwagon"], 0, 60_000) == 0


def test_speed_bonus_is_floored():
    # 1 correcte sur 2, ratio 0.99 -> floor(9.9) = 9
    assert calculate_score(["bandwagon"], ["bandwagon", "ad_hominem"], 59_400, 60_000) == 19


def test_duplicates_count_once():
    assert calculate_score(["bandwagon", "bandwagon"], ["bandwagon"], 0, 60_000) == 30


def test_empty_guess_keeps_speed_bonus():
    assert calculate_score([], ["bandwagon"], 60_000, 60_000) == 10


@pytest.mark.parametrize(
    "ends_at,ts,expected",
    [(10_000, 4_000, 6_000), (10_000, 12_000, 0), (None, 4_000, 0), (10_000, None, 0)],
)
def test_time_remaining(ends_at, ts, expected):
    assert time_remaining_ms(ends_at, ts) == expected


def test_score_round_uses_deadline():
    round_data = {
        "guessing_ends_at": 100_000,
        "player_guesses": {
            "p1": {"techniques": ["bandwagon"], "timestamp": 40_000},
            "p2": {"techniques": ["ad_hominem"], "timestamp": 99_000},
        },
    }
    scores = score_round(round_data, ["bandwagon"], 60_000)
    assert scores == {"p1": 40, "p2": 0}


def test_guess_breakdown():
    result = guess_breakdown(["bandwagon", "scapegoating"], ["bandwagon", "ad_hominem"])
    assert result == {
        "correct": ["bandwagon"],
        "incorrect": ["scapegoating"],
        "missed": ["ad_hominem"],
    }

import random

import pytest

from app.services import game_store
from app.services.game_store import (
    DELETE_FIELD,
    GameNotFoundError,
    apply_field_patch,
    create_game_document,
    find_game_id_by_code,
    generate_join_code,
    get_game_document,
)


def test_apply_field_patch_creates_intermediate_mappings():
    doc = {"players": {}}
    apply_field_patch(doc, {"rounds.round-1.player_guesses.p1": {"techniques": ["bandwagon"], "timestamp": 1}})
    assert doc["rounds"]["round-1"]["player_guesses"]["p1"]["timestamp"] == 1


def test_apply_field_patch_only_touches_named_fields():
    doc = {"players": {"p1": {"score": 5, "display_name": "Alice"}}}
    apply_field_patch(doc, {"players.p1.score": 15})
    assert doc["players"]["p1"] == {"score": 15, "display_name": "Alice"}


def test_apply_field_patch_delete_field():
    doc = {"a": {"b": 1, "c": 2}}
    apply_field_patch(doc, {"a.b": DELETE_FIELD, "x.y": DELETE_FIELD})
    assert doc == {"a": {"c": 2}}


@pytest.mark.parametrize("path", ["", "a..b", ".a"])
def test_apply_field_patch_rejects_bad_paths(path):
    with pytest.raises(ValueError):
        apply_field_patch({}, {path: 1})


def test_apply_field_patch_rejects_non_mapping():
    with pytest.raises(ValueError):
        apply_field_patch({"a": 3}, {"a.b": 1})


def test_patch_persists_and_reloads(isolated_data_dir, monkeypatch):
    doc = create_game_document({"code": "123456", "players": {}}, secrets={"host_key": "k"})
    doc.patch({"players.p1": {"id": "p1", "score": 0}})
    doc.log_event("player_joined", {"player_id": "p1"})

    monkeypatch.setattr(game_store, "_GAMES", {})
    reloaded = get_game_document(doc.game_id)

    assert reloaded.data["players"]["p1"]["id"] == "p1"
    assert reloaded.secrets == {"host_key": "k"}
    assert [e["kind"] for e in reloaded.events_snapshot()] == ["player_joined"]
    assert (isolated_data_dir / "games" / doc.game_id / "game.json").exists()


def test_snapshot_is_a_copy():
    doc = create_game_document({"players": {"p1": {"score": 1}}})
    snap = doc.snapshot()
    snap["players"]["p1"]["score"] = 99
    assert doc.get("players.p1.score") == 1


@pytest.mark.parametrize("game_id", ["missing", "../etc", ".hidden", ""])
def test_get_unknown_game(game_id):
    with pytest.raises(GameNotFoundError):
        get_game_document(game_id)


def test_find_by_code_prefers_most_recent():
    create_game_document({"code": "111111", "created_at": 1000, "status": "finished"})
    newer = create_game_document({"code": "111111", "created_at": 2000, "status": "lobby"})
    assert find_game_id_by_code(" 111111 ") == newer.game_id
    assert find_game_id_by_code("999999") is None
    assert find_game_id_by_code("") is None


def test_generate_join_code_skips_active_codes():
    create_game_document({"code": "000000", "status": "lobby"})
    rng = random.Random()
    values = iter("000000" + "424242")
    monkey_choice = lambda seq: next(values)  # noqa: E731
    rng.choice = monkey_choice

    assert generate_join_code(6, rng) == "424242"


def test_generate_join_code_gives_up():
    create_game_document({"code": "7", "status": "playing"})
    rng = random.Random()
    rng.choice = lambda seq: "7"
    with pytest.raises(RuntimeError):
        generate_join_code(1, rng)


def test_failed_patch_leaves_document_untouched():
    doc = create_game_document({"status": "lobby", "players": {"p1": {"score": 3}}})
    with pytest.raises(ValueError):
        doc.patch({"status": "playing", "players.p1.score.extra": 1})

    assert doc.get("status") == "lobby"
    assert doc.get("players.p1.score") == 3

    game_store._GAMES.clear()
    assert get_game_document(doc.game_id).get("status") == "lobby"


@pytest.mark.parametrize("value,expected", [
    ("round-1", True),
    ("a1b2_c3", True),
    ("host.score", False),
    ("", False),
    ("x" * 65, False),
    (None, False),
    (42, False),
])
def test_is_safe_key(value, expected):
    assert game_store.is_safe_key(value) is expected

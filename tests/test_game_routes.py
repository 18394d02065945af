import pytest

pytest.importorskip("httpx", reason="httpx requis pour les tests client FastAPI")

from fastapi.testclient import TestClient

from app.config.settings import settings
from app.main import app

client = TestClient(app)


def _admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.ADMIN_TOKEN}"}


def _create_game(total_rounds: int = 1) -> dict:
    response = client.post("/games", json={"host_name": "Hôte", "total_rounds": total_rounds}, headers=_admin_headers())
    assert response.status_code == 200
    return response.json()


def test_root_and_health():
    assert client.get("/").json()["ok"] is True
    assert client.get("/health").json()["ok"] is True
    llm = client.get("/health/llm").json()
    assert llm["ok"] is False
    assert llm["provider"] == "stub"


def test_create_game_requires_admin():
    assert client.post("/games", json={}).status_code == 401
    assert client.post("/games", json={}, headers={"Authorization": "Bearer wrong"}).status_code == 403


def test_admin_cookie_login_and_logout():
    bad = client.post("/auth/admin/login", json={"username": "admin", "password": "nope"})
    assert bad.status_code == 401

    cookie_client = TestClient(app)
    login = cookie_client.post(
        "/auth/admin/login",
        json={"username": settings.ADMIN_USER, "password": settings.ADMIN_PASSWORD},
    )
    assert login.status_code == 200
    assert cookie_client.post("/games", json={}).status_code == 200

    cookie_client.post("/auth/admin/logout")
    assert cookie_client.post("/games", json={}).status_code == 401


def test_game_round_flow_endpoints():
    created = _create_game(total_rounds=1)
    game_id = created["game_id"]
    host = {"X-Host-Key": created["host_key"]}
    assert created["join_url"].endswith(f"/join/{created['code']}")
    assert "host_key" not in client.get(f"/games/{game_id}").json()

    # Résolution du code puis inscription (idempotente)
    by_code = client.get(f"/games/code/{created['code']}")
    assert by_code.status_code == 200
    assert by_code.json()["game_id"] == game_id

    alice = client.post("/games/join", json={"code": created["code"], "display_name": "Alice"}).json()
    again = client.post(
        "/games/join",
        json={"code": created["code"], "display_name": "Alice", "player_id": alice["player_id"]},
    ).json()
    assert again == alice
    assert client.post("/games/join", json={"code": "ABC", "display_name": "X"}).status_code == 404

    # Les routes hôte exigent la clé
    assert client.post(f"/games/{game_id}/start").status_code == 401
    assert client.post(f"/games/{game_id}/start", headers={"X-Host-Key": "faux"}).status_code == 403

    start = client.post(f"/games/{game_id}/start", headers=host)
    assert start.status_code == 200
    round_id = start.json()["round_id"]
    assert round_id == "round-1"

    # Inscription refusée une fois la partie lancée
    late = client.post("/games/join", json={"code": created["code"], "display_name": "Bob"})
    assert late.status_code == 409

    game = client.get(f"/games/{game_id}").json()
    correct = game["rounds"][round_id]["correct_techniques"]
    assert game["status"] == "playing"

    guess = client.post(
        f"/games/{game_id}/rounds/{round_id}/guess",
        json={"player_id": alice["player_id"], "techniques": correct + ["not_a_tag"]},
    )
    assert guess.status_code == 200
    assert guess.json()["guess"]["techniques"] == correct

    ai_guess = client.post(f"/games/{game_id}/rounds/{round_id}/ai-guess", json={"techniques": [correct[0]]}, headers=host)
    assert ai_guess.status_code == 200
    assert ai_guess.json()["techniques"] == [correct[0]]

    close = client.post(f"/games/{game_id}/rounds/{round_id}/close", headers=host)
    assert close.status_code == 200
    scores = close.json()["scores"]
    assert scores[alice["player_id"]] >= 10 * len(correct) + 20

    late_guess = client.post(
        f"/games/{game_id}/rounds/{round_id}/guess",
        json={"player_id": alice["player_id"], "techniques": correct},
    )
    assert late_guess.status_code == 409

    comparison = client.post(f"/games/{game_id}/rounds/{round_id}/comparison", headers=host)
    assert comparison.status_code == 200
    assert comparison.json()["comparison"]["reflection_questions"]

    board = client.get(f"/games/{game_id}/leaderboard").json()["leaderboard"]
    assert board[0]["player_id"] == alice["player_id"]

    finish = client.post(f"/games/{game_id}/next", headers=host)
    assert finish.status_code == 200
    assert finish.json()["finished"] is True
    assert client.get(f"/games/{game_id}").json()["status"] == "finished"

    events = client.get(f"/games/{game_id}/events", headers=host).json()["events"]
    kinds = [e["kind"] for e in events]
    assert kinds[0] == "game_created"
    assert "round_scored" in kinds and "game_finished" in kinds


def test_host_can_upload_fallback_analysis_and_techniques():
    created = _create_game()
    game_id = created["game_id"]
    host = {"X-Host-Key": created["host_key"]}
    client.post("/games/join", json={"code": created["code"], "display_name": "Alice"})
    round_id = client.post(f"/games/{game_id}/start", headers=host).json()["round_id"]

    stored = client.post(
        f"/games/{game_id}/rounds/{round_id}/techniques",
        json={"techniques": ["bandwagon", "nope"]},
        headers=host,
    )
    assert stored.json()["techniques"] == ["bandwagon"]

    upload = client.post(
        f"/games/{game_id}/rounds/{round_id}/analysis",
        json={"explanation": "Effet de mode.", "neutral_alternative": "Beaucoup de gens aiment le café.", "manipulation_level": 60},
        headers=host,
    )
    assert upload.status_code == 200
    analysis = client.get(f"/games/{game_id}").json()["rounds"][round_id]["ai_analysis"]
    assert analysis["correct_techniques"] == ["bandwagon"]
    assert analysis["explanation"] == "Effet de mode."


def test_admin_token_also_drives_host_routes():
    created = _create_game()
    client.post("/games/join", json={"code": created["code"], "display_name": "Alice"})
    response = client.post(f"/games/{created['game_id']}/start", headers=_admin_headers())
    assert response.status_code == 200


def test_unknown_game_is_404():
    assert client.get("/games/unknown").status_code == 404
    assert client.get("/games/code/999999").status_code == 404
    assert client.post("/games/unknown/start", headers={"X-Host-Key": "k"}).status_code == 404


def test_join_link_returns_qr_code():
    created = _create_game()
    link = client.get(f"/games/{created['game_id']}/join-link").json()
    assert link["join_url"] == f"{settings.PUBLIC_BASE_URL.rstrip('/')}/join/{created['code']}"
    assert link["qr_data_url"].startswith("data:image/png;base64,")


def test_stateless_ai_helpers_fall_back_offline():
    post = client.post("/ai/generate-post").json()
    assert post["generated_by"] == "fallback"
    assert 2 <= len(post["techniques"]) <= 4

    analysis = client.post(
        "/ai/analyze",
        json={"post": post["post"], "topic": post["topic"], "techniques": post["techniques"]},
    ).json()
    assert analysis["manipulation_level"] == min(100, 50 + 10 * len(post["techniques"]))

    guess = client.post("/ai/ai-player-guess", json={"post": post["post"], "should_make_mistake": True}).json()
    assert len(guess["techniques"]) == 1


def test_join_with_dotted_player_id_is_rejected():
    created = _create_game()
    host_id = created["host_id"]

    response = client.post(
        "/games/join",
        json={"code": created["code"], "display_name": "Eve", "player_id": f"{host_id}.score"},
    )
    assert response.status_code == 422

    board = client.get(f"/games/{created['game_id']}/leaderboard")
    assert board.status_code == 200
    assert board.json()["leaderboard"] == [
        {"rank": 1, "player_id": host_id, "display_name": "Hôte", "is_ai": False, "score": 0},
    ]


def test_guess_with_dotted_player_id_is_rejected():
    created = _create_game()
    alice = client.post("/games/join", json={"code": created["code"], "display_name": "Alice"}).json()
    round_id = client.post(f"/games/{created['game_id']}/start", headers={"X-Host-Key": created["host_key"]}).json()["round_id"]

    response = client.post(
        f"/games/{created['game_id']}/rounds/{round_id}/guess",
        json={"player_id": f"{alice['player_id']}.score", "techniques": ["bandwagon"]},
    )
    assert response.status_code == 422


def test_admin_login_with_non_ascii_credentials_is_401():
    response = client.post("/auth/admin/login", json={"username": "émile", "password": "mot-de-passe-é"})
    assert response.status_code == 401


def test_game_views_are_typed():
    created = _create_game()
    game_id = created["game_id"]

    game = client.get(f"/games/{game_id}").json()
    assert game["id"] == game_id
    assert game["players"][created["host_id"]]["is_host"] is True

    players = client.get(f"/games/{game_id}/players").json()["players"]
    assert [p["id"] for p in players] == [created["host_id"]]

    status = client.get(f"/games/{game_id}/status").json()
    assert status["status"] == "lobby"
    assert status["phase"] is None


def test_health_counts_games_by_status():
    _create_game()
    health = client.get("/health").json()
    assert health["games"] == {"lobby": 1}
    assert health["active_games"] == 1

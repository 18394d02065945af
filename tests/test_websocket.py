import pytest

pytest.importorskip("httpx", reason="httpx requis pour les tests client FastAPI")

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.config.settings import settings
from app.main import app

ADMIN = {"Authorization": f"Bearer {settings.ADMIN_TOKEN}"}


def test_game_stream_snapshot_and_updates():
    with TestClient(app) as client:
        created = client.post("/games", json={}, headers=ADMIN).json()
        game_id = created["game_id"]

        with client.websocket_connect(f"/ws/games/{game_id}") as ws:
            first = ws.receive_json()
            assert first["type"] == "game_state"
            assert first["payload"]["code"] == created["code"]

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            joined = client.post("/games/join", json={"code": created["code"], "display_name": "Alice"}).json()
            update = ws.receive_json()
            assert update["type"] == "game_state"
            assert joined["player_id"] in update["payload"]["players"]

            ws.send_json({"type": "identify", "player_id": joined["player_id"]})
            assert ws.receive_json() == {"type": "identified", "player_id": joined["player_id"]}

            ws.send_json({"type": "identify", "player_id": "ghost"})
            assert ws.receive_json()["type"] == "error"


def test_game_stream_unknown_game_is_closed():
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/games/unknown") as ws:
                ws.receive_json()


def test_game_stream_survives_malformed_identify():
    with TestClient(app) as client:
        created = client.post("/games", json={}, headers=ADMIN).json()

        with client.websocket_connect(f"/ws/games/{created['game_id']}") as ws:
            ws.receive_json()

            for message in (
                {"type": "identify", "payload": "not-a-dict"},
                {"type": "identify", "player_id": 42},
                {"type": "identify", "player_id": f"{created['host_id']}.score"},
            ):
                ws.send_json(message)
                assert ws.receive_json()["type"] == "error"

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

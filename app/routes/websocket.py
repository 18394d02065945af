# app/routes/websocket.py
"""
WebSocket endpoint.

- /ws/games/{game_id} : flux temps réel d'une partie (écran hôte + téléphones joueurs).
  À la connexion, le client reçoit un snapshot `game_state` ; chaque patch du document
  en diffuse un nouveau à toute la salle.
- Messages client : {"type":"identify","player_id":...}, {"type":"ping"}, ACK générique sinon.
"""
from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.services.game_store import GameNotFoundError, get_game_document, is_safe_key
from app.services.ws_manager import WS

router = APIRouter()

# Code de fermeture applicatif : partie inconnue
CLOSE_GAME_NOT_FOUND = 4404


@router.websocket("/ws/games/{game_id}")
async def game_stream(ws: WebSocket, game_id: str):
    try:
        doc = get_game_document(game_id)
    except GameNotFoundError:
        await ws.close(code=CLOSE_GAME_NOT_FOUND)
        return

    await WS.connect(ws, game_id)
    await WS.send_json(ws, {"type": "game_state", "game_id": game_id, "payload": doc.snapshot()})
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                # Message non JSON -> ignore
                continue
            if not isinstance(msg, dict):
                continue

            mtype = msg.get("type")
            if mtype == "identify":
                payload = msg.get("payload")
                pid: Optional[str] = msg.get("player_id")
                if pid is None and isinstance(payload, dict):
                    pid = payload.get("player_id")
                pid = pid.strip() if isinstance(pid, str) else ""
                if is_safe_key(pid) and isinstance(doc.get(f"players.{pid}"), dict):
                    WS.identify(ws, pid)
                    await WS.send_json(ws, {"type": "identified", "player_id": pid})
                else:
                    await WS.send_json(ws, {"type": "error", "error": "unknown player_id"})
            elif mtype == "ping":
                await WS.send_json(ws, {"type": "pong"})
            elif mtype == "sync":
                await WS.send_json(ws, {"type": "game_state", "game_id": game_id, "payload": doc.snapshot()})
            else:
                await WS.send_json(ws, {"type": "ack", "received": msg})
    except WebSocketDisconnect:
        pass
    finally:
        await WS.disconnect(ws)

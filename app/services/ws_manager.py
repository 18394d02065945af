# app/services/ws_manager.py
"""
Service: ws_manager.py
- Salles par partie : game_id -> sockets abonnées (écrans hôte + téléphones joueurs).
- Mapping socket -> (game_id, player_id) pour l'identification facultative d'un joueur.
- Snapshots immuables pour éviter "set changed size during iteration".
- Helpers sync pour diffuser depuis les routes sync, les timers ou les services.
- Admin: stats(), close_all().
"""
from __future__ import annotations
from typing import Any, Callable, Dict, Optional, Set, Tuple
from dataclasses import dataclass, field
from threading import RLock
import asyncio
import json
import logging

import anyio
from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class WSManager:
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    # game_id -> set(WebSocket)
    rooms: Dict[str, Set[WebSocket]] = field(default_factory=dict)
    # reverse map: socket -> (game_id, player_id | None)
    ws_meta: Dict[WebSocket, Tuple[str, Optional[str]]] = field(default_factory=dict)

    async def connect(self, ws: WebSocket, game_id: str) -> None:
        """Accepte la connexion WS et l'abonne à la salle de la partie."""
        await ws.accept()
        with self._lock:
            self.rooms.setdefault(game_id, set()).add(ws)
            self.ws_meta[ws] = (game_id, None)

    def _unlink(self, ws: WebSocket) -> None:
        with self._lock:
            meta = self.ws_meta.pop(ws, None)
            if not meta:
                return
            room = self.rooms.get(meta[0])
            if room is not None:
                room.discard(ws)
                if not room:
                    self.rooms.pop(meta[0], None)

    async def disconnect(self, ws: WebSocket) -> None:
        """Ferme proprement la connexion et nettoie les registres."""
        self._unlink(ws)
        try:
            await ws.close()
        except Exception:
            pass

    def identify(self, ws: WebSocket, player_id: str) -> None:
        """Associe la socket à un joueur de sa partie (idempotent)."""
        with self._lock:
            meta = self.ws_meta.get(ws)
            if meta:
                self.ws_meta[ws] = (meta[0], player_id)

    def has_subscribers(self, game_id: str) -> bool:
        with self._lock:
            return bool(self.rooms.get(game_id))

    async def _send_json_one(self, ws: WebSocket, payload: Any) -> bool:
        """Envoie à un WS; renvoie True si succès, sinon False (et retire le WS mort)."""
        try:
            data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
            await ws.send_text(data)
            return True
        except Exception:
            self._unlink(ws)
            return False

    async def send_json(self, ws: WebSocket, payload: Any) -> bool:
        return await self._send_json_one(ws, payload)

    # ---------- snapshots immuables ----------
    def _snapshot_room(self, game_id: str) -> list[WebSocket]:
        with self._lock:
            return list(self.rooms.get(game_id, set()))

    def _snapshot_all(self) -> list[WebSocket]:
        with self._lock:
            return list(self.ws_meta.keys())

    # ---------- envois ----------
    async def broadcast_game(self, game_id: str, payload: Any) -> int:
        conns = self._snapshot_room(game_id)
        success = 0
        for ws in conns:
            if await self._send_json_one(ws, payload):
                success += 1
        return success

    # ---------- admin ----------
    def stats(self) -> dict:
        with self._lock:
            rooms = {gid: len(conns) for gid, conns in self.rooms.items()}
            identified = sum(1 for meta in self.ws_meta.values() if meta[1])
            return {
                "rooms": rooms,
                "connections_total": sum(rooms.values()),
                "identified_total": identified,
            }

    async def close_game(self, game_id: str) -> int:
        conns = self._snapshot_room(game_id)
        for ws in conns:
            await self.disconnect(ws)
        return len(conns)

    async def close_all(self) -> dict:
        for ws in self._snapshot_all():
            await self.disconnect(ws)
        return self.stats()


WS = WSManager()

# =====================================================
# WRAPPERS THREAD-SAFE (utilisables depuis code sync)
# =====================================================

def _run_async(factory: Callable[[], Any]):
    """
    Exécute une coroutine depuis un contexte potentiellement synchrone.
    - Dans un worker anyio (route FastAPI sync) : anyio.from_thread.run.
    - Dans le thread de la boucle : planifie une tâche (fire-and-forget).
    - Sans boucle : asyncio.run.
    `factory` crée la coroutine à la demande (jamais réutilisée).
    """
    try:
        return anyio.from_thread.run(factory)
    except RuntimeError:
        pass
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(factory())
    loop.create_task(factory())
    return None


def ws_broadcast_game_safe(game_id: str, payload: dict):
    """Wrapper synchrone: diffusion à toute la salle (no-op si personne n'écoute)."""
    if not WS.has_subscribers(game_id):
        return None
    return _run_async(lambda: WS.broadcast_game(game_id, payload))

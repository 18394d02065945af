"""
Admin routes.

Read-only overview of every stored game plus a reset endpoint. Resetting a
single game removes its directory under ``DATA_DIR/games/<game_id>/``,
cancels its round timers and closes its sockets. A full reset does the same
for every game (admin sessions are preserved).
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.deps.auth import admin_required
from app.services.game_store import delete_game_document, iter_game_documents, list_game_ids
from app.services.round_engine import drop_all_round_engines, drop_round_engine
from app.services.ws_manager import WS

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(admin_required)],
)


@router.get("/games")
async def list_games(status: Optional[str] = Query(default=None, description="lobby | playing | finished")):
    """Summary of every stored game, most recent first."""
    games = []
    for doc in iter_game_documents():
        data = doc.snapshot()
        if status and data.get("status") != status:
            continue
        games.append({
            "game_id": doc.game_id,
            "code": data.get("code"),
            "status": data.get("status"),
            "created_at": data.get("created_at"),
            "players": len(data.get("players") or {}),
            "current_round_number": data.get("current_round_number"),
            "total_rounds": data.get("total_rounds"),
        })
    games.sort(key=lambda g: g.get("created_at") or 0, reverse=True)
    return {"games": games, "ws": WS.stats()}


@router.post("/reset")
async def reset_games(
    game_id: Optional[str] = Query(default=None, description="Game to remove (default: every game)"),
):
    """
    * Without ``game_id``: remove every game, its timers and its sockets.
    * With ``game_id``: only that game (404 when nothing was stored for it).
    """
    if game_id is not None:
        gid = game_id.strip()
        if not gid or "/" in gid or "\\" in gid or gid.startswith("."):
            raise HTTPException(status_code=400, detail="Invalid game_id")
        drop_round_engine(gid)
        await WS.close_game(gid)
        if not delete_game_document(gid):
            raise HTTPException(status_code=404, detail="Game not found")
        return {"ok": True, "game_reset": gid}

    engines = drop_all_round_engines()
    removed = 0
    for gid in list_game_ids():
        await WS.close_game(gid)
        if delete_game_document(gid):
            removed += 1
    return {"ok": True, "games_removed": removed, "engines_stopped": engines}

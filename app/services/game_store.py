"""
Service: game_store.py
Rôle :
- Stocker le document partagé de chaque partie (players, rounds, phase…) et le persister.
- Appliquer des patchs par chemins pointés (`"rounds.round-1.phase"`), à la manière d'un
  `updateDoc` de base documentaire : chaque écriture ne touche que les champs nommés.
- Tenir un journal d'événements borné par partie et les secrets d'hôte (jamais diffusés).

Stockage (par partie) :
- `games/<game_id>/game.json`     (document public, diffusé aux clients)
- `games/<game_id>/secrets.json`  (clé d'hôte)
- `games/<game_id>/events.ndjson` (journal append-only, borné)

Registre :
- Les documents sont mis en cache en mémoire et chargés à la demande (`get_game_document`).
- Chaque `patch` diffuse le nouveau snapshot aux sockets abonnées à la partie.
"""
from __future__ import annotations

import copy
import logging
import random
import re
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from app.config.settings import settings
from .io_utils import read_json, read_ndjson, write_json, write_ndjson
from .ws_manager import ws_broadcast_game_safe

logger = logging.getLogger(__name__)

GAME_FILENAME = "game.json"
SECRETS_FILENAME = "secrets.json"
EVENTS_FILENAME = "events.ndjson"
MAX_AUDIT_EVENTS = 2000
MAX_JOIN_CODE_ATTEMPTS = 50
# Segment de chemin pointé fourni par un client (id de joueur, de round, de partie)
SAFE_KEY_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"
SAFE_KEY_RE = re.compile(SAFE_KEY_PATTERN)


class GameNotFoundError(LookupError):
    """Aucun document de partie pour cet identifiant."""


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


# Valeur spéciale de patch : supprime la clé visée
DELETE_FIELD = _DeleteField()


def is_safe_key(value: object) -> bool:
    return isinstance(value, str) and bool(SAFE_KEY_RE.match(value))


def games_dir() -> Path:
    return Path(settings.DATA_DIR) / "games"


def now_ms() -> int:
    return int(time.time() * 1000)


def apply_field_patch(document: Dict[str, Any], updates: Mapping[str, Any]) -> None:
    """
    Applique `updates` ({"a.b.c": valeur}) sur `document` (en place).
    - Les dictionnaires intermédiaires absents sont créés.
    - `DELETE_FIELD` supprime la clé finale (sans erreur si absente).
    """
    for path, value in updates.items():
        parts = path.split(".")
        if not path or any(not p for p in parts):
            raise ValueError(f"Invalid field path: {path!r}")
        node: Any = document
        for part in parts[:-1]:
            child = node.get(part)
            if child is None:
                if value is DELETE_FIELD:
                    node = None
                    break
                child = {}
                node[part] = child
            elif not isinstance(child, dict):
                raise ValueError(f"Field path {path!r} crosses a non-mapping value at {part!r}")
            node = child
        if node is None:
            continue
        if value is DELETE_FIELD:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)


def get_field(document: Mapping[str, Any], path: str, default: Any = None) -> Any:
    node: Any = document
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


@dataclass
class GameDocument:
    game_id: str
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    data: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    # -----------------------------
    # Chemins
    # -----------------------------
    def _dir(self) -> Path:
        return games_dir() / self.game_id

    def _game_path(self) -> Path:
        return self._dir() / GAME_FILENAME

    def _secrets_path(self) -> Path:
        return self._dir() / SECRETS_FILENAME

    def _events_path(self) -> Path:
        return self._dir() / EVENTS_FILENAME

    # -----------------------------
    # Chargement / Sauvegarde
    # -----------------------------
    def load(self) -> None:
        """Charge document/secrets/événements depuis le disque."""
        with self._lock:
            data = read_json(self._game_path())
            if not isinstance(data, dict):
                raise GameNotFoundError(self.game_id)
            self.data = data
            self.secrets = read_json(self._secrets_path()) or {}
            self.events = [e for e in read_ndjson(self._events_path()) if isinstance(e, dict)]
            self._trim_events()

    def save(self) -> None:
        with self._lock:
            self._trim_events()
            write_json(self._game_path(), self.data)
            write_json(self._secrets_path(), self.secrets)
            write_ndjson(self._events_path(), self.events)

    # -----------------------------
    # Lecture / écriture du document
    # -----------------------------
    def snapshot(self) -> Dict[str, Any]:
        """Copie profonde du document public (sans secrets)."""
        with self._lock:
            return copy.deepcopy(self.data)

    def get(self, path: str, default: Any = None) -> Any:
        with self._lock:
            return copy.deepcopy(get_field(self.data, path, default))

    def patch(self, updates: Mapping[str, Any], *, broadcast: bool = True) -> Dict[str, Any]:
        """
        Read-modify-write atomique (sous verrou) sur les champs nommés,
        puis persistance et diffusion du snapshot aux abonnés.
        """
        with self._lock:
            draft = copy.deepcopy(self.data)
            apply_field_patch(draft, updates)
            self.data = draft
            self.save()
            snap = copy.deepcopy(self.data)
        logger.debug("game patched", extra={"game_id": self.game_id, "fields": list(updates.keys())})
        if broadcast:
            ws_broadcast_game_safe(self.game_id, {"type": "game_state", "game_id": self.game_id, "payload": snap})
        return snap

    # -----------------------------
    # Journal d'événements
    # -----------------------------
    def _trim_events(self) -> None:
        if len(self.events) > MAX_AUDIT_EVENTS:
            del self.events[: len(self.events) - MAX_AUDIT_EVENTS]

    def log_event(self, kind: str, payload: Dict[str, Any], scope: str = "system") -> Dict[str, Any]:
        with self._lock:
            entry = {
                "id": str(uuid4()),
                "kind": kind,
                "scope": scope,
                "payload": payload,
                "ts": time.time(),
            }
            self.events.append(entry)
            self.save()
            return entry

    def events_snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [event.copy() for event in self.events]


# -----------------------------
# Registre
# -----------------------------
_GAMES: Dict[str, GameDocument] = {}
_LOCK = RLock()


def create_game_document(
    data: Dict[str, Any],
    *,
    secrets: Optional[Dict[str, Any]] = None,
) -> GameDocument:
    """Crée et persiste un nouveau document. `data["id"]` est généré si absent."""
    game_id = (data.get("id") or uuid4().hex).strip() or uuid4().hex
    with _LOCK:
        doc = GameDocument(game_id=game_id)
        doc.data = copy.deepcopy(data)
        doc.data["id"] = game_id
        doc.secrets = dict(secrets or {})
        doc.save()
        _GAMES[game_id] = doc
        return doc


def get_game_document(game_id: str) -> GameDocument:
    """Retourne le document `game_id` (cache, sinon disque). Lève GameNotFoundError."""
    gid = (game_id or "").strip()
    if not is_safe_key(gid):
        raise GameNotFoundError(game_id)
    with _LOCK:
        doc = _GAMES.get(gid)
        if doc is None:
            doc = GameDocument(game_id=gid)
            doc.load()
            _GAMES[gid] = doc
        return doc


def drop_game_document(game_id: str) -> None:
    """Retire un document du cache (sans supprimer les fichiers)."""
    with _LOCK:
        _GAMES.pop(game_id, None)


def delete_game_document(game_id: str) -> bool:
    """Supprime un document (cache + disque). Retourne True si quelque chose a été supprimé."""
    drop_game_document(game_id)
    target = games_dir() / game_id
    if target.exists():
        shutil.rmtree(target, ignore_errors=True)
        return True
    return False


def _disk_game_ids() -> Iterable[str]:
    base = games_dir()
    if not base.exists():
        return []
    return (path.name for path in base.iterdir() if path.is_dir() and (path / GAME_FILENAME).exists())


def list_game_ids() -> List[str]:
    """Parties connues (cache + disque)."""
    with _LOCK:
        ids = set(_GAMES.keys())
    ids.update(_disk_game_ids())
    return sorted(ids)


def iter_game_documents() -> Iterable[GameDocument]:
    for gid in list_game_ids():
        try:
            yield get_game_document(gid)
        except GameNotFoundError:
            continue


def find_game_id_by_code(code: Optional[str]) -> Optional[str]:
    """
    Recherche la partie correspondant à un join code.
    En cas de doublon, la plus récente (`created_at`) l'emporte.
    """
    wanted = (code or "").strip().upper()
    if not wanted:
        return None
    best_id: Optional[str] = None
    best_created = -1
    for doc in iter_game_documents():
        data = doc.data
        if str(data.get("code") or "").upper() != wanted:
            continue
        created = int(data.get("created_at") or 0)
        if created > best_created:
            best_id, best_created = doc.game_id, created
    return best_id


def generate_join_code(length: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """Code numérique court, unique parmi les parties non terminées."""
    size = length or settings.JOIN_CODE_LENGTH
    rng = rng or random.SystemRandom()
    active = {
        str(doc.data.get("code") or "")
        for doc in iter_game_documents()
        if doc.data.get("status") != "finished"
    }
    for _ in range(MAX_JOIN_CODE_ATTEMPTS):
        code = "".join(rng.choice("0123456789") for _ in range(size))
        if code not in active:
            return code
    raise RuntimeError("Unable to allocate a free join code")

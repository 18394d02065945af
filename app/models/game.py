"""
Models / game.py
Rôle:
- Snapshot typé (Pydantic) du document de partie partagé : Game → players / rounds.
- Sert à valider les lectures du document et à sérialiser les réponses API.

Champs:
- Game: id, code (join code), host_id, status, round courant, compteur, created_at,
  players {player_id: Player}, rounds {round_id: Round}.
- Round: post généré, techniques correctes, analyse IA optionnelle, propositions des joueurs,
  phase (waiting → guessing → reveal → comparison → complete).

Notes:
- Le document reste un dict brut côté stockage (patchs par chemins pointés) ;
  `Game.model_validate(doc)` en donne une vue typée à la demande.
- `extra="allow"` pour tolérer des champs ajoutés par des clients plus récents.
"""
from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.technique import ManipulationTechnique

GameStatus = Literal["lobby", "playing", "finished"]
RoundPhase = Literal["waiting", "guessing", "reveal", "comparison", "complete"]

ROUND_WAITING = "waiting"
ROUND_GUESSING = "guessing"
ROUND_REVEAL = "reveal"
ROUND_COMPARISON = "comparison"
ROUND_COMPLETE = "complete"

GAME_LOBBY = "lobby"
GAME_PLAYING = "playing"
GAME_FINISHED = "finished"


class Player(BaseModel):
    """Profil joueur (humain, hôte ou IA)."""
    id: str
    display_name: str
    is_host: bool = False
    is_ai: bool = False
    score: int = 0

    model_config = ConfigDict(extra="allow")


class PlayerGuess(BaseModel):
    techniques: List[ManipulationTechnique] = Field(default_factory=list)
    timestamp: int  # epoch ms

    model_config = ConfigDict(extra="allow")


class AIPlayerGuess(BaseModel):
    techniques: List[ManipulationTechnique] = Field(default_factory=list)
    analysis: str = ""

    model_config = ConfigDict(extra="allow")


class AIAnalysis(BaseModel):
    """Analyse IA d'un post : explication, version neutre, niveau de manipulation (0-100)."""
    correct_techniques: List[ManipulationTechnique] = Field(default_factory=list)
    explanation: str = ""
    neutral_alternative: str = ""
    manipulation_level: int = Field(0, ge=0, le=100)
    ai_commentary: str = ""
    ai_player_guess: Optional[AIPlayerGuess] = None

    model_config = ConfigDict(extra="allow")


class Round(BaseModel):
    id: str
    round_number: int
    topic: str
    manipulative_post: str
    correct_techniques: List[ManipulationTechnique] = Field(default_factory=list)
    ai_analysis: Optional[AIAnalysis] = None
    player_guesses: Dict[str, PlayerGuess] = Field(default_factory=dict)
    phase: RoundPhase = ROUND_WAITING
    started_at: Optional[int] = None
    guessing_ends_at: Optional[int] = None
    # points attribués pendant ce round (rempli une seule fois, cf. `scored`)
    scores: Dict[str, int] = Field(default_factory=dict)
    scored: bool = False
    generated_by: Optional[str] = None
    # proposition du joueur IA, recopiée dans `ai_analysis` à l'analyse
    ai_player_guess: Optional[AIPlayerGuess] = None

    model_config = ConfigDict(extra="allow")


class Game(BaseModel):
    id: str
    code: str
    host_id: str
    status: GameStatus = GAME_LOBBY
    current_round_id: Optional[str] = None
    total_rounds: int = 10
    current_round_number: int = 0
    created_at: int
    finished_at: Optional[int] = None
    players: Dict[str, Player] = Field(default_factory=dict)
    rounds: Dict[str, Round] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    @property
    def current_round(self) -> Optional[Round]:
        if not self.current_round_id:
            return None
        return self.rounds.get(self.current_round_id)

    def ai_player(self) -> Optional[Player]:
        return next((p for p in self.players.values() if p.is_ai), None)

    def human_players(self) -> List[Player]:
        return [p for p in self.players.values() if not p.is_ai]

"""
Configuration de l'application (Settings)
=========================================

Rôle
----
- Centraliser les paramètres de l'app (nom, host/port, secrets, chemins, LLM, durées de phases…).
- Les valeurs par défaut conviennent pour un environnement de dev local.
- Les variables peuvent être surchargées via un fichier `.env` ou l'environnement.

Intégrations
------------
- `pydantic-settings` charge automatiquement les variables d'env et `.env`.
- Les services/routers importent `from app.config.settings import settings`.

Bonnes pratiques
----------------
- *Ne commitez pas* de valeur réelle pour `ADMIN_PASSWORD` / `ADMIN_TOKEN` / `GEMINI_API_KEY`.
- `LLM_PROVIDER="stub"` coupe tout appel réseau : les textes de secours sont utilisés.
- `DATA_DIR` calcule un chemin relatif au repo : `<repo>/app/data`.

Exemples de `.env`
------------------
APP_NAME="Manipulation Factory (Staging)"
PORT=8080
ADMIN_PASSWORD="mettre-une-valeur-secrète-en-prod"
LLM_PROVIDER="gemini"
LLM_MODEL="gemini-2.0-flash"
GEMINI_API_KEY="..."
PUBLIC_BASE_URL="http://192.168.1.20:3000"
GUESSING_DURATION_SEC=45
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    # Nom du service (apparaît dans /health)
    APP_NAME: str = "Manipulation Factory Backend"
    # Bind réseau (FastAPI / Uvicorn)
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Compte administrateur (création de parties)
    # ⚠️ Remplacez en production via .env
    ADMIN_USER: str = "admin"
    ADMIN_PASSWORD: str = "admin"
    # Bearer accepté à la place du cookie admin (dev/CLI)
    ADMIN_TOKEN: str = "changeme-super-secret"

    # Configuration du LLM : "ollama" (local), "gemini" (API Google) ou "stub" (hors ligne)
    LLM_PROVIDER: str = "ollama"
    LLM_MODEL: str = "llama3.1"
    LLM_ENDPOINT: str = "http://localhost:11434/api/chat"
    GEMINI_API_KEY: str = ""
    GEMINI_ENDPOINT: str = "https://generativelanguage.googleapis.com/v1beta"
    # Langue des posts, analyses et textes de secours
    CONTENT_LANGUAGE: str = "French"

    # Répertoire des documents de partie (JSON) – par défaut <repo>/app/data
    DATA_DIR: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

    # URL publique du front (lien d'invitation + QR code)
    PUBLIC_BASE_URL: str = "http://localhost:3000"
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    JOIN_CODE_LENGTH: int = 6

    # Déroulé de partie
    TOTAL_ROUNDS: int = 10
    MIN_PLAYERS: int = 2
    GUESSING_DURATION_SEC: int = 60
    # Révélation : 8 s si l'analyse est prête, 12 s sinon (laisse le temps au fallback)
    REVEAL_DURATION_SEC: int = 8
    REVEAL_PENDING_DURATION_SEC: int = 12
    # False => aucune transition automatique (l'hôte pilote tout)
    AUTO_ADVANCE: bool = True

    # Joueur IA
    AI_PLAYER_ENABLED: bool = True
    AI_PLAYER_NAME: str = "Intelligence artificielle"
    AI_MISTAKE_PROBABILITY: float = 0.4
    AI_GUESS_DELAY_MIN_SEC: float = 1.0
    AI_GUESS_DELAY_MAX_SEC: float = 3.0

    # Paramétrage pydantic-settings :
    # - lit le fichier .env (UTF-8) si présent
    # - ignore les clés supplémentaires pour éviter les erreurs
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Instance unique importable partout : `settings`
settings = Settings()

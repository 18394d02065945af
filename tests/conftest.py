import os
import tempfile

# Avant tout import de `app` : LLM hors ligne, pas de transitions automatiques,
# données dans un répertoire jetable.
os.environ.setdefault("LLM_PROVIDER", "stub")
os.environ.setdefault("AUTO_ADVANCE", "false")
os.environ.setdefault("AI_GUESS_DELAY_MIN_SEC", "0")
os.environ.setdefault("AI_GUESS_DELAY_MAX_SEC", "0")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="manipulation-factory-"))

import pytest

from app.config.settings import settings
from app.services import game_store, round_engine


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Chaque test démarre avec un stockage vide et des registres neufs."""
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "AUTO_ADVANCE", False)
    monkeypatch.setattr(game_store, "_GAMES", {})
    monkeypatch.setattr(round_engine, "_ENGINES", {})
    return tmp_path

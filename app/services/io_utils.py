"""
Utilitaires IO JSON (rapides) basés sur orjson.
- read_json(Path)  → Any | None (None si fichier manquant)
- write_json(Path, data) → écriture atomique (fichier temporaire + replace)
- write_ndjson / read_ndjson → journal d'événements ligne à ligne

Attention:
- orjson renvoie/attend des bytes; on lit/écrit en mode binaire.
- Les lignes NDJSON illisibles sont ignorées (journal tolérant).
"""
import orjson as json
from pathlib import Path
from typing import Any, Iterable, List


def dumps(data: Any) -> bytes:
    return json.dumps(data, option=json.OPT_NON_STR_KEYS)


def read_json(path: Path) -> Any:
    """Lit un fichier JSON (ou None s'il n'existe pas)."""
    if not path.exists():
        return None
    with path.open("rb") as f:
        return json.loads(f.read())


def write_json(path: Path, data: Any) -> None:
    """Écrit un fichier JSON sans jamais laisser de fichier à moitié écrit."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("wb") as f:
        f.write(dumps(data))
    tmp.replace(path)


def read_ndjson(path: Path) -> List[Any]:
    if not path.exists():
        return []
    entries: List[Any] = []
    with path.open("rb") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return entries


def write_ndjson(path: Path, entries: Iterable[Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as fh:
        for entry in entries:
            fh.write(dumps(entry))
            fh.write(b"\n")

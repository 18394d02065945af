"""
Models / technique.py
Rôle:
- Catalogue fermé des 8 techniques de manipulation (tags stables, utilisés partout).
- Libellés affichables + thèmes de posts.

Notes:
- Les tags sont la seule contrainte locale du document de partie : toute liste de
  techniques qui entre dans le système passe par `filter_techniques`.
"""
from __future__ import annotations

import random
from typing import Iterable, List, Literal, Optional

ManipulationTechnique = Literal[
    "emotional_language",
    "false_dilemma",
    "scapegoating",
    "ad_hominem",
    "inconsistency",
    "appeal_to_authority",
    "bandwagon",
    "slippery_slope",
]

TECHNIQUES: tuple[str, ...] = (
    "emotional_language",
    "false_dilemma",
    "scapegoating",
    "ad_hominem",
    "inconsistency",
    "appeal_to_authority",
    "bandwagon",
    "slippery_slope",
)

TECHNIQUE_LABELS = {
    "emotional_language": "Langage émotionnel",
    "false_dilemma": "Faux dilemme",
    "scapegoating": "Bouc émissaire",
    "ad_hominem": "Attaque personnelle",
    "inconsistency": "Incohérence",
    "appeal_to_authority": "Appel à l'autorité",
    "bandwagon": "Effet de mode",
    "slippery_slope": "Pente glissante",
}

# Thèmes volontairement légers (posts humoristiques, jamais blessants)
TOPICS: tuple[str, ...] = (
    "le café",
    "les études",
    "la technologie",
    "les animaux",
    "la météo",
    "le sport",
    "la musique",
    "les restaurants",
)

MIN_TECHNIQUES_PER_POST = 2
MAX_TECHNIQUES_PER_POST = 4


def is_technique(value: object) -> bool:
    return isinstance(value, str) and value in TECHNIQUES


def filter_techniques(values: Optional[Iterable[object]]) -> List[str]:
    """Garde uniquement les tags connus, sans doublons, dans l'ordre reçu."""
    seen: List[str] = []
    for value in values or []:
        if is_technique(value) and value not in seen:
            seen.append(value)
    return seen


def pick_techniques(rng: Optional[random.Random] = None) -> List[str]:
    """Tire 2 à 4 techniques distinctes."""
    rng = rng or random.Random()
    count = rng.randint(MIN_TECHNIQUES_PER_POST, MAX_TECHNIQUES_PER_POST)
    return rng.sample(list(TECHNIQUES), count)


def pick_topic(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    return rng.choice(TOPICS)


def technique_labels(techniques: Iterable[str]) -> List[str]:
    return [TECHNIQUE_LABELS.get(t, t) for t in techniques]

"""
Service: manipulation_ai.py
Rôle:
- Produire le contenu de chaque round via le LLM : post manipulateur, analyse,
  version neutre et proposition du joueur IA.
- Garantir une réponse jouable même sans LLM (textes de secours, tirages aléatoires).

Intégrations:
- `llm_engine.run_llm` / `extract_json` (toutes les erreurs LLM sont des LLMServiceError).
- `models.technique` pour les tags, libellés et thèmes.
"""
from __future__ import annotations

import json
import logging
import random
import re
from typing import Any, Dict, List, Optional

from app.config.settings import settings
from app.models.technique import (
    TECHNIQUES,
    filter_techniques,
    pick_techniques,
    pick_topic,
    technique_labels,
)
from app.services.llm_engine import LLMServiceError, extract_json, run_llm

logger = logging.getLogger(__name__)

MIN_NEUTRAL_LENGTH = 20
MIN_REWRITE_LENGTH = 15
DEFAULT_MANIPULATION_LEVEL = 50
LEVEL_PER_TECHNIQUE = 10

# Réponses typiques d'un modèle qui recopie la consigne au lieu de réécrire
PLACEHOLDER_PHRASES = (
    "version neutre du contenu",
    "discussion équilibrée sur",
    "neutral version of the content",
    "balanced discussion about",
)

FALLBACK_EXPLANATION = "Le post utilise des techniques de manipulation émotionnelle pour orienter l'opinion."
FALLBACK_COMMENTARY = "Une manipulation intéressante !"
FALLBACK_AI_REMARK = "Ça a l'air manipulateur !"
FALLBACK_AI_GUESS_MISTAKE = "Je suis sûr que c'est juste du langage émotionnel... ou peut-être autre chose ?"
FALLBACK_AI_GUESS_CONFIDENT = "Il y a plusieurs techniques de manipulation intéressantes ici !"

# Questions affichées pendant la comparaison et la discussion
REFLECTION_QUESTIONS = (
    "Quelle version vous a fait ressentir le plus d'émotion ?",
    "Quelle version était la plus convaincante ?",
    "Quelle est la principale différence entre les deux ?",
    "Comment la manipulation influence-t-elle la perception ?",
)
DISCUSSION_QUESTIONS = (
    "Quelles techniques avez-vous repérées ? Laquelle était la plus évidente ?",
    "Qu'avez-vous ressenti en lisant ce post ?",
    "Que changeriez-vous pour le rendre plus neutre ?",
    "Avez-vous déjà croisé ce genre de contenu sur les réseaux sociaux ?",
)

# Une phrase par technique ; {topic} est remplacé par le thème du round
_FALLBACK_SENTENCES = {
    "emotional_language": "Franchement, {topic}, c'est un scandale absolu qui me brise le cœur chaque matin !",
    "false_dilemma": "Soit tu adores {topic}, soit tu n'as rien compris à la vie, il n'y a pas d'entre-deux.",
    "scapegoating": "Si {topic} va si mal, c'est évidemment la faute des voisins du troisième.",
    "ad_hominem": "Ceux qui critiquent {topic} ne savent même pas lacer leurs chaussures.",
    "inconsistency": "Je ne parle jamais de {topic}, d'ailleurs j'en parle tous les jours.",
    "appeal_to_authority": "Un expert très connu (dont j'ai oublié le nom) dit que {topic} est la clé du bonheur.",
    "bandwagon": "Tout le monde ne jure que par {topic}, tu vas vraiment rester le seul à part ?",
    "slippery_slope": "Aujourd'hui on néglige {topic}, demain c'est la fin de la civilisation.",
}

_QUOTES_RE = re.compile(r"^[\"'`«»\s]+|[\"'`«»\s]+$")
_FENCE_RE = re.compile(r"^```[\w]*\n?|```$")
_PREFIX_RE = re.compile(r"^(version neutre|neutral version)\s*:?\s*", re.IGNORECASE)


def _labels(techniques: List[str]) -> str:
    return ", ".join(technique_labels(techniques))


def looks_like_placeholder(text: Optional[str], min_length: int = MIN_NEUTRAL_LENGTH) -> bool:
    value = (text or "").strip()
    if len(value) < min_length:
        return True
    lowered = value.lower()
    return any(phrase in lowered for phrase in PLACEHOLDER_PHRASES)


def balanced_discussion(topic: str) -> str:
    return f"Une discussion équilibrée sur {topic}, fondée sur les faits."


def fallback_post(topic: str, techniques: List[str]) -> str:
    return " ".join(_FALLBACK_SENTENCES[t].format(topic=topic) for t in techniques if t in _FALLBACK_SENTENCES)


# -----------------------------
# Génération du post
# -----------------------------
def _build_post_prompt(topic: str, techniques: List[str]) -> str:
    return (
        f"Écris en {settings.CONTENT_LANGUAGE} un court post de réseau social (2 à 3 phrases) "
        f"sur « {topic} » qui utilise ces techniques de manipulation : {_labels(techniques)}. "
        "Ton humoristique, jamais blessant. Réponds uniquement avec le post."
    )


def generate_manipulative_post(rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Tire un thème et 2 à 4 techniques, puis fait écrire le post par le LLM."""
    rng = rng or random.Random()
    topic = pick_topic(rng)
    techniques = pick_techniques(rng)
    try:
        text = run_llm(_build_post_prompt(topic, techniques), temperature=0.9)["text"].strip()
        generated_by = "llm"
    except LLMServiceError:
        logger.warning("post generation fell back to templates", extra={"topic": topic})
        text = ""
    if not text:
        text = fallback_post(topic, techniques)
        generated_by = "fallback"
    return {"topic": topic, "post": text, "techniques": techniques, "generated_by": generated_by}


# -----------------------------
# Version neutre
# -----------------------------
def _build_rewrite_prompt(post: str) -> str:
    return (
        f"Post manipulateur : \"{post}\"\n\n"
        f"Réécris ce post en {settings.CONTENT_LANGUAGE} dans une version neutre : même sujet, même contenu, "
        "sans manipulation émotionnelle, sans faux dilemme, sans attaque personnelle, sans bouc émissaire.\n\n"
        "Exemple :\n"
        "Post manipulateur : « Tu as encore choisi le canapé ? Tes baskets pleurent dans le noir ! »\n"
        "Version neutre : « Une activité physique régulière est bonne pour la santé. "
        "On peut essayer de l'intégrer au quotidien. »\n\n"
        "Réponds uniquement avec la version neutre, sans explication ni guillemets."
    )


def clean_rewrite(text: str) -> str:
    value = (text or "").strip()
    value = _FENCE_RE.sub("", value).strip()
    value = _QUOTES_RE.sub("", value)
    value = _PREFIX_RE.sub("", value)
    return _QUOTES_RE.sub("", value)


def generate_neutral_alternative(post: str, topic: str) -> str:
    """Réécriture neutre du post ; phrase générique sur le thème si le LLM échoue."""
    try:
        text = clean_rewrite(run_llm(_build_rewrite_prompt(post), temperature=0.4)["text"])
    except LLMServiceError:
        text = ""
    if (
        len(text) > MIN_REWRITE_LENGTH
        and not looks_like_placeholder(text, min_length=0)
        and text != post.strip()
    ):
        return text
    return balanced_discussion(topic)


# -----------------------------
# Analyse
# -----------------------------
def _build_analysis_prompt(post: str, techniques: List[str]) -> str:
    return (
        f"Post manipulateur : \"{post}\"\n"
        f"Le post utilise ces techniques de manipulation : {_labels(techniques)}.\n\n"
        "Tâche importante : produis une version neutre complète de ce post. Ce doit être une réécriture "
        "du même post (même sujet, même contenu), pas une phrase générale.\n\n"
        "Exemple :\n"
        "Post manipulateur : « Soit tu révises maintenant, soit tu échoues pour toujours ! »\n"
        "Version neutre : « Réviser régulièrement aide à réussir ses études. »\n\n"
        f"Réponds en {settings.CONTENT_LANGUAGE}, uniquement avec ce JSON :\n"
        "{\n"
        '  "explanation": "<explication courte des techniques utilisées>",\n'
        '  "neutralAlternative": "<version neutre complète du post>",\n'
        '  "manipulationLevel": 50,\n'
        '  "aiCommentary": "<réaction courte>"\n'
        "}"
    )


def manipulation_level(raw: Any, technique_count: int) -> int:
    """Niveau annoncé (50 par défaut) borné à 0..100, +10 par technique, plafonné à 100."""
    try:
        level = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        level = 0
    if not level:
        level = DEFAULT_MANIPULATION_LEVEL
    level = max(0, min(100, level))
    return min(100, level + technique_count * LEVEL_PER_TECHNIQUE)


def fallback_analysis(post: str, topic: str, correct_techniques: List[str]) -> Dict[str, Any]:
    correct = filter_techniques(correct_techniques)
    return {
        "correct_techniques": correct,
        "explanation": FALLBACK_EXPLANATION,
        "neutral_alternative": generate_neutral_alternative(post, topic),
        "manipulation_level": min(100, DEFAULT_MANIPULATION_LEVEL + LEVEL_PER_TECHNIQUE * len(correct)),
        "ai_commentary": FALLBACK_COMMENTARY,
    }


def analyze_post(post: str, topic: str, correct_techniques: List[str]) -> Dict[str, Any]:
    """
    Analyse le post (explication, version neutre, niveau, commentaire).
    Retourne un dict au format `AIAnalysis` ; ne lève jamais pour une erreur LLM.
    """
    correct = filter_techniques(correct_techniques)
    try:
        raw = extract_json(run_llm(_build_analysis_prompt(post, correct), temperature=0.5, json_mode=True)["text"])
    except (LLMServiceError, json.JSONDecodeError, ValueError):
        logger.warning("analysis fell back to canned text", extra={"topic": topic})
        return fallback_analysis(post, topic, correct)

    neutral = str(raw.get("neutralAlternative") or raw.get("neutral_alternative") or "").strip()
    if looks_like_placeholder(neutral):
        logger.info("neutral alternative looks like a placeholder, rewriting", extra={"topic": topic})
        neutral = generate_neutral_alternative(post, topic)

    return {
        "correct_techniques": correct,
        "explanation": str(raw.get("explanation") or ""),
        "neutral_alternative": neutral,
        "manipulation_level": manipulation_level(
            raw.get("manipulationLevel", raw.get("manipulation_level")), len(correct)
        ),
        "ai_commentary": str(raw.get("aiCommentary") or raw.get("ai_commentary") or ""),
    }


# -----------------------------
# Joueur IA
# -----------------------------
def _build_ai_guess_prompt(post: str, should_make_mistake: bool) -> str:
    instruction = (
        "Ajoute volontairement une technique fausse ou oublie une technique présente."
        if should_make_mistake
        else "Identifie correctement les techniques."
    )
    return (
        f"Post : \"{post}\"\n"
        f"{instruction}\n"
        f"Tags possibles : {', '.join(TECHNIQUES)}.\n"
        f"Réponds en {settings.CONTENT_LANGUAGE}, uniquement avec ce JSON : "
        '{"techniques": ["<tag>"], "analysis": "<réaction courte>"}'
    )


def random_ai_guess(should_make_mistake: bool, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    rng = rng or random.Random()
    count = 1 if should_make_mistake else 2
    return {
        "techniques": rng.sample(list(TECHNIQUES), count),
        "analysis": FALLBACK_AI_GUESS_MISTAKE if should_make_mistake else FALLBACK_AI_GUESS_CONFIDENT,
    }


def generate_ai_player_guess(
    post: str,
    topic: str,
    should_make_mistake: bool,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Proposition du joueur IA : {techniques, analysis}. Tirage aléatoire si le LLM échoue."""
    try:
        raw = extract_json(run_llm(_build_ai_guess_prompt(post, should_make_mistake), json_mode=True)["text"])
    except (LLMServiceError, json.JSONDecodeError, ValueError):
        logger.warning("AI player guess fell back to a random pick", extra={"topic": topic})
        return random_ai_guess(should_make_mistake, rng)

    techniques = filter_techniques(raw.get("techniques") or [])
    return {
        "techniques": techniques or [TECHNIQUES[0]],
        "analysis": str(raw.get("analysis") or FALLBACK_AI_REMARK),
    }

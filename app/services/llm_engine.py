"""
Service: llm_engine.py
- Centralise les appels vers le LLM (Ollama local ou API Gemini) pour produire posts,
  analyses et propositions du joueur IA.
- Aucune logique de jeu ici : les prompts et les textes de secours vivent dans
  `manipulation_ai.py`.

Fonctions principales:
- run_llm(prompt, temperature, json_mode): texte brut du modèle configuré (lève LLMServiceError).
- extract_json(text): isole et décode l'objet JSON d'une réponse (blocs ``` tolérés).
"""
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.config.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: Tuple[float, float] = (5.0, 45.0)  # connect, read

PROVIDER_OLLAMA = "ollama"
PROVIDER_GEMINI = "gemini"
PROVIDER_STUB = "stub"

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?|```\s*\n?", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class LLMServiceError(RuntimeError):
    """Erreur encapsulant un échec de communication avec le LLM."""


class LLMClient:
    """
    Client HTTP centralisé pour communiquer avec le LLM.
    - Configure retries avec backoff exponentiel.
    - Journalise chaque requête avec un identifiant de corrélation.
    - `provider` choisit le format de requête (Ollama /api/chat ou Gemini generateContent).
    """

    def __init__(
        self,
        provider: str,
        model: str,
        *,
        chat_endpoint: str = "",
        gemini_endpoint: str = "",
        api_key: str = "",
        session: Optional[requests.Session] = None,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
    ) -> None:
        self.provider = (provider or PROVIDER_STUB).lower()
        self.model = model
        self.chat_endpoint = chat_endpoint
        self.gemini_endpoint = gemini_endpoint.rstrip("/")
        self.api_key = api_key
        self.session = session or self._build_session()
        self.timeout = timeout

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"POST"}),
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def gemini_url(self) -> str:
        return f"{self.gemini_endpoint}/models/{self.model}:generateContent"

    def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        *,
        request_id: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            logger.debug(
                "LLM request start",
                extra={"llm_url": url, "llm_request_id": request_id},
            )
            response = self.session.post(url, json=payload, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.Timeout as exc:
            logger.warning(
                "LLM request timeout",
                extra={"llm_url": url, "llm_request_id": request_id},
            )
            raise LLMServiceError("LLM request timed out") from exc
        except requests.RequestException as exc:
            logger.error(
                "LLM request failed",
                exc_info=True,
                extra={"llm_url": url, "llm_request_id": request_id},
            )
            raise LLMServiceError("LLM request failed") from exc

        try:
            return response.json()
        except ValueError as exc:
            logger.error(
                "Invalid JSON payload from LLM",
                exc_info=True,
                extra={"llm_request_id": request_id},
            )
            raise LLMServiceError("Invalid JSON payload from LLM") from exc

    def _ollama(self, prompt: str, temperature: float, json_mode: bool, request_id: str) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "options": {"temperature": temperature, "top_p": 0.9},
            "stream": False,
            "keep_alive": "2m",
        }
        if json_mode:
            payload["format"] = "json"
        data = self._post(self.chat_endpoint, payload, request_id=request_id)
        # Ollama /api/chat peut renvoyer {"message":{"content":...}} ou {"response":...}
        return (data.get("message") or {}).get("content") or data.get("response") or ""

    def _gemini(self, prompt: str, temperature: float, json_mode: bool, request_id: str) -> str:
        if not self.api_key:
            raise LLMServiceError("Gemini API key is not configured")
        config: Dict[str, Any] = {"temperature": temperature}
        if json_mode:
            config["responseMimeType"] = "application/json"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }
        data = self._post(self.gemini_url(), payload, request_id=request_id, params={"key": self.api_key})
        candidates = data.get("candidates") or []
        if not candidates:
            raise LLMServiceError("Gemini returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))

    def complete(self, prompt: str, *, temperature: float = 0.8, json_mode: bool = False) -> str:
        """Retourne le texte généré (nettoyé des espaces). Lève LLMServiceError."""
        request_id = f"{self.provider}-{uuid4().hex}"
        if self.provider == PROVIDER_OLLAMA:
            text = self._ollama(prompt, temperature, json_mode, request_id)
        elif self.provider == PROVIDER_GEMINI:
            text = self._gemini(prompt, temperature, json_mode, request_id)
        else:
            raise LLMServiceError(f"LLM provider '{self.provider}' is disabled")

        text = (text or "").strip()
        if not text:
            logger.error("Empty response from LLM", extra={"llm_request_id": request_id})
            raise LLMServiceError("Empty response from LLM")
        logger.info(
            "LLM completion success",
            extra={"llm_request_id": request_id, "llm_provider": self.provider, "chars": len(text)},
        )
        return text


def build_client() -> LLMClient:
    return LLMClient(
        settings.LLM_PROVIDER,
        settings.LLM_MODEL,
        chat_endpoint=settings.LLM_ENDPOINT,
        gemini_endpoint=settings.GEMINI_ENDPOINT,
        api_key=settings.GEMINI_API_KEY,
    )


CLIENT = build_client()


def run_llm(prompt: str, *, temperature: float = 0.8, json_mode: bool = False) -> dict:
    """
    Appelle le LLM configuré et retourne un dict { 'text': ... }.
    Les erreurs remontent en LLMServiceError : l'appelant décide du texte de secours.
    """
    return {"text": CLIENT.complete(prompt, temperature=temperature, json_mode=json_mode)}


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def extract_json(text: str) -> Dict[str, Any]:
    """Décode le premier objet JSON d'une réponse LLM (ValueError si aucun)."""
    cleaned = strip_code_fences(text)
    match = _OBJECT_RE.search(cleaned)
    if match:
        cleaned = match.group(0)
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError("LLM JSON payload is not an object")
    return data

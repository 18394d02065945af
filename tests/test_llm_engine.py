from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests

from app.services import llm_engine
from app.services.llm_engine import LLMClient, LLMServiceError


@pytest.fixture
def client_stub(monkeypatch):
    stub = SimpleNamespace(complete=Mock())
    monkeypatch.setattr(llm_engine, "CLIENT", stub)
    return stub


def _response(payload):
    resp = Mock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = payload
    return resp


def test_run_llm_success(client_stub):
    client_stub.complete.return_value = "Un post très convaincant."

    result = llm_engine.run_llm("Écris un post.", json_mode=True)

    assert result == {"text": "Un post très convaincant."}
    client_stub.complete.assert_called_once_with("Écris un post.", temperature=0.8, json_mode=True)


def test_run_llm_raises_on_error(client_stub):
    client_stub.complete.side_effect = LLMServiceError("service down")

    with pytest.raises(LLMServiceError):
        llm_engine.run_llm("Écris un post.")


def test_stub_provider_always_fails():
    client = LLMClient("stub", "none", session=Mock())

    with pytest.raises(LLMServiceError):
        client.complete("bonjour")
    client.session.post.assert_not_called()


def test_ollama_payload_and_parsing():
    session = Mock()
    session.post.return_value = _response({"message": {"content": "  pong  "}})
    client = LLMClient("ollama", "llama3.1", chat_endpoint="http://localhost:11434/api/chat", session=session)

    assert client.complete("ping", temperature=0.2, json_mode=True) == "pong"

    url = session.post.call_args.args[0]
    payload = session.post.call_args.kwargs["json"]
    assert url == "http://localhost:11434/api/chat"
    assert payload["stream"] is False
    assert payload["format"] == "json"
    assert payload["options"]["temperature"] == 0.2
    assert payload["messages"] == [{"role": "user", "content": "ping"}]


def test_gemini_payload_and_parsing():
    session = Mock()
    session.post.return_value = _response(
        {"candidates": [{"content": {"parts": [{"text": "Bon"}, {"text": "jour"}]}}]}
    )
    client = LLMClient(
        "gemini",
        "gemini-2.0-flash",
        gemini_endpoint="https://generativelanguage.googleapis.com/v1beta/",
        api_key="k",
        session=session,
    )

    assert client.complete("salut") == "Bonjour"
    assert session.post.call_args.args[0] == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
    )
    assert session.post.call_args.kwargs["params"] == {"key": "k"}


def test_gemini_without_key_fails_before_request():
    session = Mock()
    client = LLMClient("gemini", "gemini-2.0-flash", gemini_endpoint="https://x", session=session)

    with pytest.raises(LLMServiceError):
        client.complete("salut")
    session.post.assert_not_called()


def test_timeout_is_wrapped():
    session = Mock()
    session.post.side_effect = requests.Timeout("slow")
    client = LLMClient("ollama", "llama3.1", chat_endpoint="http://localhost:11434/api/chat", session=session)

    with pytest.raises(LLMServiceError):
        client.complete("ping")


def test_empty_response_is_an_error():
    session = Mock()
    session.post.return_value = _response({"message": {"content": "   "}})
    client = LLMClient("ollama", "llama3.1", chat_endpoint="http://localhost:11434/api/chat", session=session)

    with pytest.raises(LLMServiceError):
        client.complete("ping")


@pytest.mark.parametrize(
    "text",
    [
        '{"a": 1}',
        '```json\n{"a": 1}\n```',
        'Voici la réponse : {"a": 1} Merci !',
    ],
)
def test_extract_json(text):
    assert llm_engine.extract_json(text) == {"a": 1}


def test_extract_json_rejects_garbage():
    with pytest.raises(ValueError):
        llm_engine.extract_json("pas de json ici")

import dataclasses
import json

import httpx
import pytest

from jobwalk.core.config import settings
from jobwalk.core.errors import NotFound, UpstreamFailure, UpstreamTimeout
from jobwalk.services import email as email_service
from jobwalk.services import embeddings, stt
from jobwalk.services.llm.ollama_client import OllamaClient

_RealClient = httpx.Client


def _mock_transport(monkeypatch, handler):
    """Route every httpx.Client created by the code under test through handler."""
    seen = []

    def wrapped(request):
        seen.append(request)
        return handler(request)

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(wrapped)
        return _RealClient(*args, **kwargs)

    monkeypatch.setattr(httpx, "Client", factory)
    return seen


def test_ollama_chat(monkeypatch):
    seen = _mock_transport(
        monkeypatch,
        lambda req: httpx.Response(200, json={"message": {"role": "assistant", "content": "  {\"ok\": 1}  "}}),
    )
    out = OllamaClient("http://ollama:11434/").chat("llama3.1:8b", [{"role": "user", "content": "hi"}])
    assert out == '{"ok": 1}'

    body = json.loads(seen[0].content)
    assert seen[0].url.path == "/api/chat"
    assert body["stream"] is False
    assert body["options"]["num_predict"] == 2048


def test_ollama_timeout(monkeypatch):
    def slow(req):
        raise httpx.ReadTimeout("slow", request=req)

    _mock_transport(monkeypatch, slow)
    with pytest.raises(UpstreamTimeout):
        OllamaClient("http://ollama:11434").chat("m", [])


def test_ollama_http_error(monkeypatch):
    _mock_transport(monkeypatch, lambda req: httpx.Response(500, text="model not loaded"))
    with pytest.raises(UpstreamFailure) as exc:
        OllamaClient("http://ollama:11434").chat("m", [])
    assert "500" in str(exc.value)
    assert not isinstance(exc.value, UpstreamTimeout)


def test_embedding_dimension_is_enforced(monkeypatch):
    _mock_transport(monkeypatch, lambda req: httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]}))
    with pytest.raises(UpstreamFailure):
        embeddings.generate_embedding("two toilets in master bath")


def test_embedding_ok(monkeypatch):
    seen = _mock_transport(monkeypatch, lambda req: httpx.Response(200, json={"embedding": [0.5] * settings.embed_dim}))
    vec = embeddings.generate_embedding("two\x00 toilets")
    assert len(vec) == settings.embed_dim
    assert json.loads(seen[0].content)["prompt"] == "two  toilets"


def test_embedding_refuses_empty_text():
    with pytest.raises(UpstreamFailure):
        embeddings.generate_embedding("  \x01 ")


def test_transcribe_missing_file():
    with pytest.raises(NotFound):
        stt.transcribe_audio("/nope/walk.m4a")


def test_transcribe_via_server(monkeypatch, tmp_path):
    audio = tmp_path / "walk.m4a"
    audio.write_bytes(b"\x00\x01fake")
    payload = {
        "text": " Two toilets in master bath. ",
        "language": "en",
        "duration": 0,
        "segments": [
            {"text": "Two toilets", "start": 0.0, "end": 1.5},
            {"text": " ", "start": 1.5, "end": 1.6},
            {"text": "in master bath.", "start": 1.6, "end": 3.0},
        ],
    }
    seen = _mock_transport(monkeypatch, lambda req: httpx.Response(200, json=payload))

    out = stt.transcribe_audio(str(audio))
    assert seen[0].url.path == "/v1/audio/transcriptions"
    assert out.text == "Two toilets in master bath."
    assert len(out.segments) == 2
    assert out.duration_secs == pytest.approx(3.0)


def test_email_disabled_returns_false(monkeypatch):
    seen = _mock_transport(monkeypatch, lambda req: httpx.Response(200))
    assert email_service.send_summary_email(session_id=1, job_label=None, summary_text="x") is False
    assert seen == []


def test_email_delivery(monkeypatch):
    configured = dataclasses.replace(settings, email_api_key="re_123", email_from="max@example.com", email_to="a@example.com, b@example.com")
    monkeypatch.setattr(email_service, "settings", configured)
    seen = _mock_transport(monkeypatch, lambda req: httpx.Response(200, json={"id": "e1"}))

    report = {"items": [{"description": "3 toilets on plan", "severity": "high", "plan_says": "3"}]}
    assert email_service.send_discrepancy_alert(session_id=4, job_label="Oak Creek — Lot 42", report=report) is True

    body = json.loads(seen[0].content)
    assert body["to"] == ["a@example.com", "b@example.com"]
    assert body["subject"] == "1 plan discrepancy: Oak Creek — Lot 42"
    assert "[HIGH] 3 toilets on plan" in body["text"]
    assert seen[0].headers["Authorization"] == "Bearer re_123"


def test_email_failure_is_reported_not_raised(monkeypatch):
    configured = dataclasses.replace(settings, email_api_key="re_123", email_from="max@example.com", email_to="a@example.com")
    monkeypatch.setattr(email_service, "settings", configured)
    _mock_transport(monkeypatch, lambda req: httpx.Response(422, json={"message": "bad from"}))
    assert email_service.send_digest_email("digest", {"walks": 2}) is False

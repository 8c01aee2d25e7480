from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from jobwalk.core.config import settings
from jobwalk.core.errors import NotFound, UpstreamFailure, UpstreamTimeout
from jobwalk.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class STTResult:
    text: str
    language: str
    duration_secs: float
    segments: list[dict[str, Any]]  # each: {text, start, duration}


_MODEL = None


def _get_model():
    """
    Keep a single faster-whisper model instance per process.
    """
    global _MODEL
    if _MODEL is not None:
        return _MODEL

    from faster_whisper import WhisperModel  # type: ignore

    device = os.getenv("WHISPER_DEVICE", "cpu")
    compute_type = os.getenv("WHISPER_COMPUTE", "int8")  # int8 is fast on CPU

    _MODEL = WhisperModel(settings.whisper_model, device=device, compute_type=compute_type)
    return _MODEL


def _transcribe_local(audio_path: str, language: str | None) -> STTResult:
    model = _get_model()

    segments_iter, info = model.transcribe(
        audio_path,
        language=language,
        vad_filter=True,
        beam_size=5,
    )

    segs: list[dict[str, Any]] = []
    for s in segments_iter:
        txt = (s.text or "").strip()
        if not txt:
            continue
        start = float(s.start)
        end = float(s.end)
        segs.append({"text": txt, "start": start, "duration": float(max(0.0, end - start))})

    used_lang = (info.language or "").strip() if info else ""
    duration = float(getattr(info, "duration", 0.0) or 0.0)
    if not duration and segs:
        duration = segs[-1]["start"] + segs[-1]["duration"]

    return STTResult(
        text=" ".join(s["text"] for s in segs).strip(),
        language=used_lang or language or "unknown",
        duration_secs=duration,
        segments=segs,
    )


def _transcribe_server(audio_path: str, language: str | None) -> STTResult:
    """
    OpenAI-compatible whisper server: POST /v1/audio/transcriptions (verbose_json).
    """
    url = settings.whisper_url.rstrip("/") + "/v1/audio/transcriptions"
    data = {"model": settings.whisper_model, "response_format": "verbose_json"}
    if language:
        data["language"] = language

    timeout = httpx.Timeout(settings.whisper_timeout_sec, connect=10.0)
    path = Path(audio_path)
    try:
        with path.open("rb") as fh, httpx.Client(timeout=timeout) as client:
            r = client.post(url, data=data, files={"file": (path.name, fh, "application/octet-stream")})
            r.raise_for_status()
            body = r.json()
    except httpx.TimeoutException as e:
        raise UpstreamTimeout("whisper", f"transcription timed out after {settings.whisper_timeout_sec}s") from e
    except httpx.HTTPStatusError as e:
        raise UpstreamFailure(
            "whisper", f"transcription failed ({e.response.status_code}): {e.response.text[:200]}"
        ) from e
    except (httpx.HTTPError, ValueError) as e:
        raise UpstreamFailure("whisper", f"transcription failed: {e}") from e

    segs: list[dict[str, Any]] = []
    for s in body.get("segments") or []:
        txt = str(s.get("text") or "").strip()
        if not txt:
            continue
        start = float(s.get("start") or 0.0)
        end = float(s.get("end") or start)
        segs.append({"text": txt, "start": start, "duration": float(max(0.0, end - start))})

    duration = float(body.get("duration") or 0.0)
    if not duration and segs:
        duration = segs[-1]["start"] + segs[-1]["duration"]

    return STTResult(
        text=str(body.get("text") or "").strip(),
        language=str(body.get("language") or language or "unknown"),
        duration_secs=duration,
        segments=segs,
    )


def transcribe_audio(audio_path: str, *, language: str | None = None) -> STTResult:
    """
    Transcribe a recording into {text, segments, duration}.

    Raises NotFound for a missing file, UpstreamTimeout / UpstreamFailure for
    service problems.
    """
    if not Path(audio_path).exists():
        raise NotFound(f"Audio file not found: {audio_path}")

    logger.info(f"Transcribing {audio_path} via {settings.stt_provider}")
    if settings.stt_provider == "faster_whisper":
        return _transcribe_local(audio_path, language)
    return _transcribe_server(audio_path, language)

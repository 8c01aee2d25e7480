from __future__ import annotations

import os
from typing import Dict, List, Optional


def _build_openai_client(timeout_sec: float):
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OPENAI_API_KEY is missing")

    max_retries = int(os.getenv("OPENAI_MAX_RETRIES", "2"))

    # OpenAI SDK v1+
    from openai import OpenAI  # type: ignore

    return OpenAI(api_key=api_key, timeout=timeout_sec, max_retries=max_retries)


def openai_chat(
    model: str,
    messages: List[Dict[str, str]],
    *,
    temperature: float = 0.3,
    max_tokens: int = 2048,
    timeout_s: Optional[float] = None,
) -> str:
    import openai  # type: ignore

    from jobwalk.core.errors import UpstreamFailure, UpstreamTimeout

    try:
        client = _build_openai_client(timeout_s or 60.0)
    except ValueError as e:
        raise UpstreamFailure("openai", str(e)) from e

    try:
        resp = client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except openai.APITimeoutError as e:
        raise UpstreamTimeout("openai", "chat completion timed out") from e
    except openai.OpenAIError as e:
        raise UpstreamFailure("openai", f"chat completion failed: {e}") from e

    return (resp.choices[0].message.content or "").strip()

from __future__ import annotations

from typing import Dict, List, Optional

from jobwalk.core.config import settings
from jobwalk.services.llm.ollama_client import OllamaClient
from jobwalk.services.llm.openai_client import openai_chat


def chat_completion(
    messages: List[Dict[str, str]],
    *,
    temperature: float = 0.3,
    max_tokens: int = 2048,
    timeout_s: Optional[float] = None,
) -> str:
    """
    Send role-tagged messages to the configured text-generation provider.

    Returns the raw completion string. Raises UpstreamTimeout / UpstreamFailure.
    """
    timeout = timeout_s or settings.ollama_timeout_sec
    if settings.llm_provider == "openai":
        return openai_chat(
            settings.openai_model,
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_s=timeout,
        )

    client = OllamaClient(settings.ollama_base_url, timeout_s=timeout)
    return client.chat(
        settings.ollama_model,
        messages,
        temperature=temperature,
        num_predict=max_tokens,
        timeout_s=timeout,
    )

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from jobwalk.core.errors import UpstreamFailure, UpstreamTimeout


class OllamaClient:
    """
    Minimal Ollama client.

    Uses /api/chat for generation and /api/embeddings for vectors, non-streaming.
    Every call is bounded by an explicit timeout; timeouts surface as
    UpstreamTimeout, everything else as UpstreamFailure.
    """

    def __init__(self, base_url: str, timeout_s: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def _post(self, path: str, payload: Dict[str, Any], timeout_s: Optional[float]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        timeout = httpx.Timeout(timeout_s or self.timeout_s, connect=10.0)
        try:
            with httpx.Client(timeout=timeout) as client:
                r = client.post(url, json=payload)
                r.raise_for_status()
                return r.json()
        except httpx.TimeoutException as e:
            raise UpstreamTimeout("ollama", f"{path} timed out after {timeout_s or self.timeout_s}s") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamFailure(
                "ollama", f"{path} failed ({e.response.status_code}): {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamFailure("ollama", f"{path} failed: {e}") from e

    def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        *,
        temperature: float = 0.3,
        num_predict: int = 2048,
        timeout_s: Optional[float] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": num_predict,
            },
        }
        data = self._post("/api/chat", payload, timeout_s)
        # Ollama returns {"message": {"role": "assistant", "content": "..."}, ...}
        return ((data.get("message") or {}).get("content") or "").strip()

    def embed(self, model: str, text: str, *, timeout_s: Optional[float] = None) -> List[float]:
        data = self._post("/api/embeddings", {"model": model, "prompt": text}, timeout_s)
        vec = data.get("embedding")
        if not isinstance(vec, list) or not vec:
            raise UpstreamFailure("ollama", "embedding response carried no vector")
        return [float(x) for x in vec]

from __future__ import annotations

import re
from functools import lru_cache
from typing import List

from jobwalk.core.config import settings
from jobwalk.core.errors import UpstreamFailure
from jobwalk.services.llm.ollama_client import OllamaClient

# control characters other than tab/newline confuse some embedding servers
_CTRL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_for_embedding(text: str) -> str:
    s = _CTRL_RE.sub(" ", text or "").strip()
    return s[: settings.embed_max_chars]


@lru_cache(maxsize=2)
def _load_local_model(model_name: str):
    """
    Load and cache a SentenceTransformer model (CPU).
    all-mpnet-base-v2 => 768 dims
    """
    from sentence_transformers import SentenceTransformer  # type: ignore

    return SentenceTransformer(model_name, device="cpu")


def _embed_local(text: str) -> List[float]:
    import numpy as np

    model = _load_local_model(settings.local_embed_model)
    vec = model.encode([text], show_progress_bar=False, convert_to_numpy=True, normalize_embeddings=True)
    return np.asarray(vec, dtype=np.float32)[0].tolist()


def generate_embedding(text: str) -> List[float]:
    """
    Embed one string -> vector of exactly settings.embed_dim floats.

    Input is sanitized and capped before the call. Raises UpstreamTimeout /
    UpstreamFailure; a vector of the wrong dimension is an UpstreamFailure.
    """
    clean = sanitize_for_embedding(text)
    if not clean:
        raise UpstreamFailure("embeddings", "refusing to embed empty text")

    if settings.embed_provider == "local":
        vec = _embed_local(clean)
    else:
        client = OllamaClient(settings.ollama_base_url, timeout_s=settings.ollama_embed_timeout_sec)
        vec = client.embed(settings.ollama_embed_model, clean)

    if len(vec) != settings.embed_dim:
        raise UpstreamFailure(
            "embeddings", f"Unexpected embedding dim={len(vec)} (expected {settings.embed_dim})"
        )
    return vec

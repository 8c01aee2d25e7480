from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from jobwalk.core.errors import UpstreamError
from jobwalk.core.logging import get_logger, log_with_context
from jobwalk.models.chunk import Chunk
from jobwalk.services.embeddings import generate_embedding

logger = get_logger(__name__)

DEFAULT_CHUNK_WORDS = 500
DEFAULT_OVERLAP_WORDS = 100
MIN_CHUNK_CHARS = 20


@dataclass
class TextChunk:
    content: str
    start_word: int
    end_word: int  # exclusive


@dataclass
class IndexStats:
    stored: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.stored + self.failed


def chunk_text(
    text: str,
    *,
    chunk_words: int = DEFAULT_CHUNK_WORDS,
    overlap_words: int = DEFAULT_OVERLAP_WORDS,
) -> list[TextChunk]:
    """
    Split text into overlapping word windows.

    Window i starts at i * (chunk_words - overlap_words). The last window ends at
    the final word; windows of MIN_CHUNK_CHARS or fewer characters are dropped.
    """
    if chunk_words <= 0 or overlap_words < 0 or overlap_words >= chunk_words:
        raise ValueError("chunk_words must be > overlap_words >= 0")

    words = (text or "").split()
    step = chunk_words - overlap_words
    chunks: list[TextChunk] = []

    i = 0
    while i < len(words):
        end = min(i + chunk_words, len(words))
        content = " ".join(words[i:end])
        if len(content.strip()) > MIN_CHUNK_CHARS:
            chunks.append(TextChunk(content=content, start_word=i, end_word=end))
        if end >= len(words):
            break
        i += step
    return chunks


def _store_chunk(
    db: Session,
    *,
    session_id: int,
    job_id: Optional[int],
    chunk_type: str,
    content: str,
    is_flagged: bool = False,
) -> Chunk:
    vec = generate_embedding(content)
    row = Chunk(
        session_id=session_id,
        job_id=job_id,
        chunk_type=chunk_type,
        content=content,
        is_flagged=is_flagged,
        embedding=vec,
    )
    db.add(row)
    db.flush()
    return row


def embed_session(
    db: Session,
    *,
    session_id: int,
    job_id: Optional[int],
    transcript: str,
    flag_positions: Optional[list[int]] = None,
) -> IndexStats:
    """
    Chunk + embed a transcript. Each chunk is embedded independently; a failed
    chunk is logged and skipped and the caller gets partial counts back.
    """
    stats = IndexStats()
    flags = flag_positions or []

    for c in chunk_text(transcript):
        flagged = any(c.start_word <= pos < c.end_word for pos in flags)
        try:
            _store_chunk(
                db,
                session_id=session_id,
                job_id=job_id,
                chunk_type="transcript",
                content=c.content,
                is_flagged=flagged,
            )
            stats.stored += 1
        except UpstreamError as e:
            stats.failed += 1
            log_with_context(
                logger,
                logging.WARNING,
                "Chunk embedding failed, skipping",
                session_id=session_id,
                start_word=c.start_word,
                error=str(e),
            )

    db.commit()
    log_with_context(
        logger,
        logging.INFO,
        "Transcript indexed",
        session_id=session_id,
        stored=stats.stored,
        failed=stats.failed,
    )
    return stats


def _embed_single(db: Session, *, session_id: int, job_id: Optional[int], chunk_type: str, text: str) -> bool:
    if len((text or "").strip()) <= MIN_CHUNK_CHARS:
        return False
    try:
        _store_chunk(db, session_id=session_id, job_id=job_id, chunk_type=chunk_type, content=text.strip())
        db.commit()
        return True
    except UpstreamError as e:
        log_with_context(
            logger,
            logging.WARNING,
            f"{chunk_type} embedding failed",
            session_id=session_id,
            error=str(e),
        )
        return False


def embed_summary(db: Session, *, session_id: int, job_id: Optional[int], summary_text: str) -> bool:
    return _embed_single(db, session_id=session_id, job_id=job_id, chunk_type="summary", text=summary_text)


def embed_plan_analysis(db: Session, *, session_id: int, job_id: Optional[int], analysis_text: str) -> bool:
    return _embed_single(
        db, session_id=session_id, job_id=job_id, chunk_type="plan_analysis", text=analysis_text
    )

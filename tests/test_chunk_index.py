import pytest

from jobwalk.core.errors import UpstreamFailure
from jobwalk.models.chunk import Chunk
from jobwalk.models.field_session import FieldSession
from jobwalk.services import chunk_index
from jobwalk.services.chunk_index import MIN_CHUNK_CHARS, chunk_text


def _words(n: int) -> str:
    return " ".join(f"word{i}" for i in range(n))


def test_chunk_windows_overlap():
    chunks = chunk_text(_words(1200), chunk_words=500, overlap_words=100)
    assert [(c.start_word, c.end_word) for c in chunks] == [(0, 500), (400, 900), (800, 1200)]


def test_chunks_cover_every_word():
    text = _words(1234)
    chunks = chunk_text(text, chunk_words=300, overlap_words=50)
    seen = set()
    for c in chunks:
        seen.update(c.content.split())
    assert seen == set(text.split())
    assert chunks[-1].end_word == 1234


def test_short_windows_are_dropped():
    assert chunk_text("too short") == []
    for c in chunk_text(_words(30), chunk_words=10, overlap_words=2):
        assert len(c.content) > MIN_CHUNK_CHARS


def test_invalid_window_config():
    with pytest.raises(ValueError):
        chunk_text(_words(10), chunk_words=10, overlap_words=10)


def test_embed_session_skips_failed_chunks(db, monkeypatch):
    fs = FieldSession(audio_path="/tmp/a.m4a", status="summarizing")
    db.add(fs)
    db.commit()

    calls = {"n": 0}

    def fake_embedding(text):
        calls["n"] += 1
        if calls["n"] == 2:
            raise UpstreamFailure("embeddings", "boom")
        return [0.0] * 768

    monkeypatch.setattr(chunk_index, "generate_embedding", fake_embedding)

    stats = chunk_index.embed_session(
        db,
        session_id=fs.id,
        job_id=None,
        transcript=_words(1200),
        flag_positions=[450],
    )
    assert stats.stored == 2
    assert stats.failed == 1

    rows = db.query(Chunk).filter(Chunk.session_id == fs.id).order_by(Chunk.id).all()
    assert len(rows) == 2
    # word 450 lives in the first window only; the second (400-900) failed
    assert rows[0].is_flagged is True
    assert rows[1].is_flagged is False


def test_embed_summary_swallows_upstream_errors(db, monkeypatch):
    fs = FieldSession(audio_path="/tmp/a.m4a", status="summarizing")
    db.add(fs)
    db.commit()

    def failing(text):
        raise UpstreamFailure("embeddings", "down")

    monkeypatch.setattr(chunk_index, "generate_embedding", failing)
    ok = chunk_index.embed_summary(db, session_id=fs.id, job_id=None, summary_text="JOB WALK SUMMARY with enough text")
    assert ok is False
    assert db.query(Chunk).count() == 0

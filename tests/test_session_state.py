import pytest

from jobwalk.core.errors import InvalidTransition, NotFound
from jobwalk.models.field_session import FieldSession, SessionStatus
from jobwalk.services.pipeline import create_session, reset_session_for_retry, retryable_session_ids


def test_forward_path():
    fs = FieldSession(audio_path="/tmp/a.m4a", status=SessionStatus.UPLOADED.value)
    fs.transition_to(SessionStatus.TRANSCRIBING)
    fs.transition_to(SessionStatus.SUMMARIZING)
    fs.transition_to(SessionStatus.COMPLETE)
    assert fs.status == "complete"


def test_no_backwards_or_skipping():
    fs = FieldSession(audio_path="/tmp/a.m4a", status=SessionStatus.TRANSCRIBING.value)
    with pytest.raises(InvalidTransition):
        fs.transition_to(SessionStatus.UPLOADED)
    with pytest.raises(InvalidTransition):
        fs.transition_to(SessionStatus.COMPLETE)

    done = FieldSession(audio_path="/tmp/a.m4a", status=SessionStatus.COMPLETE.value)
    with pytest.raises(InvalidTransition):
        done.transition_to(SessionStatus.ERROR)


def test_error_records_message():
    fs = FieldSession(audio_path="/tmp/a.m4a", status=SessionStatus.SUMMARIZING.value)
    fs.transition_to(SessionStatus.ERROR, error_message="ollama: timed out")
    assert fs.status == "error"
    assert fs.error_message == "ollama: timed out"


def test_retry_reset_only_from_error(db):
    fs = create_session(db, audio_path="/tmp/a.m4a")
    with pytest.raises(InvalidTransition):
        reset_session_for_retry(db, fs.id)

    fs.transition_to(SessionStatus.ERROR, error_message="boom")
    db.commit()

    reset = reset_session_for_retry(db, fs.id)
    assert reset.status == "uploaded"
    assert reset.error_message is None


def test_retry_missing_session(db):
    with pytest.raises(NotFound):
        reset_session_for_retry(db, 999)


def test_retryable_sessions_are_recent_errors(db):
    ok = create_session(db, audio_path="/tmp/a.m4a")
    bad = create_session(db, audio_path="/tmp/b.m4a")
    bad.transition_to(SessionStatus.ERROR, error_message="x")
    db.commit()

    assert retryable_session_ids(db, limit=3) == [bad.id]
    assert ok.id not in retryable_session_ids(db, limit=3)

from fastapi.testclient import TestClient

from jobwalk.api import sessions as sessions_api
from jobwalk.db.session import SessionLocal
from jobwalk.main import app
from jobwalk.models.action_item import ActionItem
from jobwalk.models.field_session import FieldSession, SessionStatus

client = TestClient(app)


def test_create_session_queues_processing(monkeypatch):
    started = []
    monkeypatch.setattr(sessions_api, "process_session", lambda session_id: started.append(session_id))

    r = client.post("/sessions", json={"audio_path": "/recordings/walk.m4a", "voice_tag": "Oak Creek lot 42"})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["status"] == "uploaded"
    assert started == [body["session_id"]]

    g = client.get(f"/sessions/{body['session_id']}")
    assert g.status_code == 200
    session = g.json()["session"]
    assert session["voice_tag"] == "Oak Creek lot 42"
    assert session["status"] == "uploaded"


def test_create_session_unknown_job():
    r = client.post("/sessions", json={"audio_path": "/recordings/walk.m4a", "job_id": 77})
    assert r.status_code == 404


def test_create_session_blank_audio():
    r = client.post("/sessions", json={"audio_path": "  "})
    assert r.status_code == 400


def test_background_failure_does_not_break_request(monkeypatch):
    def boom(session_id):
        raise RuntimeError("whisper exploded")

    monkeypatch.setattr(sessions_api, "process_session", boom)
    r = client.post("/sessions", json={"audio_path": "/recordings/walk.m4a"})
    assert r.status_code == 200


def test_get_missing_session():
    assert client.get("/sessions/12345").status_code == 404


def _session_in(status: str) -> int:
    db = SessionLocal()
    try:
        fs = FieldSession(audio_path="/recordings/walk.m4a", status=status, error_message="boom" if status == "error" else None)
        db.add(fs)
        db.commit()
        return fs.id
    finally:
        db.close()


def test_retry_resets_and_requeues(monkeypatch):
    started = []
    monkeypatch.setattr(sessions_api, "process_session", lambda session_id: started.append(session_id))
    session_id = _session_in(SessionStatus.ERROR.value)

    r = client.post(f"/sessions/{session_id}/retry")
    assert r.status_code == 200
    assert r.json()["status"] == "uploaded"
    assert started == [session_id]


def test_retry_rejects_non_error_session(monkeypatch):
    monkeypatch.setattr(sessions_api, "process_session", lambda session_id: None)
    session_id = _session_in(SessionStatus.COMPLETE.value)
    r = client.post(f"/sessions/{session_id}/retry")
    assert r.status_code == 409


def test_retry_missing_session():
    assert client.post("/sessions/999/retry").status_code == 404


def test_toggle_action_item():
    session_id = _session_in(SessionStatus.COMPLETE.value)
    db = SessionLocal()
    try:
        item = ActionItem(session_id=session_id, description="Order second toilet", priority="high")
        db.add(item)
        db.commit()
        item_id = item.id
    finally:
        db.close()

    r = client.patch(f"/actions/{item_id}", json={"completed": True})
    assert r.status_code == 200
    assert r.json()["completed"] is True
    assert r.json()["completed_at"] is not None

    r = client.patch(f"/actions/{item_id}", json={"completed": False})
    assert r.json()["completed"] is False
    assert r.json()["completed_at"] is None

    assert client.patch("/actions/999", json={"completed": True}).status_code == 404

from fastapi.testclient import TestClient

from jobwalk.api import jobs as jobs_api
from jobwalk.db.session import SessionLocal
from jobwalk.main import app
from jobwalk.models.action_item import ActionItem
from jobwalk.models.field_session import FieldSession
from jobwalk.models.job import Job

client = TestClient(app)


def _seed() -> int:
    db = SessionLocal()
    try:
        job = Job(builder_name="Lennar", subdivision="Oak Creek", lot_number="42", phase="Rough-In")
        db.add(job)
        db.add(Job(builder_name="Pulte", subdivision="Willow Bend", lot_number="3"))
        db.commit()
        fs = FieldSession(job_id=job.id, audio_path="/recordings/walk.m4a", status="complete")
        db.add(fs)
        db.commit()
        db.add(ActionItem(session_id=fs.id, job_id=job.id, description="Move tub drain"))
        db.add(ActionItem(session_id=fs.id, job_id=job.id, description="Done already", completed=True))
        db.commit()
        return job.id
    finally:
        db.close()


def test_list_and_filter_jobs():
    _seed()
    r = client.get("/jobs")
    assert r.status_code == 200
    assert r.json()["total"] == 2

    r = client.get("/jobs", params={"q": "oak"})
    items = r.json()["items"]
    assert [j["label"] for j in items] == ["Lennar — Oak Creek — Lot 42"]


def test_job_detail():
    job_id = _seed()
    r = client.get(f"/jobs/{job_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["job"]["subdivision"] == "Oak Creek"
    assert len(body["sessions"]) == 1
    assert [a["description"] for a in body["open_action_items"]] == ["Move tub drain"]


def test_job_missing():
    assert client.get("/jobs/999").status_code == 404
    assert client.get("/jobs/999/intel").status_code == 404


def test_job_intel(monkeypatch):
    job_id = _seed()
    seen = {}

    def fake_intel(db, jid, force_refresh=False):
        seen["args"] = (jid, force_refresh)
        return "Lot 42 is at rough-in."

    monkeypatch.setattr(jobs_api, "get_job_intelligence", fake_intel)
    r = client.get(f"/jobs/{job_id}/intel", params={"refresh": "true"})
    assert r.status_code == 200
    assert r.json()["intel"] == "Lot 42 is at rough-in."
    assert seen["args"] == (job_id, True)

import json

import pytest

from jobwalk.core.errors import NotFound, UpstreamFailure
from jobwalk.models.attachment import Attachment
from jobwalk.models.field_session import FieldSession
from jobwalk.services import plans
from jobwalk.services.plans import analyze_plan, cross_reference, plan_has_error


def _attachment(db, **kwargs) -> Attachment:
    fs = FieldSession(audio_path="/a.m4a", status="uploaded")
    db.add(fs)
    db.commit()
    att = Attachment(session_id=fs.id, file_name="plans.pdf", file_path="/plans.pdf", **kwargs)
    db.add(att)
    db.commit()
    return att


def test_insufficient_text_skips_generation(db, monkeypatch):
    monkeypatch.setattr(plans, "chat_completion", lambda *a, **k: pytest.fail("should not be called"))
    att = _attachment(db, file_type="pdf", extracted_text="A-101")

    out = analyze_plan(db, att.id)
    assert out["error"] == "Insufficient text extracted"
    assert json.loads(att.analysis_json)["error"] == "Insufficient text extracted"


def test_analysis_stored_and_indexed(db, monkeypatch):
    monkeypatch.setattr(
        plans,
        "chat_completion",
        lambda *a, **k: '```json\n{"fixtures": [{"type": "toilet", "count": 3, "locations": ["master bath"]}], "rooms": [{"name": "master bath"}]}\n```',
    )
    indexed = []
    monkeypatch.setattr(plans, "embed_plan_analysis", lambda db, **kw: indexed.append(kw) or True)
    att = _attachment(db, file_type="pdf", extracted_text="PLUMBING PLAN SHEET P-1 master bath WC-1 WC-2 WC-3")

    out = analyze_plan(db, att.id)
    assert out["fixtures"][0]["count"] == 3
    assert plan_has_error(out) is False
    assert len(indexed) == 1
    assert "Plan Analysis for plans.pdf" in indexed[0]["analysis_text"]


def test_generation_failure_stored_as_error(db, monkeypatch):
    def down(*a, **k):
        raise UpstreamFailure("ollama", "connection refused")

    monkeypatch.setattr(plans, "chat_completion", down)
    monkeypatch.setattr(plans, "embed_plan_analysis", lambda db, **kw: pytest.fail("should not index errors"))
    att = _attachment(db, file_type="pdf", extracted_text="PLUMBING PLAN SHEET P-1 with plenty of text")

    out = analyze_plan(db, att.id)
    assert plan_has_error(out)


def test_image_attachment_needs_review(db):
    att = _attachment(db, file_type="image")
    out = analyze_plan(db, att.id)
    assert out == {"type": "image", "status": "stored", "needs_review": True}


def test_missing_attachment(db):
    with pytest.raises(NotFound):
        analyze_plan(db, 404)


def test_cross_reference_skips_unusable_inputs(monkeypatch):
    monkeypatch.setattr(plans, "chat_completion", lambda *a, **k: pytest.fail("should not be called"))
    assert cross_reference({"error": "Insufficient text extracted"}, {"phase": "Trim"}) is None
    assert cross_reference({"fixtures": []}, {"parse_error": True, "raw_response": "?"}) is None
    assert cross_reference(None, {"phase": "Trim"}) is None


def test_cross_reference_report(monkeypatch):
    monkeypatch.setattr(
        plans,
        "chat_completion",
        lambda *a, **k: '{"has_discrepancies": true, "items": [{"type": "fixture_count", "description": "Plan has 3 WCs", "severity": "critical"}], "match_score": 0.6}',
    )
    report = cross_reference({"fixtures": [{"type": "toilet", "count": 3}]}, {"key_decisions": ["two toilets"]})
    assert report is not None
    assert report.has_urgent()
    assert report.items[0].severity == "critical"


def test_cross_reference_unparseable_is_none(monkeypatch):
    monkeypatch.setattr(plans, "chat_completion", lambda *a, **k: "no idea")
    assert cross_reference({"fixtures": []}, {"phase": "Trim"}) is None

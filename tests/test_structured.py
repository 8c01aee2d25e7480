from jobwalk.services.llm.schemas import DiscrepancyReport, SessionSummary
from jobwalk.services.llm.structured import Ok, ParseError, parse_structured, strip_fences


def test_plain_json():
    r = parse_structured('{"subdivision": "Oak Creek", "lot_number": 42}', SessionSummary)
    assert isinstance(r, Ok)
    assert r.data.subdivision == "Oak Creek"
    assert r.data.lot_number == "42"


def test_fenced_json_with_chatter():
    raw = 'Sure! Here you go:\n```json\n{"phase": "Rough-In", "flags": null}\n```\nLet me know.'
    r = parse_structured(raw, SessionSummary)
    assert isinstance(r, Ok)
    assert r.data.phase == "Rough-In"
    assert r.data.flags == []


def test_unknown_phase_becomes_other():
    r = parse_structured('{"phase": "framing"}', SessionSummary)
    assert isinstance(r, Ok)
    assert r.data.phase == "Other"


def test_non_json_is_parse_error():
    r = parse_structured("I could not find anything useful.", SessionSummary)
    assert isinstance(r, ParseError)
    assert r.to_payload() == {"raw_response": "I could not find anything useful.", "parse_error": True}


def test_schema_mismatch_is_parse_error():
    r = parse_structured('{"items": [{"description": ""}]}', DiscrepancyReport)
    assert isinstance(r, ParseError)
    assert "schema mismatch" in r.reason


def test_action_item_priority_normalized():
    r = parse_structured(
        '{"action_items": [{"description": "Order toilet", "priority": "URGENT"}, {"description": "Call super", "priority": "High"}]}',
        SessionSummary,
    )
    assert isinstance(r, Ok)
    assert [a.priority for a in r.data.action_items] == ["normal", "high"]


def test_discrepancy_urgency():
    r = parse_structured('{"has_discrepancies": true, "items": [{"description": "3 toilets on plan, 2 discussed", "severity": "HIGH"}]}', DiscrepancyReport)
    assert isinstance(r, Ok)
    assert r.data.has_urgent() is True


def test_strip_fences():
    assert strip_fences("```json\n{}\n```") == "{}"

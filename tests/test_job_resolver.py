from jobwalk.models.job import Job
from jobwalk.services.job_resolver import match_voice_tag, parse_voice_tag, resolve_job


def test_parse_voice_tag_variants():
    assert parse_voice_tag("Oak Creek lot 42") == ("Oak Creek", "42")
    assert parse_voice_tag("oak creek, Lot #42.") == ("oak creek", "42")
    assert parse_voice_tag("Willow Bend lot number 7B") == ("Willow Bend", "7B")
    assert parse_voice_tag("the big house on the hill") is None
    assert parse_voice_tag(None) is None


def test_same_subdivision_and_lot_resolve_to_one_job(db):
    summary = {"builder_name": "Lennar", "subdivision": "Oak Creek", "lot_number": "42"}
    first = resolve_job(db, None, summary)
    second = resolve_job(db, None, {"subdivision": "oak creek", "lot_number": "42"})

    assert first is not None
    assert first == second
    assert db.query(Job).count() == 1


def test_voice_tag_creates_job_from_tag(db):
    job_id = resolve_job(db, "Oak Creek lot 42", {"parse_error": True, "raw_response": "??"})
    job = db.get(Job, job_id)
    assert job.subdivision == "Oak Creek"
    assert job.lot_number == "42"
    assert job.notes == "Voice tagged: Oak Creek lot 42"

    assert match_voice_tag(db, "OAK CREEK lot 42") == job_id
    assert resolve_job(db, "oak creek lot 42", None) == job_id


def test_voice_tag_wins_over_summary_fields(db):
    job_id = resolve_job(db, "Oak Creek lot 42", {"subdivision": "Willow Bend", "lot_number": "9"})
    job = db.get(Job, job_id)
    assert (job.subdivision, job.lot_number) == ("Oak Creek", "42")


def test_nothing_identifying_creates_nothing(db):
    assert resolve_job(db, None, {"key_decisions": ["two toilets"]}) is None
    assert db.query(Job).count() == 0


def test_unmatched_voice_tag_still_finds_job_from_summary(db):
    summary = {"builder_name": "Pulte", "subdivision": "Oak Creek", "lot_number": "42"}
    existing = resolve_job(db, None, summary)

    # the spoken tag names no known job, the summary does
    assert resolve_job(db, "Pulte Oak Creek lot 42", summary) == existing
    assert db.query(Job).count() == 1


def test_voice_tag_has_no_builder_part():
    assert parse_voice_tag("Pulte Oak Creek lot 42") == ("Pulte Oak Creek", "42")

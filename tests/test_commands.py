from jobwalk.services.commands import flag_word_positions, parse_commands, strip_commands


def test_no_commands_returns_text_unchanged():
    text = "Two toilets in master bath.  Move the  tub drain six inches."
    out = strip_commands(text)
    assert out.cleaned == text
    assert out.commands == []


def test_strips_phrases_and_collapses_whitespace():
    raw = "Hey Max, new room kitchen. Sink goes under the window. Max flag that the vent is missing. Got it Max"
    out = strip_commands(raw)

    types = [c.type for c in out.commands]
    assert "new_room" in types
    assert "flag" in types
    assert "acknowledge" in types

    for c in out.commands:
        assert c.raw.strip() not in out.cleaned
    assert "  " not in out.cleaned
    assert "Sink goes under the window." in out.cleaned


def test_commands_are_ordered_by_position():
    raw = "Max flag that. Then hey max take a photo here."
    out = strip_commands(raw)
    idx = [c.index for c in out.commands]
    assert idx == sorted(idx)


def test_room_markers_accumulate_and_job_tag_first_wins():
    raw = (
        "Hey max this is Oak Creek lot 42. "
        "Max new room master bath. two sinks. "
        "Max new room laundry. one box. "
        "Hey max this is Willow Bend lot 3."
    )
    meta = parse_commands(strip_commands(raw).commands)

    assert [r["name"] for r in meta.room_markers] == ["master bath", "laundry"]
    assert meta.job_tag == "Oak Creek lot 42"


def test_request_flags():
    raw = "Max, here are the plans. Hey max what's on the plans. Max take a photo."
    meta = parse_commands(strip_commands(raw).commands)
    assert meta.plan_attach_requested is True
    assert meta.plan_query_requested is True
    assert meta.photo_requested is True
    assert meta.to_dict()["flags"] == []


def test_flag_word_positions_map_into_cleaned_text():
    raw = "one two three Max flag that four five"
    out = strip_commands(raw)
    meta = parse_commands(out.commands)
    assert out.cleaned == "one two three four five"
    assert flag_word_positions(raw, meta.flags) == [3]


def test_unterminated_job_tag_runs_to_end_of_transcript():
    raw = "Hey Max this is Oak Creek lot 42 two toilets in the master bath"
    out = strip_commands(raw)
    meta = parse_commands(out.commands)
    assert out.cleaned == ""
    assert meta.job_tag == "Oak Creek lot 42 two toilets in the master bath"

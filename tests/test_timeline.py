import pytest

from mosync import timeline as timeline_util
from mosync.timeline import (
    DuplicateIdError,
    Fragment,
    FragmentTimeline,
    IndexOutOfRange,
    InvalidTimeError,
    NonContiguousError,
    UnsortedError,
    ValidationError,
)


def _records() -> list[dict]:
    return [
        {"id": "f0", "begin": 0, "end": 2, "file": "a.mp3"},
        {"id": "f1", "begin": 2, "end": 2, "file": "a.mp3"},
        {"id": "f2", "begin": 2, "end": 5, "file": "a.mp3"},
    ]


def test_from_records_builds_contiguous_timeline() -> None:
    timeline = FragmentTimeline.from_records(_records())
    assert len(timeline) == 3
    assert timeline.length() == 3
    assert timeline.ids == ["f0", "f1", "f2"]
    assert timeline.get(0).begin_sec == 0
    for idx in range(len(timeline) - 1):
        assert timeline.get(idx + 1).begin_sec == timeline.get(idx).end_sec


def test_index_of_id_and_get() -> None:
    timeline = FragmentTimeline.from_records(_records())
    assert timeline.index_of_id("f2") == 2
    assert timeline.index_of_id("missing") == -1
    assert timeline.index_of_id(None) == -1
    assert timeline.get(1) == Fragment("f1", 2.0, 2.0, "a.mp3")
    with pytest.raises(IndexOutOfRange):
        timeline.get(3)
    with pytest.raises(IndexOutOfRange):
        timeline.get(-1)


def test_zero_duration_fragment_is_allowed() -> None:
    timeline = FragmentTimeline.from_records(_records())
    assert timeline.get(1).duration == 0.0


def test_non_contiguous_names_offending_fragment() -> None:
    records = _records()
    records[2]["begin"] = 2.5
    with pytest.raises(NonContiguousError) as excinfo:
        FragmentTimeline.from_records(records)
    assert excinfo.value.index == 2
    assert excinfo.value.fragment_id == "f2"


def test_first_fragment_must_start_at_zero() -> None:
    records = _records()
    records[0]["begin"] = 0.5
    with pytest.raises(NonContiguousError):
        FragmentTimeline.from_records(records)


def test_unsorted_fragments_are_rejected() -> None:
    records = [
        {"id": "a", "begin": 0, "end": 2, "file": "a.mp3"},
        {"id": "b", "begin": 2, "end": 4, "file": "a.mp3"},
        {"id": "c", "begin": 1, "end": 3, "file": "a.mp3"},
    ]
    with pytest.raises(UnsortedError) as excinfo:
        FragmentTimeline.from_records(records)
    assert excinfo.value.fragment_id == "c"


def test_duplicate_ids_are_rejected() -> None:
    records = _records()
    records[2]["id"] = "f0"
    with pytest.raises(DuplicateIdError) as excinfo:
        FragmentTimeline.from_records(records)
    assert excinfo.value.fragment_id == "f0"
    assert excinfo.value.index == 2


def test_end_before_begin_is_rejected() -> None:
    records = [{"id": "a", "begin": 0, "end": -1, "file": "a.mp3"}]
    with pytest.raises(InvalidTimeError):
        FragmentTimeline.from_records(records)


def test_non_numeric_time_is_validation_error() -> None:
    with pytest.raises(ValidationError):
        FragmentTimeline.from_records([{"id": "a", "begin": "soon", "end": 1, "file": "a"}])


def test_validation_errors_are_value_errors() -> None:
    assert issubclass(ValidationError, ValueError)


def test_new_audio_file_restarts_at_zero() -> None:
    records = [
        {"id": "a0", "begin": 0, "end": 3, "file": "a.mp3"},
        {"id": "b0", "begin": 0, "end": 4, "file": "b.mp3"},
        {"id": "b1", "begin": 4, "end": 6, "file": "b.mp3"},
    ]
    timeline = FragmentTimeline.from_records(records)
    assert timeline.audio_refs() == ["a.mp3", "b.mp3"]

    records[1]["begin"] = 3
    records[1]["end"] = 4
    with pytest.raises(NonContiguousError):
        FragmentTimeline.from_records(records)


def test_small_rounding_differences_are_tolerated() -> None:
    records = [
        {"id": "a", "begin": 0, "end": 1.2345, "file": "a.mp3"},
        {"id": "b", "begin": 1.2349, "end": 2, "file": "a.mp3"},
    ]
    assert len(FragmentTimeline.from_records(records)) == 2


def test_check_coverage_reports_mismatches() -> None:
    timeline = FragmentTimeline.from_records(_records())
    assert timeline.check_coverage({"a.mp3": 5.0}) == []
    warnings = timeline.check_coverage({"a.mp3": 6.0, "b.mp3": 1.0})
    assert len(warnings) == 2
    assert any("a.mp3" in warning and "f2" in warning for warning in warnings)
    assert any("b.mp3" in warning for warning in warnings)


def test_constructor_validates_and_validate_is_exposed() -> None:
    fragments = [Fragment("x", 0, 1, "a"), Fragment("x", 1, 2, "a")]
    with pytest.raises(DuplicateIdError):
        FragmentTimeline(fragments)
    assert FragmentTimeline.validate is timeline_util.validate


def test_to_records_round_trips_field_names() -> None:
    timeline = FragmentTimeline.from_records(_records())
    assert timeline.to_records()[0] == {"id": "f0", "begin": 0.0, "end": 2.0, "file": "a.mp3"}


def test_empty_timeline_is_valid() -> None:
    timeline = FragmentTimeline.from_records([])
    assert len(timeline) == 0
    assert timeline.index_of_id("f0") == -1

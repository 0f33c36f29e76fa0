from __future__ import annotations

import pytest

from logosophe.core.errors import RangeNotSatisfiableError
from logosophe.services.ranges import ByteRange, parse_range_header


def test_missing_range_header_serves_whole_object() -> None:
    # No header (or a blank one) means a plain 200 with the full body.
    assert parse_range_header(None, 1000) is None
    assert parse_range_header("   ", 1000) is None


def test_explicit_range_is_inclusive() -> None:
    # bytes=0-99 covers exactly one hundred bytes.
    parsed = parse_range_header("bytes=0-99", 1000)
    assert parsed == ByteRange(start=0, end=99)
    assert parsed.length == 100
    assert parsed.content_range(1000) == "bytes 0-99/1000"


def test_open_ended_range_runs_to_last_byte() -> None:
    parsed = parse_range_header("bytes=900-", 1000)
    assert parsed == ByteRange(start=900, end=999)


def test_range_end_is_clamped_to_object_size() -> None:
    # Ends past EOF are trimmed rather than rejected.
    parsed = parse_range_header("bytes=500-5000", 1000)
    assert parsed == ByteRange(start=500, end=999)
    assert parsed.content_range(1000) == "bytes 500-999/1000"


def test_suffix_range_returns_trailing_bytes() -> None:
    assert parse_range_header("bytes=-100", 1000) == ByteRange(start=900, end=999)
    # A suffix larger than the object covers the whole object.
    assert parse_range_header("bytes=-5000", 1000) == ByteRange(start=0, end=999)


@pytest.mark.parametrize(
    "header",
    [
        "items=0-10",
        "bytes=0-10,20-30",
        "bytes=10",
        "bytes=1000-",
        "bytes=50-10",
        "bytes=-0",
        "bytes=a-b",
        "bytes=²-5",
        "bytes=0-²",
        "bytes=-²",
        "bytes=١-5",
    ],
)
def test_unsatisfiable_ranges_carry_object_size(header: str) -> None:
    # The size travels with the error so the 416 can report bytes */size.
    with pytest.raises(RangeNotSatisfiableError) as exc_info:
        parse_range_header(header, 1000)
    assert exc_info.value.size == 1000


def test_empty_object_rejects_any_range() -> None:
    with pytest.raises(RangeNotSatisfiableError):
        parse_range_header("bytes=0-0", 0)

from __future__ import annotations

from dataclasses import dataclass

from logosophe.core.errors import RangeNotSatisfiableError


def _is_decimal(text: str) -> bool:
    # str.isdigit also accepts superscripts and other non-ASCII digits that int() rejects.
    return text.isascii() and text.isdecimal()


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def parse_range_header(header: str | None, size: int) -> ByteRange | None:
    """Parse a single ``bytes=`` range against an object of ``size`` bytes.

    Returns None when no Range header was sent (serve the whole object).
    Supports ``start-end``, ``start-`` and ``-suffix``; the end is clamped to
    ``size - 1``. Multi-range requests are rejected.
    """
    if header is None or not header.strip():
        return None
    unit, _, range_set = header.strip().partition("=")
    if unit.strip().lower() != "bytes" or not range_set:
        raise RangeNotSatisfiableError("Unsupported range unit", size=size)
    range_set = range_set.strip()
    if "," in range_set:
        raise RangeNotSatisfiableError("Multiple ranges are not supported", size=size)
    start_text, sep, end_text = range_set.partition("-")
    if not sep:
        raise RangeNotSatisfiableError("Malformed range", size=size)
    start_text, end_text = start_text.strip(), end_text.strip()
    if size <= 0:
        raise RangeNotSatisfiableError("Empty object has no satisfiable range", size=size)

    if not start_text:
        # Suffix form: last N bytes.
        if not _is_decimal(end_text) or int(end_text) == 0:
            raise RangeNotSatisfiableError("Malformed suffix range", size=size)
        suffix = min(int(end_text), size)
        return ByteRange(start=size - suffix, end=size - 1)

    if not _is_decimal(start_text) or (end_text and not _is_decimal(end_text)):
        raise RangeNotSatisfiableError("Malformed range", size=size)
    start = int(start_text)
    end = int(end_text) if end_text else size - 1
    if start >= size:
        raise RangeNotSatisfiableError("Range start beyond end of file", size=size)
    if end < start:
        raise RangeNotSatisfiableError("Range end before start", size=size)
    return ByteRange(start=start, end=min(end, size - 1))

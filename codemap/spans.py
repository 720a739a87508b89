from __future__ import annotations

from collections.abc import Iterable

Span = tuple[int, int, bytes]  # (start, end, replacement)


def splice(original: bytes, spans: Iterable[Span]) -> bytes:
    """Copy ``original`` replacing only the given byte ranges.

    Spans must not overlap; they are applied in offset order.
    """
    out: list[bytes] = []
    pos = 0
    for start, end, replacement in sorted(spans, key=lambda s: s[0]):
        if start < pos or end < start:
            raise ValueError(f"overlapping or inverted span at offset {start}")
        out.append(original[pos:start])
        out.append(replacement)
        pos = end
    out.append(original[pos:])
    return b"".join(out)


def line_number_at(data: bytes, offset: int) -> int:
    return data.count(b"\n", 0, offset) + 1

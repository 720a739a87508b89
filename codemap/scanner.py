from __future__ import annotations

from collections.abc import Iterable
from posixpath import splitext

from .grammar import (
    MarkerGrammar,
    annotates_next_line,
    is_blank,
    split_lines,
    strip_eol,
)
from .ids import TokenGenerator
from .model import TokenLocation

DEFAULT_IGNORE_EXTENSIONS: tuple[str, ...] = (
    ".csv",
    ".jpeg",
    ".jpg",
    ".otf",
    ".png",
    ".ttf",
    ".webp",
    ".woff",
    ".woff2",
)

# Longest line we are willing to treat as text.
DEFAULT_MAX_LINE_BYTES = 64 * 1024


def has_extension(path: str, extensions: Iterable[str]) -> bool:
    ext = splitext(path)[1].lower()
    return bool(ext) and ext in {e.lower() for e in extensions}


def looks_binary(lines: list[bytes], max_line_bytes: int) -> bool:
    return any(len(strip_eol(line)) > max_line_bytes for line in lines)


def assign_tokens(
    data: bytes,
    grammar: MarkerGrammar,
    generate: TokenGenerator,
) -> tuple[bytes, list[str]]:
    """Rewrite every ``[T]`` / ``[T-group]`` marker to its assigned form."""
    issued: list[str] = []

    def _assign(m) -> bytes:
        token = generate()
        issued.append(token)
        return grammar.assigned_marker(token, group=m.group("group") is not None)

    return grammar.unassigned.sub(_assign, data), issued


def scan_singles(
    path: str,
    data: bytes,
    grammar: MarkerGrammar,
) -> list[tuple[str, TokenLocation]]:
    """Locate every assigned single marker in ``data``.

    A marker alone inside a comment annotates the following line. Markers
    link to the whole file while every non-marker line so far is blank or a
    shebang and the line after each marker is blank (or the file ends).
    """
    lines = split_lines(data)
    found: list[tuple[str, TokenLocation]] = []
    preamble_only = True

    for idx, raw in enumerate(lines):
        line = strip_eol(raw)
        m = grammar.single.match(line)
        if m is not None:
            before = m.group("before").strip()
            after = m.group("after").strip()
            line_no = idx + 1
            if annotates_next_line(before, after):
                line_no += 1
            if idx + 1 < len(lines) and not is_blank(lines[idx + 1]):
                preamble_only = False
            token = m.group("token").decode("ascii")
            found.append((token, TokenLocation(path, line_no, preamble_only)))
            continue

        if preamble_only and not (line.startswith(b"#!") or is_blank(line)):
            preamble_only = False

    return found

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .errors import StructuralError
from .grammar import MarkerGrammar, split_lines
from .ids import new_group_hasher
from .model import FileSource, TokenGroupInfo
from .spans import splice


@dataclass
class _OpenGroup:
    token: str
    hasher: Any
    start_line: int


def fingerprint_groups(
    source: FileSource,
    data: bytes,
    grammar: MarkerGrammar,
) -> list[TokenGroupInfo]:
    """Hash the content between every start/end marker pair in ``data``.

    Neither boundary line is part of the hashed content.
    """
    found: list[TokenGroupInfo] = []
    current: _OpenGroup | None = None
    line_no = 0

    for line_no, line in enumerate(split_lines(data), 1):
        end = grammar.group_end.search(line)
        if end is not None:
            token = end.group("token").decode("ascii")
            if current is None:
                raise StructuralError(
                    f'end-{grammar.tag}-group for unknown group "{token}" '
                    f"({source.path}:{line_no})"
                )
            if token != current.token:
                raise StructuralError(
                    f'end-{grammar.tag}-group "{token}" does not match open group '
                    f'"{current.token}" ({source.path}:{line_no})'
                )
            expected = end.group("hash")
            found.append(
                TokenGroupInfo(
                    token=token,
                    source=source,
                    start_line=current.start_line,
                    end_line=line_no,
                    actual_hash=current.hasher.hexdigest(),
                    expected_hash=expected.decode("ascii") if expected else "",
                )
            )
            current = None

        if current is not None:
            current.hasher.update(line)

        start = grammar.group_start.search(line)
        if start is not None:
            token = start.group("token").decode("ascii")
            if current is not None:
                raise StructuralError(
                    f'overlapping {grammar.tag}-group "{token}" not allowed '
                    f"({source.path}:{line_no})"
                )
            current = _OpenGroup(token, new_group_hasher(), line_no)

    if current is not None:
        raise StructuralError(
            f'unclosed {grammar.tag}-group "{current.token}" '
            f"({source.path}:{current.start_line})"
        )
    return found


def patch_group_hashes(
    data: bytes,
    groups: Iterable[TokenGroupInfo],
    grammar: MarkerGrammar,
) -> bytes:
    """Embed each group's actual hash in its end marker, touching nothing else.

    Raises ``StructuralError`` when a group's end marker is no longer on its
    recorded line.
    """
    by_line = {g.end_line: g for g in groups}
    patched: set[int] = set()
    spans: list[tuple[int, int, bytes]] = []
    offset = 0
    for line_no, line in enumerate(split_lines(data), 1):
        info = by_line.get(line_no)
        if info is not None:
            for m in grammar.group_end.finditer(line):
                if m.group("token").decode("ascii") != info.token:
                    continue
                spans.append(
                    (
                        offset + m.start(),
                        offset + m.end(),
                        grammar.group_end_marker(info.token, info.actual_hash),
                    )
                )
                patched.add(line_no)
                break
        offset += len(line)

    missing = sorted(set(by_line) - patched)
    if missing:
        info = by_line[missing[0]]
        raise StructuralError(
            f'end-{grammar.tag}-group "{info.token}" not found '
            f"({info.path}:{info.end_line})"
        )
    return splice(data, spans)

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_TAG = "codemap"

_TOKEN = rb"[A-Za-z0-9]+"
_HASH = rb"[a-f0-9]{40}"

# Comment openers that make a marker annotate the following line.
LINE_COMMENT_OPENERS: tuple[bytes, ...] = (b"//", b"#", b"--", b";")
BLOCK_COMMENT_PAIRS: tuple[tuple[bytes, bytes], ...] = (
    (b"<!--", b"-->"),
    (b"/*", b"*/"),
)


@dataclass(frozen=True)
class MarkerGrammar:
    """Byte patterns recognised in source and documentation files for one tag."""

    tag: str = DEFAULT_TAG
    unassigned: re.Pattern[bytes] = field(init=False, repr=False, compare=False)
    single: re.Pattern[bytes] = field(init=False, repr=False, compare=False)
    group_start: re.Pattern[bytes] = field(init=False, repr=False, compare=False)
    group_end: re.Pattern[bytes] = field(init=False, repr=False, compare=False)
    doc_ref: re.Pattern[bytes] = field(init=False, repr=False, compare=False)
    doc_group_ref: re.Pattern[bytes] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not re.fullmatch(r"[A-Za-z0-9_.-]+", self.tag):
            raise ValueError(f"Invalid marker tag: {self.tag!r}")
        t = re.escape(self.tag.encode("ascii"))
        patterns = {
            "unassigned": rb"\[" + t + rb"(?P<group>-group)?\]",
            "single": rb"^(?P<before>.*)\[" + t + rb":(?P<token>" + _TOKEN + rb")\]"
            rb"(?P<after>.*)$",
            "group_start": rb"\[" + t + rb"-group:(?P<token>" + _TOKEN + rb")\]",
            "group_end": rb"\[end-" + t + rb"-group:(?P<token>" + _TOKEN + rb")"
            rb"(?::(?P<hash>" + _HASH + rb"))?\]",
            "doc_ref": rb"<!--" + t + rb":(?P<token>" + _TOKEN + rb")-->\]\(.*?\)",
            "doc_group_ref": rb"(?s)(?P<start><!--" + t + rb"-group:"
            rb"(?P<token>" + _TOKEN + rb"):(?P<template>.+?)-->)"
            rb"(?P<body>.*?)(?P<end><!--end-" + t + rb"-group-->)",
        }
        for name, pattern in patterns.items():
            object.__setattr__(self, name, re.compile(pattern))

    def assigned_marker(self, token: str, *, group: bool = False) -> bytes:
        kind = f"{self.tag}-group" if group else self.tag
        return f"[{kind}:{token}]".encode("ascii")

    def group_end_marker(self, token: str, digest: str) -> bytes:
        return f"[end-{self.tag}-group:{token}:{digest}]".encode("ascii")

    def doc_ref_text(self, token: str, target: str) -> bytes:
        return f"<!--{self.tag}:{token}-->]({target})".encode()


def split_lines(data: bytes) -> list[bytes]:
    """Split on LF only, keeping terminators; no trailing empty element."""
    parts = data.split(b"\n")
    lines = [p + b"\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def strip_eol(line: bytes) -> bytes:
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


def is_blank(line: bytes) -> bool:
    return not line.strip()


def annotates_next_line(before: bytes, after: bytes) -> bool:
    """True when the marker is alone inside a comment wrapper."""
    if not after and before in LINE_COMMENT_OPENERS:
        return True
    return (before, after) in BLOCK_COMMENT_PAIRS

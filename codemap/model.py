from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .errors import TokenCollisionError
from .ids import TokenGenerator

MAX_TOKEN_ATTEMPTS = 8


@dataclass(frozen=True)
class FileSource:
    """A candidate file, relative to the repository root."""

    path: str  # POSIX path, e.g. "docs/readme.md"
    from_git_index: bool = False  # read from the staged snapshot, never written


@dataclass(frozen=True)
class TokenLocation:
    path: str
    line: int  # 1-based, after the comment-only offset
    link_to_file: bool = False


@dataclass(frozen=True)
class TokenGroupInfo:
    token: str
    source: FileSource
    start_line: int  # 1-based line of the start marker
    end_line: int  # 1-based line of the end marker (exclusive)
    actual_hash: str
    expected_hash: str = ""  # "" when the end marker carries no hash

    @property
    def path(self) -> str:
        return self.source.path

    @property
    def drifted(self) -> bool:
        return self.actual_hash != self.expected_hash


@dataclass(frozen=True)
class FileScan:
    """Per-file scan result, built without holding the inventory lock."""

    source: FileSource
    singles: list[tuple[str, TokenLocation]] = field(default_factory=list)
    groups: list[TokenGroupInfo] = field(default_factory=list)
    new_tokens: list[str] = field(default_factory=list)
    is_doc: bool = False
    skipped: str = ""  # reason when the file was not scanned


@dataclass
class FileInventory:
    singles: dict[str, list[TokenLocation]] = field(default_factory=dict)
    groups: dict[str, list[TokenGroupInfo]] = field(default_factory=dict)
    doc_sources: list[FileSource] = field(default_factory=list)
    scans: list[FileScan] = field(default_factory=list)
    _issued: set[str] = field(default_factory=set, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def merge(self, scan: FileScan) -> None:
        with self._lock:
            for token, loc in scan.singles:
                self.singles.setdefault(token, []).append(loc)
            for info in scan.groups:
                self.groups.setdefault(info.token, []).append(info)
            if scan.is_doc:
                self.doc_sources.append(scan.source)
            self.scans.append(scan)

    def claim_token(self, generate: TokenGenerator) -> str:
        """Return a token not issued in this run and not already merged.

        Files not yet merged are unknown here, so a clash with one of their
        tokens is only caught afterwards by the duplicate check.
        """
        with self._lock:
            for _ in range(MAX_TOKEN_ATTEMPTS):
                token = generate()
                if (
                    token not in self._issued
                    and token not in self.singles
                    and token not in self.groups
                ):
                    self._issued.add(token)
                    return token
        raise TokenCollisionError(
            f"token generator repeated an issued token {MAX_TOKEN_ATTEMPTS} times"
        )

    def finalize(self) -> None:
        for infos in self.groups.values():
            infos.sort(key=lambda g: (g.path, g.start_line))
        self.doc_sources.sort(key=lambda s: s.path)
        self.scans.sort(key=lambda s: s.source.path)


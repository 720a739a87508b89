from __future__ import annotations

import re
import stat
from collections.abc import Sequence
from pathlib import Path

import pathspec

from .model import FileSource
from .sources import run_git

DEFAULT_EXCLUDES = [
    "**/.git/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.venv/**",
    "**/venv/**",
    "**/.tox/**",
    "**/.pytest_cache/**",
    "**/node_modules/**",
]

DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024

_SPACES_RE = re.compile(r"\s+")


def _load_ignore_lines(root: Path, filename: str) -> list[str]:
    p = root / filename
    if not p.exists():
        return []
    return p.read_text(encoding="utf-8", errors="replace").splitlines()


def _load_combined_ignore(root: Path, *, respect_gitignore: bool) -> pathspec.PathSpec:
    # Order matters: patterns later in the list take precedence (e.g. negations).
    lines: list[str] = []
    if respect_gitignore:
        lines.extend(_load_ignore_lines(root, ".gitignore"))
    lines.extend(_load_ignore_lines(root, ".codemapignore"))
    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


def _is_confined_to_root(path: Path, root: Path) -> bool:
    try:
        resolved = path.resolve()
    except OSError:
        return False
    try:
        resolved.relative_to(root)
    except ValueError:
        return False
    return True


def should_include_file(path: Path, max_file_bytes: int = DEFAULT_MAX_FILE_BYTES) -> bool:
    """Regular files (not symlinks) below the size limit."""
    try:
        st = path.lstat()
    except OSError as e:
        raise OSError(f'failed to stat "{path}": {e}') from e
    if not stat.S_ISREG(st.st_mode):
        return False
    return max_file_bytes <= 0 or st.st_size < max_file_bytes


def discover_sources(
    root: Path,
    include: list[str] | None = None,
    exclude: list[str] | None = None,
    respect_gitignore: bool = True,
    *,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> list[FileSource]:
    """Walk ``root`` and return working-tree sources matching the patterns.

    Notes:
    - ``.codemapignore`` is always respected (gitignore-style); ``.gitignore``
      only when ``respect_gitignore`` is set.
    - Results are sorted by POSIX path.
    """
    root = root.resolve()

    ignore = _load_combined_ignore(root, respect_gitignore=respect_gitignore)
    inc = pathspec.PathSpec.from_lines("gitwildmatch", include or ["**/*"])
    exc = pathspec.PathSpec.from_lines(
        "gitwildmatch", DEFAULT_EXCLUDES + (exclude or [])
    )

    out: list[FileSource] = []
    for p in root.rglob("*"):
        if p.is_symlink() or not p.is_file():
            continue
        if not _is_confined_to_root(p, root):
            continue
        rel_s = p.relative_to(root).as_posix()

        if ignore.match_file(rel_s):
            continue
        if not inc.match_file(rel_s):
            continue
        if exc.match_file(rel_s):
            continue
        if not should_include_file(p, max_file_bytes):
            continue

        out.append(FileSource(rel_s))

    out.sort(key=lambda s: s.path)
    return out


def split_path_list(raw: bytes, *, nul: bool = False) -> list[str]:
    sep = b"\0" if nul else b"\n"
    out: list[str] = []
    for chunk in raw.split(sep):
        name = chunk.decode("utf-8", errors="surrogateescape")
        if not nul:
            name = name.strip()
        if name:
            out.append(name)
    return out


def sources_from_paths(
    root: Path,
    paths: Sequence[str],
    *,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> list[FileSource]:
    """Explicit path list (e.g. from stdin), relative to ``root``."""
    out: list[FileSource] = []
    for raw in paths:
        name = raw[2:] if raw.startswith("./") else raw
        if should_include_file(root / name, max_file_bytes):
            out.append(FileSource(name))
    return out


def sources_from_git(
    root: Path,
    *,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> list[FileSource]:
    """Tracked and untracked-but-not-ignored files, minus unstaged deletions."""
    deleted = set(
        split_path_list(
            run_git(root, "diff-files", "--name-only", "--diff-filter=D", "-z"),
            nul=True,
        )
    )
    listed = split_path_list(
        run_git(root, "ls-files", "--cached", "--others", "--exclude-standard", "-z"),
        nul=True,
    )
    return sources_from_paths(
        root,
        [name for name in listed if name not in deleted],
        max_file_bytes=max_file_bytes,
    )


def sources_from_git_index(root: Path) -> list[FileSource]:
    """Every regular blob in the index; staged changes are read from the index."""
    staged = set(
        split_path_list(
            run_git(root, "diff-index", "--name-only", "-z", "HEAD"), nul=True
        )
    )
    out: list[FileSource] = []
    for entry in split_path_list(run_git(root, "ls-files", "--stage", "-z"), nul=True):
        # e.g. "100644 b438169c25a6cf5649e09d8d51092998fa4e904e 0\tDockerfile"
        if not entry.startswith("100"):
            continue
        parts = _SPACES_RE.split(entry, maxsplit=3)
        if len(parts) < 4:
            continue
        name = parts[3]
        out.append(FileSource(name, from_git_index=name in staged))
    return out

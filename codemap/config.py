from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from .discover import DEFAULT_MAX_FILE_BYTES
from .grammar import DEFAULT_TAG
from .scanner import DEFAULT_IGNORE_EXTENSIONS, DEFAULT_MAX_LINE_BYTES

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # pyright: ignore[reportMissingImports]

CONFIG_FILENAMES: tuple[str, ...] = (".codemap.toml", "codemap.toml")
PYPROJECT_FILENAME = "pyproject.toml"

SOURCE_MODES: tuple[str, ...] = ("walk", "git", "git-index", "stdin", "stdin0")

SourceMode = Literal["walk", "git", "git-index", "stdin", "stdin0"]


@dataclass
class Config:
    # Marker tag: [codemap], [codemap:TOKEN], [codemap-group:TOKEN], ...
    tag: str = DEFAULT_TAG
    # Where candidate file names come from when the CLI does not say.
    source: SourceMode = "walk"
    include: list[str] = field(default_factory=lambda: ["**/*"])
    exclude: list[str] = field(default_factory=list)
    respect_gitignore: bool = True
    doc_extensions: list[str] = field(default_factory=lambda: [".md"])
    ignore_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_IGNORE_EXTENSIONS)
    )
    # Worker pool size for scanning. <=0 means os.cpu_count().
    max_workers: int = 0
    # Lines longer than this mark a file as binary (skipped).
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    # Enumerated files at or above this size are ignored; <=0 disables.
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    # Treat unused tokens as errors instead of warnings.
    no_unused: bool = False


def _find_config_path(root: Path) -> Path | None:
    root = root.resolve()
    for name in CONFIG_FILENAMES:
        p = root / name
        if p.exists():
            return p
    pyproject = root / PYPROJECT_FILENAME
    if pyproject.exists():
        return pyproject
    return None


def _extract_section(data: Any, *, from_pyproject: bool) -> dict[str, Any]:
    section: dict[str, Any] = {}
    if not isinstance(data, dict):
        return section

    if not from_pyproject:
        # Preferred for dedicated config files: [codemap]
        cm = data.get("codemap")
        if isinstance(cm, dict):
            return cm

    # Supported in all files; required for pyproject.toml.
    tool = data.get("tool")
    if isinstance(tool, dict):
        cm2 = tool.get("codemap")
        if isinstance(cm2, dict):
            return cm2

    return section


def _normalize_extensions(values: list[Any]) -> list[str]:
    out: list[str] = []
    for v in values:
        ext = str(v).strip().lower()
        if not ext:
            continue
        out.append(ext if ext.startswith(".") else f".{ext}")
    return out


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def load_config(root: Path) -> Config:
    cfg_path = _find_config_path(root)
    if cfg_path is None:
        return Config()

    data = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    section = _extract_section(data, from_pyproject=cfg_path.name == PYPROJECT_FILENAME)
    cfg = Config()

    tag = section.get("tag", cfg.tag)
    if isinstance(tag, str) and tag.strip():
        cfg.tag = tag.strip()

    source = section.get("source", cfg.source)
    if isinstance(source, str):
        source = source.strip().lower()
        if source in SOURCE_MODES:
            cfg.source = source  # type: ignore[assignment]

    inc = section.get("include")
    if isinstance(inc, list):
        cfg.include = [str(x) for x in inc]
    exc = section.get("exclude")
    if isinstance(exc, list):
        cfg.exclude = [str(x) for x in exc]
    cfg.respect_gitignore = bool(
        section.get("respect_gitignore", cfg.respect_gitignore)
    )

    docs = section.get("doc_extensions")
    if isinstance(docs, list):
        cfg.doc_extensions = _normalize_extensions(docs)
    ignored = section.get("ignore_extensions")
    if isinstance(ignored, list):
        cfg.ignore_extensions = _normalize_extensions(ignored)

    cfg.max_workers = _int_or(section.get("max_workers"), cfg.max_workers)
    max_line = _int_or(section.get("max_line_bytes"), cfg.max_line_bytes)
    if max_line > 0:
        cfg.max_line_bytes = max_line
    cfg.max_file_bytes = _int_or(section.get("max_file_bytes"), cfg.max_file_bytes)
    cfg.no_unused = bool(section.get("no_unused", cfg.no_unused))

    return cfg

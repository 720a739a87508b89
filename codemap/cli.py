from __future__ import annotations

import argparse
import importlib.metadata as importlib_metadata
import json
import sys
from pathlib import Path

from .config import Config, load_config
from .discover import (
    discover_sources,
    sources_from_git,
    sources_from_git_index,
    sources_from_paths,
    split_path_list,
)
from .grammar import MarkerGrammar
from .inventory import ScanOptions
from .model import FileSource
from .reconcile import ReconcileOptions, ReconcileReport, format_drift, reconcile
from .sources import FileStore

_SOURCE_LABELS = {
    "walk": "working tree",
    "git": "Git",
    "git-index": "Git index",
    "stdin": "stdin",
    "stdin0": "stdin, NUL delimited",
}


def _codemap_version() -> str:
    try:
        return importlib_metadata.version("codemap")
    except importlib_metadata.PackageNotFoundError:
        try:
            from . import __version__ as fallback

            return str(fallback)
        except ImportError:
            return "0+unknown"


def _add_run_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "root",
        type=Path,
        nargs="?",
        default=Path("."),
        help="Repository root; file paths are relative to it (default: .)",
    )
    src = p.add_mutually_exclusive_group()
    src.add_argument(
        "--walk",
        dest="source",
        action="store_const",
        const="walk",
        help="Walk the working tree (include/exclude + .gitignore).",
    )
    src.add_argument(
        "--git",
        dest="source",
        action="store_const",
        const="git",
        help="Use tracked + untracked-but-not-ignored files from git.",
    )
    src.add_argument(
        "--git-index",
        dest="source",
        action="store_const",
        const="git-index",
        help="Use the staged git index (staged files are read from the index).",
    )
    src.add_argument(
        "--stdin",
        dest="source",
        action="store_const",
        const="stdin",
        help="Read file paths from stdin, one per line.",
    )
    src.add_argument(
        "--stdin0",
        dest="source",
        action="store_const",
        const="stdin0",
        help="Read file paths from stdin as NUL-separated entries.",
    )
    p.add_argument(
        "--no-unused",
        action="store_true",
        default=None,
        help="Treat tokens never referenced from documentation as errors.",
    )
    p.add_argument(
        "--tag",
        default=None,
        help="Marker tag name (default from config, else 'codemap').",
    )
    p.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Scan worker count (<=0 means number of CPUs).",
    )
    p.add_argument(
        "--verbose",
        action="store_true",
        help="Trace every file read to stderr.",
    )
    p.add_argument(
        "--json",
        action="store_true",
        help="Emit a machine-readable JSON report.",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="codemap",
        description="Keep documentation links to source markers and groups in sync.",
    )
    p.add_argument(
        "--version",
        action="version",
        version=f"codemap {_codemap_version()}",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    update = sub.add_parser(
        "update",
        help="Assign new tokens, rewrite documentation links, report group drift.",
    )
    _add_run_arguments(update)

    check = sub.add_parser(
        "check",
        help="Verify links and groups without writing any file.",
    )
    _add_run_arguments(check)

    ack = sub.add_parser(
        "ack",
        help="Like update, and accept current group content as the new baseline.",
    )
    _add_run_arguments(ack)

    return p


def _print_top_level_help(parser: argparse.ArgumentParser) -> None:
    parser.print_help()
    print()
    print("Quick start examples:")
    print("  codemap update .")
    print("  codemap check . --git")
    print("  codemap check --git-index --no-unused")
    print("  codemap ack .")
    print("  git ls-files | codemap update --stdin")


def _collect_sources(
    parser: argparse.ArgumentParser,
    cmd: str,
    mode: str,
    root: Path,
    cfg: Config,
) -> list[FileSource]:
    if mode == "git":
        return sources_from_git(root, max_file_bytes=cfg.max_file_bytes)
    if mode == "git-index":
        return sources_from_git_index(root)
    if mode in {"stdin", "stdin0"}:
        if sys.stdin.isatty():
            print(
                "Warning: reading filenames from stdin. "
                "Did you forget to pipe in a list of filenames?",
                file=sys.stderr,
            )
        names = split_path_list(sys.stdin.buffer.read(), nul=mode == "stdin0")
        if not names:
            parser.error(f"{cmd}: --{mode} was set but no file paths were provided")
        return sources_from_paths(root, names, max_file_bytes=cfg.max_file_bytes)
    return discover_sources(
        root,
        include=cfg.include,
        exclude=cfg.exclude,
        respect_gitignore=cfg.respect_gitignore,
        max_file_bytes=cfg.max_file_bytes,
    )


def _print_report(report: ReconcileReport) -> None:
    for notice in report.notices:
        print(notice)
    if report.drift:
        print(format_drift(report))
    if report.warnings:
        print("Warnings:")
        for msg in report.warnings:
            print(f"  - {msg}")
    if report.errors:
        print("Errors:")
        for msg in report.errors:
            head, *rest = msg.split("\n")
            print(f"  - {head}")
            for extra in rest:
                print(f"    {extra.strip()}")


def _report_json(report: ReconcileReport) -> str:
    payload = {
        "ok": report.ok,
        "error_count": len(report.errors),
        "warning_count": len(report.warnings),
        "errors": report.errors,
        "warnings": report.warnings,
        "notices": report.notices,
        "drift": [
            {
                "token": d.token,
                "members": [
                    {
                        "path": g.path,
                        "start_line": g.start_line,
                        "end_line": g.end_line,
                        "actual_hash": g.actual_hash,
                        "expected_hash": g.expected_hash,
                        "changed": g.drifted,
                    }
                    for g in d.members
                ],
            }
            for d in report.drift
        ],
    }
    return json.dumps(payload, indent=2, sort_keys=False)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    raw_argv = list(sys.argv[1:] if argv is None else argv)
    if not raw_argv:
        _print_top_level_help(parser)
        return

    args = parser.parse_args(raw_argv)
    cmd = args.cmd
    root = args.root.resolve()
    if not root.is_dir():
        parser.error(f"{cmd}: root is not a directory: {args.root}")

    cfg = load_config(root)
    mode = args.source or cfg.source
    check_only = cmd == "check"
    if mode == "git-index" and not check_only:
        parser.error(f"{cmd}: --git-index can only be used with the check command")

    try:
        grammar = MarkerGrammar(args.tag or cfg.tag)
    except ValueError as e:
        parser.error(f"{cmd}: {e}")

    options = ReconcileOptions(
        scan=ScanOptions(
            grammar=grammar,
            check_only=check_only,
            doc_extensions=tuple(cfg.doc_extensions),
            ignore_extensions=tuple(cfg.ignore_extensions),
            max_line_bytes=cfg.max_line_bytes,
            max_workers=(
                args.max_workers if args.max_workers is not None else cfg.max_workers
            ),
        ),
        ack_groups=cmd == "ack",
        strict_unused=bool(args.no_unused) or cfg.no_unused,
    )

    if not args.json:
        desc = _SOURCE_LABELS[mode]
        if check_only:
            desc += ", check only"
        if options.ack_groups:
            desc += ", ack groups"
        print(f"codemap {_codemap_version()} running (filenames from {desc}) ...")

    try:
        sources = _collect_sources(parser, cmd, mode, root, cfg)
    except OSError as e:
        print(f"codemap error: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    report = reconcile(sources, FileStore(root, verbose=args.verbose), options)

    if args.json:
        print(_report_json(report))
    else:
        _print_report(report)
    if not report.ok:
        raise SystemExit(1)
    if not args.json:
        print("codemap completed successfully")


if __name__ == "__main__":
    main()

from __future__ import annotations

import hashlib
from itertools import count
from pathlib import Path

import pytest

from codemap.discover import discover_sources
from codemap.inventory import ScanOptions
from codemap.reconcile import (
    ACK_HINT,
    ReconcileOptions,
    ReconcileReport,
    format_drift,
    reconcile,
)
from codemap.sources import FileStore


def _write_repo(root: Path, files: dict[str, str]) -> None:
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(content.encode("utf-8"))


def _snapshot(root: Path) -> dict[str, bytes]:
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def _run(root: Path, **kwargs) -> ReconcileReport:
    scan_kwargs = {
        k: kwargs.pop(k) for k in ("check_only", "generate", "max_workers") if k in kwargs
    }
    options = ReconcileOptions(scan=ScanOptions(**scan_kwargs), **kwargs)
    return reconcile(discover_sources(root), FileStore(root), options)


def _sha1(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


BLOCK = "def f():\n    return 1\n"


def _repo_files(expected_hash: str = "") -> dict[str, str]:
    end = f":{expected_hash}" if expected_hash else ""
    return {
        "src/a.py": (
            "import os\n"
            "# [codemap:Known]\n"
            "VALUE = 1\n"
            "# [codemap]\n"
            "OTHER = 2\n"
            "# [codemap-group:Blk]\n"
            + BLOCK
            + f"# [end-codemap-group:Blk{end}]\n"
        ),
        "docs/guide.md": (
            "# Guide\n"
            "[value<!--codemap:Known-->](stale)\n"
            "<!--codemap-group:Blk:{% for g in groups %}{{ g.markdown_range_link }}{% endfor %}-->"
            "<!--end-codemap-group-->\n"
        ),
    }


def test_update_rewrites_docs_and_warns_about_unused(tmp_path: Path) -> None:
    _write_repo(tmp_path, _repo_files(_sha1(BLOCK)))
    n = count(1)

    report = _run(tmp_path, generate=lambda: f"Gen{next(n)}")

    assert report.ok, report.errors
    assert 'Added new token "Gen1" to "src/a.py"' in report.notices
    assert report.warnings == ["unused token Gen1 at src/a.py:5"]
    assert report.drift == []
    guide = (tmp_path / "docs/guide.md").read_text(encoding="utf-8")
    assert "[value<!--codemap:Known-->](../src/a.py#L3)" in guide
    assert "-->\n[src/a.py:6](../src/a.py#L7-L8)<!--end-codemap-group-->" in guide
    assert "# [codemap:Gen1]\n" in (tmp_path / "src/a.py").read_text(encoding="utf-8")


def test_update_twice_is_idempotent(tmp_path: Path) -> None:
    _write_repo(tmp_path, _repo_files(_sha1(BLOCK)))

    _run(tmp_path)
    first = _snapshot(tmp_path)
    report = _run(tmp_path)
    second = _snapshot(tmp_path)

    assert first == second
    assert report.ok
    assert not any(n.startswith("Added new token") for n in report.notices)


def test_no_unused_promotes_warning_to_error(tmp_path: Path) -> None:
    _write_repo(tmp_path, _repo_files(_sha1(BLOCK)))

    report = _run(tmp_path, strict_unused=True, generate=lambda: "Lonely")

    assert not report.ok
    assert "unused token Lonely at src/a.py:5" in report.errors
    assert report.warnings == []


def test_check_mode_fails_on_stale_links_and_writes_nothing(tmp_path: Path) -> None:
    _write_repo(tmp_path, _repo_files(_sha1(BLOCK)))
    before = _snapshot(tmp_path)

    report = _run(tmp_path, check_only=True)

    assert _snapshot(tmp_path) == before
    assert 'incorrect link at "docs/guide.md:2" token "Known"' in report.errors
    assert 'stale group summary at "docs/guide.md:3" token "Blk"' in report.errors
    assert report.warnings == []


def test_drift_is_reported_then_acknowledged(tmp_path: Path) -> None:
    _write_repo(tmp_path, _repo_files("0" * 40))

    report = _run(tmp_path)
    assert not report.ok
    assert report.errors == [ACK_HINT]
    assert [d.token for d in report.drift] == ["Blk"]
    assert format_drift(report) == (
        'group "Blk" has changes (indicated with *):\n'
        "  *  src/a.py:6 (lines 7-8)"
    )

    src_before = (tmp_path / "src/a.py").read_bytes()
    report = _run(tmp_path, ack_groups=True)
    assert report.ok, report.errors
    assert [(g.token, g.end_line) for g in report.acknowledged] == [("Blk", 9)]

    src_after = (tmp_path / "src/a.py").read_bytes()
    assert src_after.replace(_sha1(BLOCK).encode(), b"0" * 40) == src_before

    report = _run(tmp_path, check_only=True)
    assert report.ok, report.errors
    assert report.drift == []


def test_drift_listing_marks_only_changed_members(tmp_path: Path) -> None:
    body = "x = 1\n"
    good = f"# [codemap-group:Shared]\n{body}# [end-codemap-group:Shared:{_sha1(body)}]\n"
    bad = f"# [codemap-group:Shared]\n{body}# [end-codemap-group:Shared:{'f' * 40}]\n"
    _write_repo(tmp_path, {"a.py": good, "b.py": bad})

    report = _run(tmp_path, check_only=True)

    assert format_drift(report) == (
        'group "Shared" has changes (indicated with *):\n'
        "     a.py:1 (lines 2-2)\n"
        "  *  b.py:1 (lines 2-2)"
    )


def test_duplicates_abort_before_rewriting(tmp_path: Path) -> None:
    _write_repo(
        tmp_path,
        {
            "a.py": "import os\nx = 1  # [codemap:Dup]\n",
            "b.py": "import os\ny = 1  # [codemap:Dup]\n",
            "doc.md": "[x<!--codemap:Dup-->](old)\n",
        },
    )

    report = _run(tmp_path)

    assert report.errors == ['duplicate token "Dup" at:\n   a.py:2\n   b.py:2']
    assert (tmp_path / "doc.md").read_text(encoding="utf-8") == "[x<!--codemap:Dup-->](old)\n"


def test_unknown_reference_is_fatal_and_doc_untouched(tmp_path: Path) -> None:
    _write_repo(
        tmp_path,
        {
            "a.py": "import os\nx = 1  # [codemap:Real]\n",
            "doc.md": "[x<!--codemap:Real-->](old)\n\n[y<!--codemap:G1-->](old)\n",
            "other.md": "[x<!--codemap:Real-->](old)\n",
        },
    )

    report = _run(tmp_path, check_only=True)
    assert 'token "G1" at "doc.md:3" was not found' in report.errors

    report = _run(tmp_path)
    assert report.errors == ['token "G1" at "doc.md:3" was not found']
    assert (tmp_path / "doc.md").read_text(encoding="utf-8").startswith(
        "[x<!--codemap:Real-->](old)"
    )
    assert (tmp_path / "other.md").read_text(encoding="utf-8") == (
        "[x<!--codemap:Real-->](a.py#L2)\n"
    )


def test_structural_errors_abort_run(tmp_path: Path) -> None:
    _write_repo(tmp_path, {"a.py": "# [codemap-group:G]\n# [codemap-group:H]\n"})

    report = _run(tmp_path)

    assert len(report.errors) == 1
    assert "overlapping" in report.errors[0]
    assert report.inventory is None


def test_ack_in_check_mode_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        _run(tmp_path, check_only=True, ack_groups=True)


def test_ack_follows_groups_moved_by_doc_rewrite(tmp_path: Path) -> None:
    _write_repo(
        tmp_path,
        {
            "doc.md": (
                "<!--codemap-group:Blk:{% for g in groups %}\n"
                "- {{ g.markdown_range_link }}\n"
                "{% endfor %}-->\n"
                "<!--end-codemap-group-->\n"
                "<!-- [codemap-group:Blk] -->\n"
                "text\n"
                "<!-- [end-codemap-group:Blk] -->\n"
            )
        },
    )

    report = _run(tmp_path, ack_groups=True)

    assert report.ok, report.errors
    assert 'updated group summary at "doc.md:1" token "Blk"' in report.notices
    assert [(g.token, g.start_line, g.end_line) for g in report.acknowledged] == [
        ("Blk", 7, 9)
    ]
    digest = _sha1("text\n")
    lines = (tmp_path / "doc.md").read_text(encoding="utf-8").splitlines()
    assert lines[8] == f"<!-- [end-codemap-group:Blk:{digest}] -->"

    report = _run(tmp_path)
    assert report.ok, report.errors
    assert report.drift == []
    report = _run(tmp_path, check_only=True)
    assert report.ok, report.errors

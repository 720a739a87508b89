from __future__ import annotations

import posixpath
from dataclasses import dataclass, field

from .errors import TemplateError
from .grammar import MarkerGrammar, split_lines
from .model import FileInventory, FileSource, TokenGroupInfo, TokenLocation
from .render import GroupRecord, render
from .spans import Span, line_number_at, splice


@dataclass
class DocRewrite:
    source: FileSource
    content: bytes
    changed: bool = False
    used_tokens: set[str] = field(default_factory=set)
    errors: list[str] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)


def relative_target(doc_path: str, target_path: str) -> str:
    doc_dir = posixpath.dirname(doc_path) or "."
    return posixpath.relpath(target_path, doc_dir)


def link_target(doc_path: str, loc: TokenLocation) -> str:
    rel = relative_target(doc_path, loc.path)
    if loc.link_to_file:
        return rel
    return f"{rel}#L{loc.line}"


def group_records(doc_path: str, infos: list[TokenGroupInfo]) -> list[GroupRecord]:
    records: list[GroupRecord] = []
    for info in infos:
        file_line = f"{info.path}:{info.start_line}"
        rel = relative_target(doc_path, info.path)
        range_href = f"{rel}#L{info.start_line + 1}-L{info.end_line - 1}"
        records.append(
            GroupRecord(
                file=info.path,
                line=info.start_line,
                file_line=file_line,
                range_href=range_href,
                markdown_range_link=f"[{file_line}]({range_href})",
            )
        )
    return records


def _resolve_references(
    out: DocRewrite,
    inventory: FileInventory,
    grammar: MarkerGrammar,
    *,
    check_only: bool,
) -> None:
    doc = out.source.path
    spans: list[Span] = []
    offset = 0
    for line_no, line in enumerate(split_lines(out.content), 1):
        for m in grammar.doc_ref.finditer(line):
            token = m.group("token").decode("ascii")
            locs = inventory.singles.get(token)
            if not locs:
                out.errors.append(f'token "{token}" at "{doc}:{line_no}" was not found')
                continue
            out.used_tokens.add(token)

            target = link_target(doc, locs[0])
            replacement = grammar.doc_ref_text(token, target)
            if m.group(0) == replacement:
                continue
            if check_only:
                out.errors.append(
                    f'incorrect link at "{doc}:{line_no}" token "{token}"'
                )
                continue
            spans.append((offset + m.start(), offset + m.end(), replacement))
            shown = target if locs[0].link_to_file else target.replace("#L", ":")
            out.notices.append(
                f'updated link at "{doc}:{line_no}" token "{token}" -> "{shown}"'
            )
        offset += len(line)

    if spans:
        out.content = splice(out.content, spans)
        out.changed = True


def _render_group_refs(
    out: DocRewrite,
    inventory: FileInventory,
    grammar: MarkerGrammar,
    *,
    check_only: bool,
) -> None:
    doc = out.source.path
    spans: list[Span] = []
    for m in grammar.doc_group_ref.finditer(out.content):
        token = m.group("token").decode("ascii")
        line_no = line_number_at(out.content, m.start())
        infos = inventory.groups.get(token)
        if not infos:
            out.errors.append(
                f'group token "{token}" at "{doc}:{line_no}" was not found'
            )
            continue

        template = m.group("template").decode("utf-8", errors="replace")
        try:
            rendered = b"\n" + render(template, group_records(doc, infos))
        except TemplateError as e:
            out.errors.append(
                f'invalid template for group "{token}" at "{doc}:{line_no}": {e}'
            )
            continue

        if m.group("body") == rendered:
            continue
        if check_only:
            out.errors.append(
                f'stale group summary at "{doc}:{line_no}" token "{token}"'
            )
            continue
        spans.append((m.start("body"), m.end("body"), rendered))
        out.notices.append(f'updated group summary at "{doc}:{line_no}" token "{token}"')

    if spans:
        out.content = splice(out.content, spans)
        out.changed = True


def rewrite_doc(
    source: FileSource,
    data: bytes,
    inventory: FileInventory,
    grammar: MarkerGrammar,
    *,
    check_only: bool = False,
) -> DocRewrite:
    """Bring token links and group summaries in one documentation file up to date.

    The returned ``content`` is only meaningful when ``errors`` is empty; in
    check mode it always equals ``data``.
    """
    out = DocRewrite(source=source, content=data)
    _resolve_references(out, inventory, grammar, check_only=check_only)
    _render_group_refs(out, inventory, grammar, check_only=check_only)
    return out

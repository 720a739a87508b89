from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from .errors import CodemapError
from .groups import fingerprint_groups, patch_group_hashes
from .inventory import (
    ScanOptions,
    build_inventory,
    find_duplicate_tokens,
    find_kind_collisions,
)
from .model import FileInventory, FileSource, TokenGroupInfo
from .rewriter import rewrite_doc
from .sources import FileStore

ACK_HINT = 'edit groups as needed, then re-run with the "ack" command'


@dataclass(frozen=True)
class ReconcileOptions:
    scan: ScanOptions = field(default_factory=ScanOptions)
    ack_groups: bool = False
    strict_unused: bool = False


@dataclass(frozen=True)
class GroupDrift:
    token: str
    members: list[TokenGroupInfo]


@dataclass
class ReconcileReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)
    drift: list[GroupDrift] = field(default_factory=list)
    acknowledged: list[TokenGroupInfo] = field(default_factory=list)
    inventory: FileInventory | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


def _rewrite_docs(
    inventory: FileInventory,
    store: FileStore,
    options: ReconcileOptions,
    report: ReconcileReport,
) -> tuple[set[str], set[FileSource]]:
    check_only = options.scan.check_only
    used: set[str] = set()
    rewritten: set[FileSource] = set()
    for source in inventory.doc_sources:
        try:
            data = store.read(source)
        except OSError as e:
            report.errors.append(str(e))
            continue
        result = rewrite_doc(
            source,
            data,
            inventory,
            options.scan.grammar,
            check_only=check_only,
        )
        used |= result.used_tokens
        report.errors.extend(result.errors)
        if result.errors or check_only or not result.changed:
            continue
        try:
            store.write(source, result.content)
        except OSError as e:
            report.errors.append(str(e))
            continue
        rewritten.add(source)
        report.notices.extend(result.notices)
    return used, rewritten


def _report_unused(
    inventory: FileInventory,
    used: set[str],
    options: ReconcileOptions,
    report: ReconcileReport,
) -> None:
    for token in sorted(set(inventory.singles) - used):
        loc = inventory.singles[token][0]
        msg = f"unused token {token} at {loc.path}:{loc.line}"
        if options.strict_unused:
            report.errors.append(msg)
        else:
            report.warnings.append(msg)


def _check_groups(inventory: FileInventory, report: ReconcileReport) -> None:
    for token in sorted(inventory.groups):
        members = inventory.groups[token]
        if any(g.drifted for g in members):
            report.drift.append(GroupDrift(token=token, members=list(members)))
    if report.drift:
        report.errors.append(ACK_HINT)


def _ack_groups(
    inventory: FileInventory,
    store: FileStore,
    options: ReconcileOptions,
    report: ReconcileReport,
    rewritten: set[FileSource],
) -> None:
    grammar = options.scan.grammar
    candidates: set[FileSource] = set()
    for infos in inventory.groups.values():
        for info in infos:
            if info.drifted or info.source in rewritten:
                candidates.add(info.source)

    # Docs rewritten above may have moved their groups; fingerprint again.
    for source in sorted(candidates, key=lambda s: s.path):
        drifted: list[TokenGroupInfo] = []
        try:
            data = store.read(source)
            groups = fingerprint_groups(source, data, grammar)
            drifted = [g for g in groups if g.drifted]
            if drifted:
                store.write(source, patch_group_hashes(data, drifted, grammar))
        except (CodemapError, OSError) as e:
            report.errors.append(str(e))
            continue
        for info in drifted:
            report.acknowledged.append(info)
            report.notices.append(
                f'acknowledged group "{info.token}" at {info.path}:{info.end_line}'
            )


def reconcile(
    sources: Sequence[FileSource],
    store: FileStore,
    options: ReconcileOptions,
) -> ReconcileReport:
    """Run scan, invariant checks, doc rewrites, unused and drift reporting."""
    if options.ack_groups and options.scan.check_only:
        raise ValueError("cannot acknowledge groups in check-only mode")

    report = ReconcileReport()
    try:
        inventory = build_inventory(sources, store, options.scan)
    except (CodemapError, OSError) as e:
        report.errors.append(str(e))
        return report
    report.inventory = inventory

    for scan in inventory.scans:
        for token in scan.new_tokens:
            report.notices.append(f'Added new token "{token}" to "{scan.source.path}"')

    report.errors.extend(find_duplicate_tokens(inventory))
    report.errors.extend(find_kind_collisions(inventory))
    if report.errors:
        return report

    used, rewritten = _rewrite_docs(inventory, store, options, report)
    _report_unused(inventory, used, options, report)

    if options.ack_groups:
        if not report.errors:
            _ack_groups(inventory, store, options, report, rewritten)
    else:
        _check_groups(inventory, report)
    return report


def format_drift(report: ReconcileReport) -> str:
    lines: list[str] = []
    for drift in report.drift:
        lines.append(f'group "{drift.token}" has changes (indicated with *):')
        for info in drift.members:
            indicator = "*" if info.drifted else " "
            lines.append(
                f"  {indicator}  {info.path}:{info.start_line} "
                f"(lines {info.start_line + 1}-{info.end_line - 1})"
            )
    return "\n".join(lines)

from __future__ import annotations

import os
from collections.abc import Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from .grammar import MarkerGrammar, split_lines
from .groups import fingerprint_groups
from .ids import TokenGenerator, new_token
from .model import FileInventory, FileScan, FileSource
from .scanner import (
    DEFAULT_IGNORE_EXTENSIONS,
    DEFAULT_MAX_LINE_BYTES,
    assign_tokens,
    has_extension,
    looks_binary,
    scan_singles,
)
from .sources import FileStore


@dataclass(frozen=True)
class ScanOptions:
    grammar: MarkerGrammar = field(default_factory=MarkerGrammar)
    check_only: bool = False
    doc_extensions: tuple[str, ...] = (".md",)
    ignore_extensions: tuple[str, ...] = DEFAULT_IGNORE_EXTENSIONS
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    max_workers: int = 0  # <=0 means os.cpu_count()
    generate: TokenGenerator = new_token


def resolve_worker_count(max_workers: int, item_count: int) -> int:
    if item_count <= 1:
        return 1
    if max_workers > 0:
        return min(max_workers, item_count)
    return max(1, min(os.cpu_count() or 1, item_count))


def scan_file(
    source: FileSource,
    store: FileStore,
    inventory: FileInventory,
    options: ScanOptions,
) -> FileScan:
    """Assign new tokens in one file and collect its singles and groups."""
    if has_extension(source.path, options.ignore_extensions):
        return FileScan(source=source, skipped="ignored extension")

    data = store.read(source)
    if looks_binary(split_lines(data), options.max_line_bytes):
        return FileScan(source=source, skipped="binary")

    new_tokens: list[str] = []
    if not options.check_only:
        data, new_tokens = assign_tokens(
            data,
            options.grammar,
            lambda: inventory.claim_token(options.generate),
        )

    groups = fingerprint_groups(source, data, options.grammar)
    singles = scan_singles(source.path, data, options.grammar)
    if new_tokens:
        store.write(source, data)
    return FileScan(
        source=source,
        singles=singles,
        groups=groups,
        new_tokens=new_tokens,
        is_doc=has_extension(source.path, options.doc_extensions),
    )


def _process(
    source: FileSource,
    store: FileStore,
    inventory: FileInventory,
    options: ScanOptions,
) -> None:
    inventory.merge(scan_file(source, store, inventory, options))


def build_inventory(
    sources: Sequence[FileSource],
    store: FileStore,
    options: ScanOptions,
) -> FileInventory:
    """Scan every source on a bounded pool and merge the results.

    The first failing file stops dispatch of files not yet started; its error
    is re-raised once running workers finish.
    """
    inventory = FileInventory()
    worker_count = resolve_worker_count(options.max_workers, len(sources))

    if worker_count == 1:
        for source in sources:
            _process(source, store, inventory, options)
    else:
        with ThreadPoolExecutor(max_workers=worker_count) as pool:
            futures: list[Future[None]] = [
                pool.submit(_process, source, store, inventory, options)
                for source in sources
            ]
            _, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for fut in pending:
                fut.cancel()
        for fut in futures:
            if fut.cancelled():
                continue
            exc = fut.exception()
            if exc is not None:
                raise exc

    inventory.finalize()
    return inventory


def find_duplicate_tokens(inventory: FileInventory) -> list[str]:
    errors: list[str] = []
    for token in sorted(inventory.singles):
        locs = inventory.singles[token]
        if len(locs) <= 1:
            continue
        msg = f'duplicate token "{token}" at:'
        for loc in sorted(locs, key=lambda x: (x.path, x.line)):
            msg += f"\n   {loc.path}:{loc.line}"
        errors.append(msg)
    return errors


def find_kind_collisions(inventory: FileInventory) -> list[str]:
    errors: list[str] = []
    for token in sorted(set(inventory.singles) & set(inventory.groups)):
        places = [f"{loc.path}:{loc.line}" for loc in inventory.singles[token]]
        places += [f"{g.path}:{g.start_line}" for g in inventory.groups[token]]
        errors.append(
            f'token "{token}" is used as both a single and a group at: '
            + ", ".join(sorted(places))
        )
    return errors

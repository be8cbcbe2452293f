# dupelink/pipeline.py
"""
Duplicate detection and linking, stage by stage:
1. Size grouping: only paths sharing a size go on
2. Metadata: digest new or changed files, reuse stored digests for the rest
3. Hash grouping: only records sharing a digest go on
4. Optional byte verification (paranoid mode)
5. Linking: each group is filtered for known links, then linked to its source
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set

from .batch_writer import BatchWriter
from .config import DupelinkConfig
from .db import Catalog
from .grouping import CompareFile, HashGroup, SizeGroup
from .linker import GroupLinker, GroupResult, Linker
from .links import LinkedFilter, LinkStore
from .metadata import MetadataUpdater
from .records import FileRecord
from .scan import find_files
from .util import LogCallback, ProgressCallback, emit, emit_log


@dataclass
class PipelineStats:
    total: int = 0
    existing: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    groups: int = 0
    linked: int = 0
    skipped: int = 0
    failed_groups: int = 0


@dataclass
class PipelineResult:
    stats: PipelineStats = field(default_factory=PipelineStats)
    duplicate_groups: List[Set[FileRecord]] = field(default_factory=list)
    group_results: List[GroupResult] = field(default_factory=list)


def run_pipeline(
    paths: Iterable[Path],
    catalog: Catalog,
    cfg: Optional[DupelinkConfig] = None,
    log_cb: Optional[LogCallback] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> PipelineResult:
    """Find duplicates among ``paths`` and replace them with hard links.

    The catalog handle is owned by the caller and stays open afterwards.
    """
    cfg = cfg or DupelinkConfig()
    workers = cfg.dedupe.max_workers
    result = PipelineResult()
    stats = result.stats

    if cfg.dry_run:
        emit_log(log_cb, "[RUN] === DRY RUN ===")
    writer = BatchWriter(catalog, cfg.writer.flush_interval_seconds, log_cb)
    link_store = LinkStore(catalog)

    try:
        # Stage 1: size grouping
        emit(progress_cb, "size", 0, 0, "Grouping files by size...")
        sw = time.time()
        size_group = SizeGroup(workers, log_cb)
        size_group.add(paths)
        candidates = size_group.same_size_files()
        emit_log(
            log_cb,
            f"[SIZE] Found {len(candidates):,} files with non-unique file sizes "
            f"out of {len(size_group):,} in {time.time() - sw:.1f}s",
        )

        # Stage 2: metadata + catalog reconciliation, feeding stage 3 directly
        hash_group = HashGroup(log_cb)
        updater = MetadataUpdater(
            catalog,
            link_store,
            writer,
            algorithm=cfg.dedupe.digest,
            chunk_size=cfg.dedupe.chunk_bytes,
            log_cb=log_cb,
        )
        updater.update_all(candidates, max_workers=workers, sink=hash_group.add, progress_cb=progress_cb)
        meta = updater.stats
        stats.total, stats.existing, stats.created = meta.total, meta.existing, meta.created
        stats.updated, stats.errors = meta.updated, meta.errors

        # linking decisions read the catalog, so new records must be on disk first
        writer.flush()

        # Stage 3: hash grouping
        hash_candidates = hash_group.non_unique_map()
        emit_log(
            log_cb,
            f"[HASH] Found {sum(len(m) for m in hash_candidates.values()):,} files with matching hashes "
            f"in {len(hash_candidates):,} groups",
        )

        # Stage 4: optional byte verification
        if cfg.paranoid:
            emit_log(log_cb, "[COMPARE] Comparing files by contents...")
            compare = CompareFile(cfg.dedupe.compare_chunk_bytes, log_cb)
            groups = compare.group_identical_files(hash_candidates)
        else:
            groups = list(hash_candidates.values())
        result.duplicate_groups = groups
        stats.groups = len(groups)
        emit_log(log_cb, f"[COMPARE] After comparing and grouping, there are {len(groups):,} groups")

        # Linking
        linker = Linker.for_run(cfg.dry_run, log_cb)
        emit_log(log_cb, f"[LINK] Using {linker.mode.value} linker...")
        group_linker = GroupLinker(linker, link_store, writer, LinkedFilter(link_store, log_cb), log_cb)
        result.group_results = _link_groups(group_linker, groups, workers, stats, progress_cb)
        emit_log(
            log_cb,
            f"[LINK] Linked {stats.linked:,} files; skipped {stats.skipped:,} groups with nothing left to link; "
            f"{stats.failed_groups:,} groups had failures",
        )
    finally:
        writer.shutdown()

    emit_log(log_cb, "[DONE] Pipeline complete")
    return result


def _link_groups(
    group_linker: GroupLinker,
    groups: Sequence[Set[FileRecord]],
    workers: int,
    stats: PipelineStats,
    progress_cb: Optional[ProgressCallback],
) -> List[GroupResult]:
    results: List[GroupResult] = []
    total = len(groups)
    with ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(group_linker.link_group, g) for g in groups]
        for i, fut in enumerate(as_completed(futures), 1):
            group_result = fut.result()
            if group_result is None:
                stats.skipped += 1
            else:
                results.append(group_result)
                stats.linked += len(group_result.linked)
                if not group_result.success:
                    stats.failed_groups += 1
            emit(progress_cb, "link", i, total, f"Linked {i:,}/{total:,} groups")
    results.sort(key=lambda r: r.source.path)
    return results


def run_from_config(
    cfg: DupelinkConfig,
    roots: Optional[Sequence[str]] = None,
    log_cb: Optional[LogCallback] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> PipelineResult:
    """Walk the configured roots, open the catalog and run the whole pipeline."""
    roots = list(roots) if roots else list(cfg.roots)
    if not roots:
        raise ValueError("No root directories given")

    def walk() -> Iterable[Path]:
        for root in roots:
            emit_log(log_cb, f"[RUN] walking root: {root}")
            yield from find_files(Path(root), cfg.ignore_patterns, log_cb=log_cb)

    emit_log(log_cb, f"[RUN] Opening catalog {cfg.db.path}...")
    with Catalog.open(cfg.db.path, cfg.db.journal_mode, cfg.db.synchronous) as catalog:
        return run_pipeline(walk(), catalog, cfg, log_cb=log_cb, progress_cb=progress_cb)

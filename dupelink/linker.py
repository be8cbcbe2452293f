"""Replace duplicate files with hard links to one representative copy."""
from __future__ import annotations

import os
import sqlite3
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Collection, List, Optional, Sequence, Tuple

from .batch_writer import BatchWriter
from .links import LinkedFilter, LinkStore
from .records import FileRecord
from .util import LogCallback, emit_log


class LinkMode(Enum):
    HARD_LINK = "hard-link"
    LOG_ONLY = "log-only"


@dataclass
class LinkOutcome:
    linked: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)


def same_filesystem(a: Path, b: Path) -> bool:
    return os.stat(a).st_dev == os.stat(b).st_dev


def replace_with_link(source: Path, target: Path, log_cb: Optional[LogCallback] = None) -> None:
    """Swap ``target`` for a hard link to ``source`` without the target path ever going missing.

    The link is created under a sibling temp name and then renamed over the
    target in one step. On failure the original target is untouched.
    """
    tmp = target.with_name(f"{target.name}.dupelink-{uuid.uuid4().hex[:12]}.tmp")
    os.link(source, tmp)
    try:
        os.replace(tmp, target)
    except OSError:
        try:
            tmp.unlink()
        except OSError as cleanup_exc:
            emit_log(log_cb, f"[LINK][WARN] Left temporary link {tmp} behind: {cleanup_exc}")
        raise


class Linker:
    """Either performs hard links or only reports them, chosen once per run."""

    def __init__(self, mode: LinkMode = LinkMode.HARD_LINK, log_cb: Optional[LogCallback] = None) -> None:
        self.mode = mode
        self.log_cb = log_cb

    @classmethod
    def for_run(cls, dry_run: bool, log_cb: Optional[LogCallback] = None) -> "Linker":
        return cls(LinkMode.LOG_ONLY if dry_run else LinkMode.HARD_LINK, log_cb)

    @property
    def dry_run(self) -> bool:
        return self.mode is LinkMode.LOG_ONLY

    def link(self, source: Path, targets: Sequence[Path]) -> LinkOutcome:
        if self.mode is LinkMode.LOG_ONLY:
            return self._log_links(source, targets)
        return self._hard_link(source, targets)

    def _log_links(self, source: Path, targets: Sequence[Path]) -> LinkOutcome:
        lines = [f"[DRY-RUN] Would link to {source}:"]
        lines.extend(f"    -> {t}" for t in targets)
        emit_log(self.log_cb, "\n".join(lines))
        return LinkOutcome(linked=list(targets))

    def _hard_link(self, source: Path, targets: Sequence[Path]) -> LinkOutcome:
        outcome = LinkOutcome()
        for target in targets:
            try:
                if not same_filesystem(source, target):
                    emit_log(self.log_cb, f"[LINK][WARN] {source} and {target} are not on the same filesystem, skipping...")
                    outcome.skipped.append(target)
                    continue
                if not os.path.samefile(source, target):
                    replace_with_link(source, target, self.log_cb)
                outcome.linked.append(target)
            except OSError as e:
                emit_log(self.log_cb, f"[LINK][ERROR] Failed to create hard link from {source} to {target}: {e}")
                outcome.failed.append(target)
        return outcome


@dataclass
class GroupResult:
    source: FileRecord
    targets: List[FileRecord]
    success: bool
    dry_run: bool = False
    linked: List[FileRecord] = field(default_factory=list)
    skipped: List[FileRecord] = field(default_factory=list)
    failed: List[FileRecord] = field(default_factory=list)


def select_source(group: Collection[FileRecord]) -> Tuple[FileRecord, List[FileRecord]]:
    """The member with the smallest path is the source; the rest are targets."""
    ordered = sorted(group, key=lambda r: r.path)
    return ordered[0], ordered[1:]


class GroupLinker:
    def __init__(
        self,
        linker: Linker,
        link_store: LinkStore,
        batch_writer: BatchWriter,
        linked_filter: Optional[LinkedFilter] = None,
        log_cb: Optional[LogCallback] = None,
    ) -> None:
        self.linker = linker
        self.link_store = link_store
        self.batch_writer = batch_writer
        self.linked_filter = linked_filter or LinkedFilter(link_store, log_cb)
        self.log_cb = log_cb

    def link_group(self, group: Collection[FileRecord]) -> Optional[GroupResult]:
        """Link one equivalence class; returns None when there is nothing left to link."""
        if len(group) < 2:
            return None
        source, others = select_source(group)
        targets = sorted(self.linked_filter.filter_linked(source, others), key=lambda r: r.path)
        if not targets:
            return None

        by_path = {t.path: t for t in targets}
        outcome = self.linker.link(Path(source.path), [Path(t.path) for t in targets])
        result = GroupResult(
            source=source,
            targets=targets,
            success=not outcome.failed,
            dry_run=self.linker.dry_run,
            linked=[by_path[str(p)] for p in outcome.linked],
            skipped=[by_path[str(p)] for p in outcome.skipped],
            failed=[by_path[str(p)] for p in outcome.failed],
        )
        if result.success and not result.dry_run:
            self._record_links(source, result.linked)
        return result

    def _record_links(self, source: FileRecord, linked: List[FileRecord]) -> None:
        for target in linked:
            try:
                self.link_store.link_files(source, target)
            except sqlite3.Error as e:
                emit_log(self.log_cb, f"[LINK][WARN] Failed to record link {target.path} -> {source.path}: {e}")
                continue
            refreshed = self._refresh_target(source, target)
            if refreshed is not None:
                self.batch_writer.add(refreshed)

    def _refresh_target(self, source: FileRecord, target: FileRecord) -> Optional[FileRecord]:
        # the target now shares the source's inode, so its mtime follows the source
        try:
            st = os.stat(target.path)
        except OSError as e:
            emit_log(self.log_cb, f"[LINK][WARN] Failed to refresh metadata for {target.path}: {e}")
            return None
        return FileRecord(
            path=target.path,
            size=st.st_size,
            modified_time=st.st_mtime_ns // 1_000_000,
            digest=source.digest,
            digest_algorithm=source.digest_algorithm,
            file_id=target.file_id,
        )

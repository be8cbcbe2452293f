# dupelink/grouping.py
"""
Grouping stages of duplicate detection:
1. Size grouping over candidate paths (files with a unique size drop out)
2. Hash grouping over catalog records (files with a unique digest drop out)
3. Optional byte-for-byte verification inside each hash group
"""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Collection, Dict, Iterable, List, Optional, Set

from .records import FileRecord
from .util import LogCallback, emit_log, file_size, files_equal


class SizeGroup:
    def __init__(self, max_workers: int = 8, log_cb: Optional[LogCallback] = None) -> None:
        self.max_workers = max_workers
        self.log_cb = log_cb
        self._groups: Dict[int, Set[Path]] = {}
        self._lock = threading.Lock()

    def _put(self, size: int, path: Path) -> None:
        with self._lock:
            self._groups.setdefault(size, set()).add(path)

    def add(self, paths: Iterable[Path]) -> None:
        """Stat every path in parallel and file its absolute path under its size."""
        def stat_size(path: Path) -> None:
            self._put(file_size(path), path)

        with ThreadPoolExecutor(max_workers=self.max_workers) as ex:
            fut_map = {ex.submit(stat_size, Path(p).absolute()): p for p in paths}
            for fut in as_completed(fut_map):
                try:
                    fut.result()
                except OSError as e:
                    emit_log(self.log_cb, f"[SIZE][WARN] Failed to get size for {fut_map[fut]}: {e}")

    def same_size_files(self) -> List[Path]:
        """Paths sharing their size with at least one other path."""
        same: List[Path] = []
        for size in sorted(self._groups):
            members = self._groups[size]
            if len(members) > 1:
                same.extend(sorted(members))
        return same

    def __len__(self) -> int:
        return sum(len(m) for m in self._groups.values())


class HashGroup:
    def __init__(self, log_cb: Optional[LogCallback] = None) -> None:
        self.log_cb = log_cb
        self._groups: Dict[bytes, Set[FileRecord]] = {}
        self._lock = threading.Lock()

    def add(self, record: FileRecord) -> None:
        """Thread-safe insert keyed by content digest."""
        with self._lock:
            self._groups.setdefault(record.digest, set()).add(record)

    def add_all(self, records: Iterable[FileRecord]) -> None:
        for record in records:
            self.add(record)
        emit_log(self.log_cb, f"[HASH] Currently mapped {len(self):,} files to {len(self._groups):,} unique hashes")

    def non_unique_map(self) -> Dict[bytes, Set[FileRecord]]:
        """Digest -> records, for digests shared by at least two records."""
        return {digest: set(members) for digest, members in sorted(self._groups.items()) if len(members) > 1}

    def same_hash(self) -> List[FileRecord]:
        same: List[FileRecord] = []
        for members in self.non_unique_map().values():
            same.extend(sorted(members, key=lambda r: r.path))
        return same

    def __len__(self) -> int:
        return sum(len(m) for m in self._groups.values())


class CompareFile:
    """Split hash-collision groups into classes of byte-identical files."""

    def __init__(self, chunk_size: int = 65536, log_cb: Optional[LogCallback] = None) -> None:
        self.chunk_size = chunk_size
        self.log_cb = log_cb

    def equal(self, a: FileRecord, b: FileRecord) -> bool:
        """Byte comparison; an I/O error counts as not equal."""
        try:
            return files_equal(Path(a.path), Path(b.path), self.chunk_size)
        except OSError as e:
            emit_log(self.log_cb, f"[COMPARE][WARN] Failed to compare {a.path} and {b.path}: {e}")
            return False

    def group_files(self, to_group: Collection[FileRecord]) -> List[Set[FileRecord]]:
        remaining = sorted(to_group, key=lambda r: r.path)
        classes: List[Set[FileRecord]] = []
        while remaining:
            pivot = remaining.pop(0)
            identical = {pivot}
            unmatched: List[FileRecord] = []
            for candidate in remaining:
                if self.equal(pivot, candidate):
                    identical.add(candidate)
                else:
                    unmatched.append(candidate)
            classes.append(identical)
            remaining = unmatched
        return classes

    def group_identical_files(self, candidates: Dict[bytes, Set[FileRecord]]) -> List[Set[FileRecord]]:
        groups: List[Set[FileRecord]] = []
        for members in candidates.values():
            groups.extend(self.group_files(members))
        return groups

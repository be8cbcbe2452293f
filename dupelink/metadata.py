from __future__ import annotations

import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from .batch_writer import BatchWriter
from .db import Catalog
from .links import LinkStore
from .records import FileRecord
from .util import (
    DEFAULT_CHUNK_BYTES,
    LogCallback,
    ProgressCallback,
    create_record_from_file,
    emit,
    emit_log,
    has_changed,
    update_record,
)

CREATED = "created"
EXISTING = "existing"
UPDATED = "updated"
ERROR = "error"


@dataclass
class MetadataStats:
    total: int = 0
    existing: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0

    def record(self, status: str) -> None:
        self.total += 1
        if status == CREATED:
            self.created += 1
        elif status in (EXISTING, UPDATED):
            # updated records were already known, so they count as existing too
            self.existing += 1
            if status == UPDATED:
                self.updated += 1
        else:
            self.errors += 1


class MetadataUpdater:
    """Bring catalog records in line with the files on disk.

    Unknown paths are hashed and queued as new records. Known paths whose size
    and modified time still match keep their stored digest without being
    re-read. Known paths that changed are re-hashed, queued for update, and
    lose every link relation they took part in. Known paths whose stored digest
    came from another algorithm are re-hashed and queued, keeping their links.
    """

    def __init__(
        self,
        catalog: Catalog,
        link_store: LinkStore,
        batch_writer: BatchWriter,
        algorithm: str = "blake3",
        chunk_size: int = DEFAULT_CHUNK_BYTES,
        log_cb: Optional[LogCallback] = None,
    ) -> None:
        self.catalog = catalog
        self.link_store = link_store
        self.batch_writer = batch_writer
        self.algorithm = algorithm
        self.chunk_size = chunk_size
        self.log_cb = log_cb
        self.stats = MetadataStats()

    def reconcile(self, path: Path) -> Tuple[str, Optional[FileRecord]]:
        try:
            meta = self.catalog.get_by_path(str(path))
            if meta is None:
                meta = create_record_from_file(path, self.algorithm, self.chunk_size)
                self.batch_writer.add(meta)
                return CREATED, meta
            if has_changed(meta):
                emit_log(self.log_cb, f"[META] File {meta.path} has changed, updating metadata")
                meta = update_record(meta, self.algorithm, self.chunk_size)
                self.batch_writer.add(meta)
                self.link_store.delete_links_with(meta)
                return UPDATED, meta
            if meta.digest_algorithm != self.algorithm:
                # content is unchanged, so existing links stay valid
                emit_log(
                    self.log_cb,
                    f"[META] Re-hashing {meta.path} with {self.algorithm} (stored digest is {meta.digest_algorithm})",
                )
                meta = update_record(meta, self.algorithm, self.chunk_size)
                self.batch_writer.add(meta)
                return UPDATED, meta
            return EXISTING, meta
        except OSError as e:
            emit_log(self.log_cb, f"[META][WARN] Failed to generate metadata for {path}: {e}")
        except sqlite3.Error as e:
            emit_log(self.log_cb, f"[META][ERROR] Failed to access catalog for {path}: {e}")
        return ERROR, None

    def update_all(
        self,
        paths: Iterable[Path],
        max_workers: int = 8,
        sink: Optional[Callable[[FileRecord], None]] = None,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> List[FileRecord]:
        """Reconcile every path in parallel; ``sink`` receives each usable record from the worker thread."""

        def work(path: Path) -> Tuple[str, Optional[FileRecord]]:
            status, record = self.reconcile(path)
            if record is not None and sink is not None:
                sink(record)
            return status, record

        paths = list(paths)
        total = len(paths)
        records: List[FileRecord] = []
        start = time.time()
        emit(progress_cb, "metadata", 0, total, f"Generating metadata for {total:,} files")
        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            futures = [ex.submit(work, p) for p in paths]
            for i, fut in enumerate(as_completed(futures), 1):
                status, record = fut.result()
                self.stats.record(status)
                if record is not None:
                    records.append(record)
                if i % 100 == 0 or i == total:
                    emit(progress_cb, "metadata", i, total, f"Processed {i:,}/{total:,} files")

        s = self.stats
        emit_log(
            self.log_cb,
            f"[META] From a total of {s.total:,} files, {s.existing:,} were already known, of which "
            f"{s.updated:,} were updated, {s.created:,} new entries were added and {s.errors:,} errors "
            f"were encountered ({time.time() - start:.1f}s)",
        )
        return records

"""Write-behind queue for catalog records.

Callers hand records to :class:`BatchWriter` from any thread; they are written
in bulk, one transaction per flush, instead of paying a commit per file.
Flushing is opportunistic: it happens when a caller notices the interval has
elapsed, when :meth:`BatchWriter.flush` is called, and on shutdown. There is
no background timer.
"""
from __future__ import annotations

import sqlite3
import threading
import time
from collections import deque
from typing import Deque, List, Optional, Tuple

from .db import Catalog
from .records import FileRecord
from .util import LogCallback, emit_log

DEFAULT_FLUSH_INTERVAL = 60.0


class WriterClosedError(RuntimeError):
    """Raised when records are handed to a writer after shutdown."""


class BatchWriter:
    def __init__(
        self,
        catalog: Catalog,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        log_cb: Optional[LogCallback] = None,
    ) -> None:
        self.catalog = catalog
        self.flush_interval = flush_interval
        self.log_cb = log_cb
        self._to_persist: Deque[FileRecord] = deque()
        self._to_replace: List[Tuple[FileRecord, FileRecord]] = []
        self._replace_lock = threading.Lock()
        self._flushing = threading.Lock()
        self._write_lock = threading.Lock()
        self._shutting_down = False
        self._last_flush = time.monotonic()

    def _shutdown_check(self) -> None:
        if self._shutting_down:
            raise WriterClosedError("Batch writer is shutting down")

    def add(self, record: FileRecord) -> None:
        """Queue a create-or-update by path, flushing if the interval has passed."""
        self._shutdown_check()
        self._to_persist.append(record)
        self.flush_check()

    def replace(self, old: FileRecord, new: FileRecord) -> None:
        """Queue an atomic delete of ``old`` followed by a create of ``new``."""
        self._shutdown_check()
        with self._replace_lock:
            self._to_replace.append((old, new))

    def pending(self) -> int:
        with self._replace_lock:
            return len(self._to_persist) + len(self._to_replace)

    def flush_check(self) -> None:
        if time.monotonic() - self._last_flush > self.flush_interval:
            self.flush()

    def flush(self) -> None:
        """Write everything queued so far; dropped if another flush is running."""
        if not self._flushing.acquire(blocking=False):
            return
        try:
            self._write_to_database()
        finally:
            self._flushing.release()

    def shutdown(self) -> None:
        self._shutting_down = True
        emit_log(self.log_cb, f"[WRITER] Shutting down, writing {self.pending():,} pending rows...")
        self._write_to_database()

    def _write_to_database(self) -> None:
        with self._write_lock:
            try:
                self._write_new_entries()
                self._write_replaced_entries()
            except sqlite3.Error as exc:
                emit_log(self.log_cb, f"[WRITER][WARN] Batch transaction failed: {exc}")
            finally:
                self._last_flush = time.monotonic()

    def _write_new_entries(self) -> None:
        written = 0
        with self.catalog.transaction() as cur:
            while self._to_persist:
                try:
                    record = self._to_persist.popleft()
                except IndexError:
                    break
                try:
                    self.catalog.create_or_update(cur, record)
                    written += 1
                except sqlite3.Error as exc:
                    emit_log(self.log_cb, f"[WRITER][WARN] Failed to write {record.path}: {exc}")
        if written:
            emit_log(self.log_cb, f"[WRITER] wrote {written:,} records")

    def _write_replaced_entries(self) -> None:
        with self._replace_lock:
            batch, self._to_replace = self._to_replace, []
        if not batch:
            return
        with self.catalog.transaction() as cur:
            if not cur.connection.in_transaction:
                cur.execute("BEGIN")
            for old, new in batch:
                # each pair is all-or-nothing without aborting the others
                cur.execute("SAVEPOINT replace_entry")
                try:
                    self.catalog.delete(cur, old)
                    self.catalog.create(cur, new)
                    cur.execute("RELEASE replace_entry")
                except sqlite3.Error as exc:
                    cur.execute("ROLLBACK TO replace_entry")
                    cur.execute("RELEASE replace_entry")
                    emit_log(self.log_cb, f"[WRITER][WARN] Failed to replace {old.path} with {new.path}: {exc}")

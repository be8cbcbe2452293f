from __future__ import annotations

import sqlite3
from typing import Collection, List, Optional

from .db import Catalog, _row_to_record
from .records import FileRecord, LinkRecord
from .util import LogCallback, emit_log

_FILE_COLUMNS = "f.file_id, f.path, f.size, f.modified_time, f.digest, f.digest_algorithm"


class LinkStore:
    """Source -> target link relations; a target is linked to at most one source."""

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog

    @staticmethod
    def _require_id(cur: sqlite3.Cursor, record: FileRecord) -> int:
        file_id = Catalog.file_id_for(cur, record.path)
        if file_id is None:
            raise sqlite3.IntegrityError(f"No catalog record for {record.path}")
        return file_id

    def link_files(self, source: FileRecord, target: FileRecord) -> None:
        """Record that ``target`` now points at ``source``, dropping any older link for it."""
        with self.catalog.transaction() as cur:
            source_id = self._require_id(cur, source)
            target_id = self._require_id(cur, target)
            cur.execute("DELETE FROM links WHERE target_id = ?", (target_id,))
            cur.execute("INSERT INTO links (source_id, target_id) VALUES (?, ?)", (source_id, target_id))

    def get_links_to(self, source: FileRecord) -> List[FileRecord]:
        with self.catalog.lock:
            rows = self.catalog.con.execute(
                "SELECT " + _FILE_COLUMNS + " FROM links l "
                "JOIN files s ON s.file_id = l.source_id "
                "JOIN files f ON f.file_id = l.target_id "
                "WHERE s.path = ?",
                (source.path,),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def delete_links_with(self, record: FileRecord) -> int:
        """Delete every link naming ``record`` as source or target; returns the count removed."""
        with self.catalog.transaction() as cur:
            file_id = Catalog.file_id_for(cur, record.path)
            if file_id is None:
                return 0
            cur.execute("DELETE FROM links WHERE source_id = ? OR target_id = ?", (file_id, file_id))
            return cur.rowcount

    def all_links(self) -> List[LinkRecord]:
        with self.catalog.lock:
            rows = self.catalog.con.execute(
                "SELECT l.link_id, "
                "s.file_id, s.path, s.size, s.modified_time, s.digest, s.digest_algorithm, "
                "t.file_id, t.path, t.size, t.modified_time, t.digest, t.digest_algorithm "
                "FROM links l "
                "JOIN files s ON s.file_id = l.source_id "
                "JOIN files t ON t.file_id = l.target_id "
                "ORDER BY l.link_id"
            ).fetchall()
        return [
            LinkRecord(source=_row_to_record(r[1:7]), target=_row_to_record(r[7:13]), link_id=int(r[0]))
            for r in rows
        ]

    def count(self) -> int:
        with self.catalog.lock:
            return self.catalog.con.execute("SELECT COUNT(*) FROM links").fetchone()[0]


class LinkedFilter:
    """Drop group members that are already recorded as linked to the source."""

    def __init__(self, link_store: LinkStore, log_cb: Optional[LogCallback] = None) -> None:
        self.link_store = link_store
        self.log_cb = log_cb

    def filter_linked(self, source: FileRecord, candidates: Collection[FileRecord]) -> List[FileRecord]:
        """Return the candidates still needing a link; never contains ``source``."""
        try:
            known = set(self.link_store.get_links_to(source))
        except sqlite3.Error as exc:
            emit_log(self.log_cb, f"[LINKS][WARN] Failed to get known links for {source.path}: {exc}")
            known = set()
        return [c for c in candidates if c != source and c not in known]

from __future__ import annotations
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .records import FileRecord

DEFAULT_DB_PATH = "dedupe.db"
MEMORY = ":memory:"

DDL = r"""
CREATE TABLE IF NOT EXISTS files (
  file_id INTEGER PRIMARY KEY,
  path TEXT NOT NULL,
  size INTEGER NOT NULL,
  modified_time INTEGER NOT NULL,
  digest BLOB NOT NULL,
  digest_algorithm TEXT NOT NULL DEFAULT 'blake3'
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_files_path ON files(path);
CREATE INDEX IF NOT EXISTS idx_files_size ON files(size);
CREATE INDEX IF NOT EXISTS idx_files_digest ON files(digest);
CREATE TABLE IF NOT EXISTS links (
  link_id INTEGER PRIMARY KEY,
  source_id INTEGER NOT NULL REFERENCES files(file_id) ON DELETE CASCADE,
  target_id INTEGER NOT NULL REFERENCES files(file_id) ON DELETE CASCADE
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_links_target ON links(target_id);
CREATE INDEX IF NOT EXISTS idx_links_source ON links(source_id);
"""

FILE_COLUMNS = "file_id, path, size, modified_time, digest, digest_algorithm"

def connect(db_path: Path, journal_mode: str = "WAL", synchronous: str = "NORMAL") -> sqlite3.Connection:
    if str(db_path) != MEMORY:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    # shared between worker threads; Catalog serialises access
    con = sqlite3.connect(str(db_path), check_same_thread=False)
    con.execute("PRAGMA foreign_keys=ON;")
    con.execute("PRAGMA page_size=4096;")
    con.execute("PRAGMA cache_size=5120;")
    con.execute(f"PRAGMA journal_mode={journal_mode};")
    con.execute(f"PRAGMA synchronous={synchronous};")
    con.execute("PRAGMA temp_store=MEMORY;")
    con.execute("PRAGMA busy_timeout=5000;")
    return con

def migrate(con: sqlite3.Connection) -> None:
    con.executescript(DDL)
    # Schema upgrades: catalogs written before digests were tagged hold blake3 digests
    cur = con.cursor()
    cur.execute("PRAGMA table_info(files)")
    cols = {row[1] for row in cur.fetchall()}
    if "digest_algorithm" not in cols:
        cur.execute("ALTER TABLE files ADD COLUMN digest_algorithm TEXT NOT NULL DEFAULT 'blake3'")
    con.commit()

def _row_to_record(row) -> FileRecord:
    file_id, path, size, modified_time, digest, digest_algorithm = row
    return FileRecord(
        path=path,
        size=int(size),
        modified_time=int(modified_time),
        digest=bytes(digest),
        digest_algorithm=digest_algorithm,
        file_id=int(file_id),
    )


class Catalog:
    """Long-lived handle on the catalog database.

    One instance is opened per run and handed to every component that reads or
    writes records. All statements go through ``lock`` so the handle can be
    shared by worker threads.
    """

    def __init__(self, con: sqlite3.Connection) -> None:
        self.con = con
        self.lock = threading.RLock()
        migrate(con)

    @classmethod
    def open(cls, path: str = DEFAULT_DB_PATH, journal_mode: str = "WAL", synchronous: str = "NORMAL") -> "Catalog":
        return cls(connect(Path(path), journal_mode, synchronous))

    @classmethod
    def in_memory(cls) -> "Catalog":
        return cls.open(MEMORY)

    def close(self) -> None:
        with self.lock:
            self.con.close()

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run the enclosed statements as one transaction; rolls back on error."""
        with self.lock:
            cur = self.con.cursor()
            try:
                yield cur
            except BaseException:
                self.con.rollback()
                raise
            else:
                self.con.commit()
            finally:
                cur.close()

    def get_by_path(self, path: str) -> Optional[FileRecord]:
        with self.lock:
            row = self.con.execute(
                f"SELECT {FILE_COLUMNS} FROM files WHERE path = ?",
                (path,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def has_record(self, path: str) -> bool:
        return self.get_by_path(path) is not None

    def count_files(self) -> int:
        with self.lock:
            return self.con.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    # Statement helpers below expect to run inside ``transaction()``.

    @staticmethod
    def file_id_for(cur: sqlite3.Cursor, path: str) -> Optional[int]:
        cur.execute("SELECT file_id FROM files WHERE path = ?", (path,))
        row = cur.fetchone()
        return int(row[0]) if row else None

    @staticmethod
    def create_or_update(cur: sqlite3.Cursor, record: FileRecord) -> None:
        cur.execute(
            """INSERT INTO files (path, size, modified_time, digest, digest_algorithm) VALUES (?,?,?,?,?)
            ON CONFLICT(path) DO UPDATE SET
              size=excluded.size, modified_time=excluded.modified_time, digest=excluded.digest,
              digest_algorithm=excluded.digest_algorithm""",
            (record.path, record.size, record.modified_time, record.digest, record.digest_algorithm),
        )

    @staticmethod
    def create(cur: sqlite3.Cursor, record: FileRecord) -> None:
        cur.execute(
            "INSERT INTO files (path, size, modified_time, digest, digest_algorithm) VALUES (?,?,?,?,?)",
            (record.path, record.size, record.modified_time, record.digest, record.digest_algorithm),
        )

    @staticmethod
    def delete(cur: sqlite3.Cursor, record: FileRecord) -> None:
        cur.execute("DELETE FROM files WHERE path = ?", (record.path,))

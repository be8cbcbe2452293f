from __future__ import annotations
from pathlib import Path
import hashlib
from typing import Any, Callable, Optional

import blake3
import xxhash

from .records import FileRecord

ProgressCallback = Callable[[str, int, int, str], None]
LogCallback = Callable[[str], None]

DEFAULT_CHUNK_BYTES = 2 * 1024 * 1024


def emit(cb: Optional[Callable[..., None]], *args: Any) -> None:
    if not cb:
        return
    try:
        cb(*args)
    except Exception:
        pass


def emit_log(log_cb: Optional[LogCallback], message: str) -> None:
    print(message)
    emit(log_cb, message)


def _new_hasher(algorithm: str) -> Any:
    if algorithm == "blake3":
        return blake3.blake3()
    if algorithm == "xxh128":
        return xxhash.xxh128()
    if algorithm in ("sha256", "sha512"):
        return hashlib.new(algorithm)
    raise ValueError(f"Unsupported digest algorithm: {algorithm}")


def file_size(path: Path) -> int:
    return path.stat().st_size


def last_modified(path: Path) -> int:
    """Modification time in milliseconds since epoch."""
    return path.stat().st_mtime_ns // 1_000_000


def content_digest(path: Path, algorithm: str = "blake3", chunk_size: int = DEFAULT_CHUNK_BYTES) -> bytes:
    h = _new_hasher(algorithm)
    with open(path, "rb") as f:
        while True:
            b = f.read(chunk_size)
            if not b:
                break
            h.update(b)
    return h.digest()


def files_equal(path1: Path, path2: Path, chunk_size: int = 65536) -> bool:
    """Compare two files byte for byte, stopping at the first difference.

    A file that ends before the other is never equal to it.
    """
    with open(path1, "rb") as f1, open(path2, "rb") as f2:
        while True:
            b1 = f1.read(chunk_size)
            b2 = f2.read(chunk_size)
            if b1 != b2:
                return False
            if not b1:
                return True


def create_record_from_file(path: Path, algorithm: str = "blake3", chunk_size: int = DEFAULT_CHUNK_BYTES) -> FileRecord:
    st = path.stat()
    return FileRecord(
        path=str(path),
        size=st.st_size,
        modified_time=st.st_mtime_ns // 1_000_000,
        digest=content_digest(path, algorithm, chunk_size),
        digest_algorithm=algorithm,
    )


def update_record(record: FileRecord, algorithm: str = "blake3", chunk_size: int = DEFAULT_CHUNK_BYTES) -> FileRecord:
    """Re-read size, modified time and digest for a known record, keeping its row id."""
    fresh = create_record_from_file(Path(record.path), algorithm, chunk_size)
    fresh.file_id = record.file_id
    return fresh


def has_changed(record: FileRecord) -> bool:
    """Fast staleness check on (size, modified time); may miss same-size edits within the same millisecond."""
    path = Path(record.path)
    return last_modified(path) != record.modified_time or file_size(path) != record.size

"""Catalog record types.

Equality and hashing are structural over the stored attributes only. The
surrogate row ids are carried along for convenience but never take part in
comparisons, so a record read back from the catalog equals the record that
was written.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class FileRecord:
    path: str
    size: int
    modified_time: int  # milliseconds since epoch
    digest: bytes
    digest_algorithm: str = "blake3"
    file_id: Optional[int] = field(default=None, compare=False, repr=False)

    def __hash__(self) -> int:
        return hash((self.path, self.size, self.modified_time, self.digest, self.digest_algorithm))

    @property
    def digest_hex(self) -> str:
        return self.digest.hex()

    @property
    def signature(self) -> tuple:
        return (self.size, self.modified_time)


@dataclass(frozen=True)
class LinkRecord:
    source: FileRecord
    target: FileRecord
    link_id: Optional[int] = field(default=None, compare=False, repr=False)

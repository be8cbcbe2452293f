from __future__ import annotations
import re
from pathlib import Path
from typing import List, Literal
from pydantic import BaseModel, Field, field_validator, model_validator
import yaml

DigestName = Literal["blake3", "sha256", "sha512", "xxh128"]

class DBConfig(BaseModel):
    path: str = "dedupe.db"
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

class WriterConfig(BaseModel):
    flush_interval_seconds: float = 60.0

class DedupeConfig(BaseModel):
    max_workers: int = Field(8, ge=1)
    digest: DigestName = "blake3"
    chunk_bytes: int = Field(2 * 1024 * 1024, ge=1)  # 2 MB streaming chunks
    compare_chunk_bytes: int = Field(65536, ge=1)

class DupelinkConfig(BaseModel):
    roots: List[str] = Field(default_factory=list)
    ignore_patterns: List[str] = Field(default_factory=list)
    dry_run: bool = False
    paranoid: bool = False
    db: DBConfig = DBConfig()
    writer: WriterConfig = WriterConfig()
    dedupe: DedupeConfig = DedupeConfig()

    @field_validator("ignore_patterns")
    @classmethod
    def _patterns_compile(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid ignore pattern {pattern!r}: {exc}") from exc
        return value

    @model_validator(mode="after")
    def _weak_digest_needs_paranoid(self) -> "DupelinkConfig":
        # xxh128 is not collision resistant, byte verification has to back it
        if self.dedupe.digest == "xxh128" and not self.paranoid:
            raise ValueError("digest 'xxh128' requires paranoid mode")
        return self

def load_config(path: Path) -> DupelinkConfig:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return DupelinkConfig(**data)

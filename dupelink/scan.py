# dupelink/scan.py
from __future__ import annotations
import os
import re
from pathlib import Path
from typing import Iterator, List, Optional, Pattern, Sequence, Union

from .util import LogCallback, emit_log


class RegexPathPredicate:
    """True when the whole path string matches the pattern."""

    def __init__(self, pattern: Union[str, Pattern[str]]) -> None:
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern

    def __call__(self, path: Path) -> bool:
        return self.pattern.fullmatch(str(path)) is not None


def should_skip_path(p: Path, predicates: Sequence[RegexPathPredicate]) -> bool:
    return any(pred(p) for pred in predicates)


def find_files(
    root: Path,
    ignore_patterns: Optional[Sequence[str]] = None,
    log_cb: Optional[LogCallback] = None,
) -> Iterator[Path]:
    """Recursively yield regular files under ``root`` whose paths match no ignore pattern."""
    predicates: List[RegexPathPredicate] = [RegexPathPredicate(p) for p in ignore_patterns or []]
    root = Path(root).absolute()
    if not root.exists():
        emit_log(log_cb, f"[WARN] Root does not exist: {root}")
        return

    def on_error(err: OSError) -> None:
        emit_log(log_cb, f"[WARN] Failed to list {err.filename}: {err}")

    for dirpath, _dirnames, filenames in os.walk(root, onerror=on_error):
        dpath = Path(dirpath)
        for name in sorted(filenames):
            p = dpath / name
            if should_skip_path(p, predicates):
                continue
            # symlinks are not candidates
            if p.is_symlink() or not p.is_file():
                continue
            yield p

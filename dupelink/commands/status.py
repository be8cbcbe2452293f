"""CLI command for reporting catalog contents."""
from __future__ import annotations

import argparse
from argparse import _SubParsersAction
from pathlib import Path
from typing import Optional, Sequence

from ..db import DEFAULT_DB_PATH, Catalog
from ..links import LinkStore


def _configure_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-d", "--db", default=DEFAULT_DB_PATH, help="Path to the catalog database")


def add_parser(subparsers: _SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "status",
        help="Show catalog record counts",
        description="Report how many files and links the catalog holds.",
    )
    _configure_parser(parser)
    parser.set_defaults(handler=run_from_args)
    return parser


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog or "dupelink status", description="Show catalog record counts")
    _configure_parser(parser)
    return parser


def run_from_args(args: argparse.Namespace) -> int:
    if args.db != ":memory:" and not Path(args.db).exists():
        raise SystemExit(f"Catalog database not found at {args.db}")
    with Catalog.open(args.db) as catalog:
        files = catalog.count_files()
        links = LinkStore(catalog).count()
        with catalog.lock:
            groups = catalog.con.execute("SELECT COUNT(DISTINCT source_id) FROM links").fetchone()[0]
            reclaimed = catalog.con.execute(
                "SELECT COALESCE(SUM(f.size), 0) FROM links l JOIN files f ON f.file_id = l.target_id"
            ).fetchone()[0]

    print(f"Files cataloged:     {files:>10,}")
    print(f"Links recorded:      {links:>10,}")
    print(f"Link sources:        {groups:>10,}")
    print(f"Space reclaimed:     {reclaimed / float(1024**3):>10.2f} GB")
    return 0


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return run_from_args(args)


__all__ = ["add_parser", "build_parser", "run_cli", "run_from_args"]

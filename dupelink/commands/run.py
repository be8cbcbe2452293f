"""CLI command for finding duplicates and replacing them with hard links."""
from __future__ import annotations

import argparse
from argparse import _SubParsersAction
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from ..config import DupelinkConfig, load_config
from ..pipeline import PipelineResult, run_from_config


def _configure_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("dir", nargs="*", help="Directories to walk for files (added to configured roots)")
    parser.add_argument("--config", help="Optional YAML configuration file")
    parser.add_argument("-d", "--db", help="Path to the catalog database")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Generate and update metadata, but do not create hard links")
    parser.add_argument("-p", "--paranoid", action="store_true", help="Compare files with hash matches byte by byte, to be sure they match")
    parser.add_argument("-i", "--ignore", nargs="*", default=[], help="Ignore paths that fully match the given regex pattern")
    parser.add_argument("--max-workers", type=int, help="Override worker thread count")
    parser.add_argument("--digest", choices=["blake3", "sha256", "sha512", "xxh128"], help="Content digest algorithm")
    parser.add_argument("--groups", action="store_true", help="List every linked group after the summary")


def add_parser(subparsers: _SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "run",
        help="Find duplicate files and replace them with hard links",
        description="Walk directories, catalog file metadata, and hard link identical files together.",
    )
    _configure_parser(parser)
    parser.set_defaults(handler=run_from_args)
    return parser


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog or "dupelink run", description="Find duplicate files and replace them with hard links")
    _configure_parser(parser)
    return parser


def build_config(args: argparse.Namespace) -> DupelinkConfig:
    cfg = load_config(Path(args.config)) if args.config else DupelinkConfig()
    data = cfg.model_dump()
    if args.db:
        data["db"]["path"] = args.db
    if args.dry_run:
        data["dry_run"] = True
    if args.paranoid:
        data["paranoid"] = True
    if args.ignore:
        data["ignore_patterns"] = list(data["ignore_patterns"]) + list(args.ignore)
    if args.max_workers is not None:
        data["dedupe"]["max_workers"] = args.max_workers
    if args.digest:
        data["dedupe"]["digest"] = args.digest
    data["roots"] = list(data["roots"]) + list(args.dir or [])
    # re-validate so the merged options obey the same rules as the file
    return DupelinkConfig(**data)


def print_summary(result: PipelineResult, show_groups: bool = False, dry_run: bool = False) -> None:
    s = result.stats
    print("\n" + "=" * 70)
    print("DUPLICATE LINK SUMMARY")
    print("=" * 70)
    print(f"Files processed:       {s.total:>10,}")
    print(f"Already known:         {s.existing:>10,}")
    print(f"  of which updated:    {s.updated:>10,}")
    print(f"New entries:           {s.created:>10,}")
    print(f"Errors:                {s.errors:>10,}")
    print(f"Duplicate groups:      {s.groups:>10,}")
    linked_label = "Files that would be linked:" if dry_run else "Files linked:"
    print(f"{linked_label:<23}{s.linked:>10,}")
    print(f"Groups skipped:        {s.skipped:>10,}")
    print(f"Groups with failures:  {s.failed_groups:>10,}")
    print("=" * 70)
    if show_groups:
        for group in result.group_results:
            status = "ok" if group.success else "FAILED"
            print(f"\n[{status}] {group.source.path}")
            for target in group.targets:
                print(f"    -> {target.path}")


def run_from_args(args: argparse.Namespace) -> int:
    try:
        cfg = build_config(args)
    except (ValidationError, ValueError) as exc:
        raise SystemExit(f"Invalid configuration: {exc}")
    if not cfg.roots:
        raise SystemExit("No directories given. Pass DIR arguments or configure roots.")

    result = run_from_config(cfg)
    print_summary(result, args.groups, cfg.dry_run)
    return 1 if result.stats.failed_groups else 0


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return run_from_args(args)


__all__ = ["add_parser", "build_config", "build_parser", "print_summary", "run_cli", "run_from_args"]

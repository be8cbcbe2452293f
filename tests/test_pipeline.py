import os
from pathlib import Path

from dupelink import linker as linker_mod
from dupelink import util
from dupelink.config import DupelinkConfig
from dupelink.db import Catalog
from dupelink.links import LinkStore
from dupelink.pipeline import run_from_config, run_pipeline


def run(paths, catalog, cfg, logs=None):
    return run_pipeline(paths, catalog, cfg, log_cb=(logs.append if logs is not None else None))


def test_unique_sizes_never_reach_digesting(make_file, catalog, cfg, monkeypatch):
    a = make_file("A", b"0123456789")
    b = make_file("B", b"0123456789")
    c = make_file("C", b"x" * 20)
    hashed = []
    real_digest = util.content_digest

    def spy(path, *args, **kwargs):
        hashed.append(str(path))
        return real_digest(path, *args, **kwargs)

    monkeypatch.setattr(util, "content_digest", spy)
    result = run([a, b, c], catalog, cfg)
    assert sorted(hashed) == sorted([str(a), str(b)])
    assert result.stats.total == 2
    assert catalog.get_by_path(str(c)) is None


def test_same_size_different_content_not_grouped(make_file, catalog, cfg):
    a = make_file("A", b"aaaa")
    b = make_file("B", b"bbbb")
    result = run([a, b], catalog, cfg)
    assert result.duplicate_groups == []
    assert result.stats.groups == 0
    assert not os.path.samefile(a, b)


def test_hash_match_grouped_without_byte_compare(make_file, catalog, cfg, monkeypatch):
    a = make_file("A", b"same")
    b = make_file("B", b"same")

    def no_compare(*args, **kwargs):
        raise AssertionError("byte comparison must not run")

    monkeypatch.setattr("dupelink.grouping.files_equal", no_compare)
    result = run([a, b], catalog, cfg)
    assert len(result.duplicate_groups) == 1
    assert {r.path for r in result.duplicate_groups[0]} == {str(a), str(b)}
    assert result.stats.linked == 1
    assert os.path.samefile(a, b)


def test_paranoid_splits_colliding_digests(make_file, catalog, monkeypatch):
    a = make_file("A", b"left")
    b = make_file("B", b"rght")
    monkeypatch.setattr(util, "content_digest", lambda *args, **kwargs: b"\x00" * 32)
    cfg = DupelinkConfig(paranoid=True, dedupe={"max_workers": 2})
    result = run([a, b], catalog, cfg)
    assert len(result.duplicate_groups) == 2
    assert all(len(g) == 1 for g in result.duplicate_groups)
    assert result.stats.skipped == 2
    assert result.stats.linked == 0
    assert LinkStore(catalog).count() == 0
    assert not os.path.samefile(a, b)


def test_hard_link_correctness(make_file, catalog, cfg):
    a = make_file("A", b"content" * 100)
    b = make_file("B", b"content" * 100)
    c = make_file("sub/C", b"content" * 100)
    result = run([c, b, a], catalog, cfg)
    assert result.stats.linked == 2
    (group,) = result.group_results
    assert group.success
    assert group.source.path == str(a)
    assert os.stat(a).st_ino == os.stat(b).st_ino == os.stat(c).st_ino
    assert b.read_bytes() == a.read_bytes() == c.read_bytes()
    assert sorted(r.path for r in LinkStore(catalog).get_links_to(group.source)) == [str(b), str(c)]


def test_second_run_is_idempotent(make_file, catalog, cfg, monkeypatch):
    a = make_file("A", b"dup", mtime=1_600_000_000)
    b = make_file("B", b"dup", mtime=1_600_000_100)
    run([a, b], catalog, cfg)
    store = LinkStore(catalog)
    links_before = store.all_links()
    assert len(links_before) == 1

    calls = []
    real_link = linker_mod.Linker.link

    def spy(self, source, targets):
        calls.append((source, list(targets)))
        return real_link(self, source, targets)

    monkeypatch.setattr(linker_mod.Linker, "link", spy)
    second = run([a, b], catalog, cfg)
    assert second.stats.updated == 0
    assert second.stats.existing == 2
    assert second.stats.created == 0
    assert second.stats.skipped == 1
    assert second.stats.linked == 0
    assert calls == []
    assert store.all_links() == links_before


def test_changed_file_is_updated_and_unlinked(make_file, catalog, cfg):
    a = make_file("A", b"dup1", mtime=1_600_000_000)
    b = make_file("B", b"dup1", mtime=1_600_000_000)
    run([a, b], catalog, cfg)
    old_digest = catalog.get_by_path(str(b)).digest
    assert LinkStore(catalog).count() == 1

    # break the shared inode and give B new content
    b.unlink()
    make_file("B", b"new!", mtime=1_600_000_900)
    second = run([a, b], catalog, cfg)
    assert second.stats.updated == 1
    assert catalog.get_by_path(str(b)).digest != old_digest
    assert LinkStore(catalog).count() == 0
    assert a.read_bytes() == b"dup1"


def test_dry_run_touches_no_files_or_links(make_file, catalog, logs):
    a = make_file("A", b"dup")
    b = make_file("B", b"dup")
    cfg = DupelinkConfig(dry_run=True, dedupe={"max_workers": 2})
    result = run([a, b], catalog, cfg, logs)
    (group,) = result.group_results
    assert group.success and group.dry_run
    assert not os.path.samefile(a, b)
    assert LinkStore(catalog).count() == 0
    # metadata is still cataloged
    assert catalog.count_files() == 2
    assert any("Would link to" in m for m in logs)


def test_counters_account_for_every_path(make_file, catalog, cfg, tmp_path):
    a = make_file("A", b"dup")
    b = make_file("B", b"dup")
    unreadable = make_file("C", b"xyz")
    os.chmod(unreadable, 0)
    result = run([a, b, unreadable], catalog, cfg)
    s = result.stats
    assert s.total == s.existing + s.created + s.errors
    if os.geteuid() != 0:
        assert s.errors == 1


def test_run_from_config_walks_roots(make_file, tmp_path):
    make_file("tree/a.bin", b"dup")
    make_file("tree/b.bin", b"dup")
    make_file("tree/skip.tmp", b"dup")
    db_path = tmp_path / "state" / "dedupe.db"
    cfg = DupelinkConfig(
        roots=[str(tmp_path / "tree")],
        ignore_patterns=[r".*\.tmp"],
        db={"path": str(db_path)},
        dedupe={"max_workers": 2},
    )
    result = run_from_config(cfg)
    assert result.stats.total == 2
    assert result.stats.linked == 1
    with Catalog.open(str(db_path)) as catalog:
        assert catalog.count_files() == 2
        assert LinkStore(catalog).count() == 1


def test_switching_digest_rehashes_known_files(make_file, catalog):
    a = make_file("A", b"same!")
    x = make_file("X", b"other")
    run([a, x], catalog, DupelinkConfig(dedupe={"max_workers": 2}))
    assert catalog.get_by_path(str(a)).digest_algorithm == "blake3"

    b = make_file("B", b"same!")
    second = run([a, x, b], catalog, DupelinkConfig(dedupe={"max_workers": 2, "digest": "sha256"}))
    assert second.stats.updated == 2
    assert second.stats.created == 1
    assert second.stats.linked == 1
    assert os.path.samefile(a, b)
    for path in (a, x, b):
        assert catalog.get_by_path(str(path)).digest_algorithm == "sha256"


def test_editing_linked_file_in_place_relinks(make_file, catalog, cfg):
    a = make_file("A", b"dup", mtime=1_600_000_000)
    b = make_file("B", b"dup", mtime=1_600_000_000)
    run([a, b], catalog, cfg)
    assert os.path.samefile(a, b)

    # both paths share one inode, so the edit shows up under both
    with open(a, "ab") as f:
        f.write(b" and more")
    os.utime(a, (1_600_000_500, 1_600_000_500))
    second = run([a, b], catalog, cfg)
    assert second.stats.updated == 2
    assert second.stats.linked == 1
    (link,) = LinkStore(catalog).all_links()
    assert (link.source.path, link.target.path) == (str(a), str(b))
    assert link.target.size == len(b"dup and more")
    assert link.target.modified_time == 1_600_000_500_000

    third = run([a, b], catalog, cfg)
    assert third.stats.updated == 0
    assert third.stats.skipped == 1


def test_relative_paths_are_cataloged_absolute(make_file, catalog, cfg, tmp_path, monkeypatch):
    make_file("A", b"dup")
    make_file("B", b"dup")
    monkeypatch.chdir(tmp_path)
    result = run([Path("A"), Path("B")], catalog, cfg)
    assert result.stats.linked == 1
    assert catalog.get_by_path(str(Path.cwd() / "A")) is not None
    assert catalog.get_by_path(str(Path.cwd() / "B")) is not None
    assert catalog.get_by_path("A") is None

import os

from dupelink.scan import RegexPathPredicate, find_files


def test_finds_regular_files_recursively(make_file, tmp_path):
    a = make_file("root/a.txt", b"a")
    b = make_file("root/nested/deeper/b.txt", b"b")
    (tmp_path / "root" / "empty").mkdir()
    assert sorted(find_files(tmp_path / "root")) == sorted([a, b])


def test_yields_absolute_paths(make_file, tmp_path, monkeypatch):
    make_file("root/a.txt", b"a")
    monkeypatch.chdir(tmp_path)
    (found,) = list(find_files("root"))
    assert found.is_absolute()


def test_ignore_patterns_must_match_whole_path(make_file, tmp_path):
    keep = make_file("root/keep.txt", b"a")
    make_file("root/drop.tmp", b"b")
    make_file("root/.git/config", b"c")
    found = list(find_files(tmp_path / "root", [r".*\.tmp", r".*/\.git/.*", "keep"]))
    assert found == [keep]


def test_symlinks_are_not_candidates(make_file, tmp_path):
    target = make_file("root/real.txt", b"a")
    os.symlink(target, tmp_path / "root" / "link.txt")
    assert list(find_files(tmp_path / "root")) == [target]


def test_missing_root_yields_nothing(tmp_path, logs):
    assert list(find_files(tmp_path / "nope", log_cb=logs.append)) == []
    assert any("Root does not exist" in m for m in logs)


def test_regex_predicate():
    pred = RegexPathPredicate(r".*\.bak")
    assert pred("/data/file.bak")
    assert not pred("/data/file.bak.txt")

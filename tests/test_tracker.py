import os

from comitto.tracker import ChangeTracker, IgnorePolicy


def test_record_is_idempotent(tmp_path):
    tracker = ChangeTracker()
    path = tmp_path / "a.py"
    assert tracker.record(path)
    assert tracker.record(str(path))
    assert len(tracker) == 1
    assert path in tracker


def test_snapshot_and_clear_only_returns_content_once(tmp_path):
    tracker = ChangeTracker()
    tracker.record_many([tmp_path / "a.py", tmp_path / "b.py"])
    first = tracker.snapshot_and_clear()
    second = tracker.snapshot_and_clear()
    assert first.count == 2
    assert first
    assert not second
    assert len(tracker) == 0


def test_snapshot_does_not_clear(tmp_path):
    tracker = ChangeTracker()
    tracker.record(tmp_path / "a.py")
    assert tracker.snapshot().count == 1
    assert len(tracker) == 1


def test_vcs_and_dependency_directories_are_ignored(tmp_path):
    policy = IgnorePolicy(tmp_path)
    tracker = ChangeTracker(policy)
    assert not tracker.record(tmp_path / ".git" / "index")
    assert not tracker.record(tmp_path / "node_modules" / "pkg" / "index.js")
    assert not tracker.record(tmp_path / "src" / "__pycache__" / "m.pyc")
    # Component match, not a raw substring match
    assert tracker.record(tmp_path / ".gitignore")
    assert tracker.record(tmp_path / "my_node_modules_notes.md")
    assert len(tracker) == 2


def test_gitignore_rules_apply_only_when_enabled(tmp_path):
    (tmp_path / ".gitignore").write_text("*.log\nbuild/\n")
    policy = IgnorePolicy(tmp_path)
    policy.reload()
    assert policy.is_ignored(tmp_path / "debug.log")
    assert policy.is_ignored(tmp_path / "build" / "out.bin")
    assert not policy.is_ignored(tmp_path / "src" / "main.py")

    policy.reload(use_gitignore=False)
    assert not policy.is_ignored(tmp_path / "debug.log")


def test_gitignore_is_reparsed_on_reload(tmp_path):
    policy = IgnorePolicy(tmp_path)
    policy.reload()
    assert not policy.is_ignored(tmp_path / "secret.env")
    (tmp_path / ".gitignore").write_text("*.env\n")
    policy.reload()
    assert policy.is_ignored(tmp_path / "secret.env")


def test_paths_are_stored_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    tracker = ChangeTracker()
    tracker.record("rel.txt")
    assert tracker.paths == frozenset({os.path.abspath("rel.txt")})

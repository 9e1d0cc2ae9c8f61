import subprocess
from pathlib import Path

import pytest

from stage_plane.commit import commit_stage
from stage_plane.config import StageConfig
from stage_plane.errors import StageError
from stage_plane.impl.files import create_file_stage_store
from stage_plane.impl.git import create_git_snapshot_provider
from stage_plane.staging import StagingArea


@pytest.fixture
def checkout(tmp_path: Path) -> Path:
    """A git checkout with one commit holding a.txt."""
    work = tmp_path / "work"
    work.mkdir()
    subprocess.run(
        ["git", "init", "--initial-branch=master"],
        cwd=work,
        check=True,
        capture_output=True,
    )
    subprocess.run(["git", "config", "user.name", "Test"], cwd=work, check=True)
    subprocess.run(["git", "config", "user.email", "test@test"], cwd=work, check=True)
    (work / "a.txt").write_bytes(b"hello")
    subprocess.run(["git", "add", "a.txt"], cwd=work, check=True)
    subprocess.run(
        ["git", "commit", "-m", "Init"], cwd=work, check=True, capture_output=True
    )
    return work


def test_git_head_is_the_snapshot(checkout: Path):
    snapshots = create_git_snapshot_provider(checkout)

    head = snapshots.current_snapshot()

    assert list(head) == ["a.txt"]
    assert head["a.txt"] == b"hello"
    assert head.get("nope.txt") is None


def test_stage_against_git_head(checkout: Path):
    config = StageConfig(repository_root=checkout)
    snapshots = create_git_snapshot_provider(checkout)
    area = StagingArea(create_file_stage_store(config), snapshots, config)

    area.add("a.txt", b"hello")
    assert area.staged_addition_paths() == frozenset()

    area.add("a.txt", b"world")
    area.add("dir/b.txt", b"new")
    commit_stage(area, snapshots, "Update")

    head = snapshots.current_snapshot()
    assert sorted(head) == ["a.txt", "dir/b.txt"]
    assert head["a.txt"] == b"world"
    log = subprocess.run(
        ["git", "log", "--format=%s"],
        cwd=checkout,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.split()
    assert log == ["Update", "Init"]


def test_requires_git_checkout(tmp_path: Path):
    with pytest.raises(StageError, match="Not a git checkout"):
        create_git_snapshot_provider(tmp_path)

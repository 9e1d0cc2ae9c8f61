import json
from pathlib import Path

import pytest

from stage_plane.config import StageConfig
from stage_plane.errors import PersistenceError
from stage_plane.impl.files import create_file_stage_store


@pytest.fixture
def config(tmp_path: Path) -> StageConfig:
    return StageConfig(repository_root=tmp_path)


def test_initialize_creates_layout(config: StageConfig):
    create_file_stage_store(config)

    assert config.addition_dir.is_dir()
    assert config.removal_dir.is_dir()
    record = json.loads(config.index_file.read_text())
    assert record == {"version": 1, "paths": []}


def test_layout_is_flat(config: StageConfig):
    store = create_file_stage_store(config)

    store.stage_addition("src/app/main.py", b"print()")
    store.stage_removal("docs/old.md", b"# old")

    assert (config.addition_dir / "src%2Fapp%2Fmain.py").read_bytes() == b"print()"
    assert (config.removal_dir / "docs%2Fold.md").read_bytes() == b"# old"
    assert store.removal_paths() == {"docs/old.md"}
    record = json.loads(config.index_file.read_text())
    assert record["paths"] == ["src/app/main.py"]


def test_escaped_names_do_not_clash(config: StageConfig):
    store = create_file_stage_store(config)

    store.stage_addition("a/b", b"nested")
    store.stage_addition("a%2Fb", b"literal")

    assert store.get_addition("a/b") == b"nested"
    assert store.get_addition("a%2Fb") == b"literal"


@pytest.mark.parametrize(
    "first, second",
    [("a", "a/b"), ("a/b", "a")],
    ids=["file-then-nested", "nested-then-file"],
)
def test_file_and_directory_paths_coexist(config: StageConfig, first, second):
    store = create_file_stage_store(config)

    store.stage_removal(first, b"removed")
    store.stage_addition(second, b"new")
    store.stage_addition(first, b"again")

    assert store.addition_index() == {first, second}
    assert store.get_addition(second) == b"new"
    assert store.get_addition(first) == b"again"
    assert store.removal_paths() == frozenset()


def test_overlay_file_outside_index_is_invisible(config: StageConfig):
    store = create_file_stage_store(config)
    (config.addition_dir / "stray.txt").write_bytes(b"left over")

    assert store.addition_index() == frozenset()
    assert store.get_addition("stray.txt") is None


def test_indexed_path_without_content_is_corrupt(config: StageConfig):
    store = create_file_stage_store(config)
    store.stage_addition("a.txt", b"x")
    (config.addition_dir / "a.txt").unlink()

    with pytest.raises(PersistenceError, match="missing"):
        store.get_addition("a.txt")


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"\xff\xfe",
        b"[]",
        b'{"version": 2, "paths": []}',
        b'{"version": 1, "paths": [1, 2]}',
    ],
)
def test_corrupt_index_raises(config: StageConfig, raw: bytes):
    store = create_file_stage_store(config)
    config.index_file.write_bytes(raw)

    with pytest.raises(PersistenceError):
        store.addition_index()


def test_stage_leaves_no_temporary_files(config: StageConfig):
    store = create_file_stage_store(config)

    store.stage_addition("a.txt", b"x")
    store.clear_additions()

    assert not list(config.meta_dir.glob(".tmp-*"))


def test_meta_dir_from_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("STAGE_PLANE_META_DIR", ".vcs")
    monkeypatch.setenv("STAGE_PLANE_REMOVAL_UNDO", "PATH")

    config = StageConfig.from_env(tmp_path)
    create_file_stage_store(config)

    assert (tmp_path / ".vcs" / "staged_save").exists()
    assert config.removal_undo.value == "path"

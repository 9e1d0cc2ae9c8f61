import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from stage_plane.base import Blob, StageStore
from stage_plane.config import StageConfig
from stage_plane.errors import PersistenceError

logger = logging.getLogger(__name__)

INDEX_VERSION = 1


@contextmanager
def _io_errors(action: str) -> Iterator[None]:
    try:
        yield
    except OSError as e:
        raise PersistenceError(f"Failed to {action}: {e}") from e


class FileStageStore(StageStore):
    """
    Stage store laid out as plain files under the repository meta directory.

    ``stage/`` and ``stage_rm/`` hold the raw bytes of staged additions and
    removals, one flat file per path named by the percent-escaped path.
    ``staged_save`` is a JSON record of the addition index. The index record
    is written last when staging and first when unstaging, so an overlay
    file whose path is not in the index is never visible.
    """

    def __init__(self, config: StageConfig) -> None:
        self.config = config

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("FileStageStore(...)")
        else:
            p.text(f"FileStageStore(path={self.config.meta_dir})")

    def initialize(self) -> None:
        with _io_errors("initialize stage directories"):
            self.config.addition_dir.mkdir(parents=True, exist_ok=True)
            self.config.removal_dir.mkdir(parents=True, exist_ok=True)
            if not self.config.index_file.exists():
                self._write_index(frozenset())

    def _write_atomic(self, target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.config.meta_dir, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_index(self) -> frozenset[str]:
        index_file = self.config.index_file
        if not index_file.exists():
            return frozenset()

        with _io_errors("read the addition index"):
            raw = index_file.read_bytes()

        try:
            record = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Addition index at %s is corrupt: %s", index_file, e)
            raise PersistenceError(f"Addition index is corrupt: {e}") from e

        if not isinstance(record, dict):
            record = {}
        paths = record.get("paths")
        if (
            record.get("version") != INDEX_VERSION
            or not isinstance(paths, list)
            or not all(isinstance(path, str) for path in paths)
        ):
            logger.error("Addition index at %s has unexpected layout", index_file)
            raise PersistenceError("Addition index has unexpected layout")

        return frozenset(paths)

    def _write_index(self, paths: frozenset[str]) -> None:
        record = {"version": INDEX_VERSION, "paths": sorted(paths)}
        with _io_errors("write the addition index"):
            self._write_atomic(
                self.config.index_file,
                json.dumps(record, indent=2).encode("utf-8"),
            )

    def _blob_path(self, root: Path, path: str) -> Path:
        # One flat file per path, so "a" and "a/b" never collide
        return root / quote(path, safe="")

    def _read_blob(self, root: Path, path: str) -> Blob | None:
        blob_path = self._blob_path(root, path)
        if not blob_path.is_file():
            return None
        with _io_errors(f"read staged '{path}'"):
            return blob_path.read_bytes()

    def _write_blob(self, root: Path, path: str, content: Blob) -> None:
        with _io_errors(f"write staged '{path}'"):
            self._write_atomic(self._blob_path(root, path), content)

    def _delete_blob(self, root: Path, path: str) -> None:
        with _io_errors(f"delete staged '{path}'"):
            self._blob_path(root, path).unlink(missing_ok=True)

    def _clear_dir(self, root: Path) -> None:
        with _io_errors(f"clear {root.name}"):
            if root.exists():
                shutil.rmtree(root)
            root.mkdir(parents=True, exist_ok=True)

    def addition_index(self) -> frozenset[str]:
        return self._read_index()

    def removal_paths(self) -> frozenset[str]:
        root = self.config.removal_dir
        if not root.exists():
            return frozenset()
        with _io_errors("list staged removals"):
            return frozenset(unquote(p.name) for p in root.iterdir() if p.is_file())

    def get_addition(self, path: str) -> Blob | None:
        if path not in self._read_index():
            return None
        content = self._read_blob(self.config.addition_dir, path)
        if content is None:
            raise PersistenceError(f"Staged content for '{path}' is missing")
        return content

    def get_removal(self, path: str) -> Blob | None:
        return self._read_blob(self.config.removal_dir, path)

    def stage_addition(self, path: str, content: Blob) -> None:
        index = self._read_index()
        self._write_blob(self.config.addition_dir, path, content)
        self._delete_blob(self.config.removal_dir, path)
        self._write_index(index | {path})
        logger.debug("Staged '%s' (%d bytes)", path, len(content))

    def unstage_addition(self, path: str) -> None:
        index = self._read_index()
        if path not in index:
            return
        self._write_index(index - {path})
        self._delete_blob(self.config.addition_dir, path)
        logger.debug("Unstaged '%s'", path)

    def stage_removal(self, path: str, content: Blob) -> None:
        self.unstage_addition(path)
        self._write_blob(self.config.removal_dir, path, content)
        logger.debug("Staged '%s' for removal", path)

    def unstage_removal(self, path: str) -> None:
        self._delete_blob(self.config.removal_dir, path)

    def clear_additions(self) -> None:
        self._write_index(frozenset())
        self._clear_dir(self.config.addition_dir)

    def clear_removals(self) -> None:
        self._clear_dir(self.config.removal_dir)


def create_file_stage_store(config: StageConfig) -> FileStageStore:
    store = FileStageStore(config)
    store.initialize()
    return store

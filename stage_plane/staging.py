import logging
from pathlib import PurePosixPath
from typing import Any

from stage_plane.base import Blob, SnapshotProvider, StageStore
from stage_plane.config import RemovalUndo, StageConfig
from stage_plane.errors import NotFoundError, StageError

logger = logging.getLogger(__name__)


def normalize_path(path: str, reserved: str | None = None) -> str:
    """Turn a user supplied path into the key used by snapshots and stores.

    Paths inside the ``reserved`` top-level directory are rejected.
    """
    pure = PurePosixPath(path.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or pure.as_posix() in ("", "."):
        raise StageError(f"Invalid path: {path!r}")
    if reserved is not None and pure.parts[0] == reserved:
        raise StageError(f"Invalid path: {path!r} is inside {reserved}")
    return pure.as_posix()


class StagingArea:
    """
    Pending changes on top of the checked-out snapshot.

    Additions hold content that differs from the snapshot, removals hold
    the content of tracked files the user removed. A path is never staged
    for both at once.
    """

    def __init__(
        self,
        store: StageStore,
        snapshots: SnapshotProvider,
        config: StageConfig,
    ) -> None:
        self.store = store
        self.snapshots = snapshots
        self.config = config

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("StagingArea(...)")
        else:
            with p.group(4, "StagingArea(", ")"):
                p.breakable()
                p.text(f"additions={sorted(self.staged_addition_paths())},")
                p.breakable()
                p.text(f"removals={sorted(self.staged_removal_paths())},")
                p.breakable()

    def add(self, path: str, working_content: Blob) -> None:
        """Reconcile the working content of path with the snapshot and removals."""
        path = self._key(path)
        snapshot = self.snapshots.current_snapshot()
        committed = snapshot.get(path)

        if committed is not None:
            removed = self.store.get_removal(path)
            if removed is not None and removed == working_content:
                self._undo_removal(path)
                return

            if committed == working_content:
                logger.debug("'%s' matches the snapshot, unstaging", path)
                self.store.unstage_addition(path)
                return

        logger.debug("Staging '%s' for addition", path)
        self.store.stage_addition(path, working_content)

    def _undo_removal(self, path: str) -> None:
        if self.config.removal_undo is RemovalUndo.PATH:
            logger.debug("'%s' restored, cancelling its removal", path)
            self.store.unstage_removal(path)
        else:
            logger.debug("'%s' restored, cancelling all pending removals", path)
            self.store.clear_removals()

    def _key(self, path: str) -> str:
        return normalize_path(path, self.config.meta_dir_name)

    def read_working(self, path: str) -> Blob:
        """Read the current bytes of path from the working tree."""
        source = self.config.repository_root / self._key(path)
        if not source.is_file():
            raise NotFoundError("File does not exist.")
        try:
            return source.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError("File does not exist.") from e
        except OSError as e:
            raise StageError(f"Cannot read '{path}': {e.strerror}") from e

    def add_file(self, path: str) -> None:
        self.add(path, self.read_working(path))

    def remove(self, path: str) -> None:
        """Unstage path, and stage it for removal when the snapshot tracks it."""
        path = self._key(path)
        committed = self.snapshots.current_snapshot().get(path)
        staged = path in self.store.addition_index()

        if committed is None and not staged:
            raise StageError("No reason to remove the file.")

        if committed is None:
            logger.debug("Unstaging untracked '%s'", path)
            self.store.unstage_addition(path)
            return

        logger.debug("Staging '%s' for removal", path)
        self.store.stage_removal(path, committed)

        if self.config.delete_working_file:
            (self.config.repository_root / path).unlink(missing_ok=True)

    def clear_additions(self) -> None:
        self.store.clear_additions()

    def clear_removals(self) -> None:
        self.store.clear_removals()

    def staged_addition_paths(self) -> frozenset[str]:
        return frozenset(self.store.addition_index())

    def staged_removal_paths(self) -> frozenset[str]:
        return frozenset(self.store.removal_paths())

    def get_addition(self, path: str) -> Blob | None:
        return self.store.get_addition(self._key(path))

    def get_removal(self, path: str) -> Blob | None:
        return self.store.get_removal(self._key(path))

    def is_dirty(self) -> bool:
        return bool(self.store.addition_index() or self.store.removal_paths())

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class RemovalUndo(str, Enum):
    """How re-adding a removed file with its removed content cancels removals."""

    # Cancel the whole removal batch
    BATCH = "batch"
    # Cancel only the removal of the re-added path
    PATH = "path"


@dataclass(frozen=True)
class StageConfig:
    """
    Locations and policies of a staging area rooted at ``repository_root``.

    All store locations are derived from the root, so a staging area can be
    pointed at any directory (a temporary one in tests).
    """

    repository_root: Path
    meta_dir_name: str = ".stage"
    removal_undo: RemovalUndo = RemovalUndo.BATCH
    delete_working_file: bool = True

    @classmethod
    def from_env(cls, repository_root: str | Path) -> "StageConfig":
        removal_undo = os.environ.get("STAGE_PLANE_REMOVAL_UNDO", RemovalUndo.BATCH.value)
        return cls(
            repository_root=Path(repository_root).absolute(),
            meta_dir_name=os.environ.get("STAGE_PLANE_META_DIR", ".stage"),
            removal_undo=RemovalUndo(removal_undo.lower()),
        )

    @property
    def meta_dir(self) -> Path:
        return self.repository_root / self.meta_dir_name

    @property
    def addition_dir(self) -> Path:
        return self.meta_dir / "stage"

    @property
    def removal_dir(self) -> Path:
        return self.meta_dir / "stage_rm"

    @property
    def index_file(self) -> Path:
        return self.meta_dir / "staged_save"

    @property
    def settings_file(self) -> Path:
        return self.meta_dir / "config"

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.meta_dir / 'stage.db'}"

from .base import Blob, Snapshot, SnapshotProvider, StageStore
from .config import RemovalUndo, StageConfig
from .errors import NotFoundError, PersistenceError, StageError
from .staging import StagingArea
from .commit import commit_stage
from .impl.memory import create_memory_stage_store, MemorySnapshotProvider
from .impl.files import create_file_stage_store

__all__ = [
    "Blob",
    "Snapshot",
    "SnapshotProvider",
    "StageStore",
    "RemovalUndo",
    "StageConfig",
    "NotFoundError",
    "PersistenceError",
    "StageError",
    "StagingArea",
    "commit_stage",
    "create_memory_stage_store",
    "MemorySnapshotProvider",
    "create_file_stage_store",
]

from pathlib import Path
from typing import Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from stage_plane.base import SnapshotData, StageStore
from stage_plane.config import RemovalUndo, StageConfig
from stage_plane.impl.files import create_file_stage_store
from stage_plane.impl.memory import (
    MemorySnapshotProvider,
    MemoryStageData,
    create_memory_stage_store,
)
from stage_plane.impl.sql import Base, create_sql_stage_store
from stage_plane.staging import StagingArea


# A provider can open the same stage store several times, which simulates
# separate invocations of the tool over one repository.
class StoreProvider:
    def create(self, config: StageConfig) -> StageStore:
        raise NotImplementedError()

    def cleanup(self) -> None:
        pass


class MemoryStoreProvider(StoreProvider):
    def __init__(self) -> None:
        self.data: MemoryStageData = {}

    def create(self, config: StageConfig) -> StageStore:
        return create_memory_stage_store(self.data)


class FileStoreProvider(StoreProvider):
    def create(self, config: StageConfig) -> StageStore:
        return create_file_stage_store(config)


class SqlStoreProvider(StoreProvider):
    def __init__(self) -> None:
        self.engine: Engine | None = None

    def create(self, config: StageConfig) -> StageStore:
        config.meta_dir.mkdir(parents=True, exist_ok=True)

        if self.engine:
            self.engine.dispose()

        self.engine = create_engine(config.database_url)
        Base.metadata.create_all(self.engine)
        Session = sessionmaker(bind=self.engine)
        return create_sql_stage_store(Session)

    def cleanup(self) -> None:
        if self.engine:
            self.engine.dispose()


PROVIDERS = [
    MemoryStoreProvider,
    FileStoreProvider,
    SqlStoreProvider,
]
PROVIDER_IDS = ["memory", "files", "sql"]


@pytest.fixture(params=PROVIDERS, ids=PROVIDER_IDS)
def provider(request):
    store_provider = request.param()
    yield store_provider
    store_provider.cleanup()


AreaFactory = Callable[..., StagingArea]


@pytest.fixture
def make_area(tmp_path: Path, provider: StoreProvider) -> AreaFactory:
    """Open a staging area over the parametrized backend and a memory HEAD."""

    def factory(
        snapshot: SnapshotData | None = None,
        removal_undo: RemovalUndo = RemovalUndo.BATCH,
        snapshots: MemorySnapshotProvider | None = None,
    ) -> StagingArea:
        config = StageConfig(repository_root=tmp_path, removal_undo=removal_undo)
        return StagingArea(
            provider.create(config),
            snapshots or MemorySnapshotProvider(snapshot or {}),
            config,
        )

    return factory

import logging
from collections.abc import Iterator
from typing import Any

from stage_plane.base import Blob, Snapshot, SnapshotData, SnapshotProvider, StageStore

logger = logging.getLogger(__name__)

MemoryStageData = dict[str, Any]


class MemorySnapshot(Snapshot):
    def __init__(self, data: SnapshotData) -> None:
        self.data = dict(data)

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("MemorySnapshot(...)")
        else:
            with p.group(4, "MemorySnapshot(", ")"):
                p.breakable()
                p.text(f"data={self.data},")
                p.breakable()

    def __getitem__(self, path: str) -> Blob:
        return self.data[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)


class MemorySnapshotProvider(SnapshotProvider):
    def __init__(self, data: SnapshotData | None = None) -> None:
        self.history: list[tuple[str, SnapshotData]] = []
        self.head = MemorySnapshot(data or {})

    def current_snapshot(self) -> Snapshot:
        return self.head

    def advance(self, data: SnapshotData, message: str) -> None:
        self.history.append((message, dict(data)))
        self.head = MemorySnapshot(data)


class MemoryStageStore(StageStore):
    """
    Stage store kept in a plain dict.

    The dict is owned by the caller, so two stores created over the same
    dict observe the same staging area, like two invocations over one
    repository.
    """

    def __init__(self, data: MemoryStageData) -> None:
        self.data = data
        self.initialize()

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("MemoryStageStore(...)")
        else:
            with p.group(4, "MemoryStageStore(", ")"):
                p.breakable()
                p.text(f"index={sorted(self.data['index'])},")
                p.breakable()
                p.text(f"removals={sorted(self.data['removals'])},")
                p.breakable()

    def initialize(self) -> None:
        self.data.setdefault("index", frozenset())
        self.data.setdefault("additions", {})
        self.data.setdefault("removals", {})

    def addition_index(self) -> frozenset[str]:
        return self.data["index"]

    def removal_paths(self) -> frozenset[str]:
        return frozenset(self.data["removals"])

    def get_addition(self, path: str) -> Blob | None:
        if path not in self.data["index"]:
            return None
        return self.data["additions"].get(path)

    def get_removal(self, path: str) -> Blob | None:
        return self.data["removals"].get(path)

    def stage_addition(self, path: str, content: Blob) -> None:
        additions = {**self.data["additions"], path: content}
        removals = {k: v for k, v in self.data["removals"].items() if k != path}
        self.data.update(
            index=self.data["index"] | {path},
            additions=additions,
            removals=removals,
        )
        logger.debug("Staged '%s' (%d bytes)", path, len(content))

    def unstage_addition(self, path: str) -> None:
        if path not in self.data["index"]:
            return
        additions = {k: v for k, v in self.data["additions"].items() if k != path}
        self.data.update(index=self.data["index"] - {path}, additions=additions)
        logger.debug("Unstaged '%s'", path)

    def stage_removal(self, path: str, content: Blob) -> None:
        additions = {k: v for k, v in self.data["additions"].items() if k != path}
        self.data.update(
            index=self.data["index"] - {path},
            additions=additions,
            removals={**self.data["removals"], path: content},
        )
        logger.debug("Staged '%s' for removal", path)

    def unstage_removal(self, path: str) -> None:
        if path in self.data["removals"]:
            removals = {k: v for k, v in self.data["removals"].items() if k != path}
            self.data["removals"] = removals

    def clear_additions(self) -> None:
        self.data.update(index=frozenset(), additions={})

    def clear_removals(self) -> None:
        self.data["removals"] = {}


def create_memory_stage_store(data: MemoryStageData) -> MemoryStageStore:
    return MemoryStageStore(data)

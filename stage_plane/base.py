from collections.abc import Iterator, Mapping

Blob = bytes
SnapshotData = dict[str, Blob]


class Snapshot(Mapping[str, Blob]):
    """
    Immutable path -> content mapping of the currently checked-out commit.

    A snapshot doubles as the content store of that commit: ``get(path)``
    returns the committed blob or None.
    """

    def __getitem__(self, path: str) -> Blob:
        raise NotImplementedError()

    def __iter__(self) -> Iterator[str]:
        raise NotImplementedError()

    def __len__(self) -> int:
        raise NotImplementedError()


class SnapshotProvider:
    """
    Source of the committed state the staging area is reconciled against.
    """

    def current_snapshot(self) -> Snapshot:
        """Return the snapshot of the currently checked-out commit."""
        raise NotImplementedError()

    def advance(self, data: SnapshotData, message: str) -> None:
        """Record a new commit with the given content and make it current."""
        raise NotImplementedError()


class StageStore:
    """
    Durable storage of the staging area.

    Holds three independent artifacts: the addition index (set of paths),
    the addition overlay and the removal overlay (path -> content).
    Every mutating method is applied as a single unit: either all of its
    changes are persisted or none are.
    """

    def initialize(self) -> None:
        """Create empty stores if they do not exist yet."""
        raise NotImplementedError()

    def addition_index(self) -> frozenset[str]:
        """Paths currently staged for addition."""
        raise NotImplementedError()

    def removal_paths(self) -> frozenset[str]:
        """Paths currently staged for removal."""
        raise NotImplementedError()

    def get_addition(self, path: str) -> Blob | None:
        """Content staged for addition at path."""
        raise NotImplementedError()

    def get_removal(self, path: str) -> Blob | None:
        """Content staged for removal at path."""
        raise NotImplementedError()

    def stage_addition(self, path: str, content: Blob) -> None:
        """Stage content for addition. Drops a pending removal of the same path."""
        raise NotImplementedError()

    def unstage_addition(self, path: str) -> None:
        """Drop path from the addition overlay and index. No-op when absent."""
        raise NotImplementedError()

    def stage_removal(self, path: str, content: Blob) -> None:
        """Stage path for removal. Drops a pending addition of the same path."""
        raise NotImplementedError()

    def unstage_removal(self, path: str) -> None:
        """Drop path from the removal overlay. No-op when absent."""
        raise NotImplementedError()

    def clear_additions(self) -> None:
        """Empty the addition overlay and the addition index."""
        raise NotImplementedError()

    def clear_removals(self) -> None:
        """Empty the removal overlay."""
        raise NotImplementedError()

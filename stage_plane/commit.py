import logging

from stage_plane.base import SnapshotData, SnapshotProvider
from stage_plane.errors import PersistenceError, StageError
from stage_plane.staging import StagingArea

logger = logging.getLogger(__name__)


def freeze(area: StagingArea) -> SnapshotData:
    """Build the next snapshot: the current one with the stage applied."""
    data: SnapshotData = dict(area.snapshots.current_snapshot().items())

    for path in area.staged_addition_paths():
        content = area.get_addition(path)
        if content is None:
            raise PersistenceError(f"Staged content for '{path}' is missing")
        data[path] = content

    for path in area.staged_removal_paths():
        data.pop(path, None)

    return data


def commit_stage(
    area: StagingArea, snapshots: SnapshotProvider, message: str
) -> SnapshotData:
    if not area.is_dirty():
        raise StageError("No changes added to the commit.")
    if not message.strip():
        raise StageError("Please enter a commit message.")

    data = freeze(area)
    snapshots.advance(data, message)

    # The new snapshot owns the content now
    area.clear_additions()
    area.clear_removals()

    logger.info("Committed %d file(s): %s", len(data), message)
    return data

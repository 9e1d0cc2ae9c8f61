class StageError(Exception):
    """Base class for errors reported by the staging area."""


class NotFoundError(StageError):
    """The working-tree file requested for staging does not exist."""


class PersistenceError(StageError):
    """A stage store could not be read or written, or its content is corrupt."""

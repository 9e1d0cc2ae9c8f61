import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Callable

from sqlalchemy import (
    ForeignKey,
    LargeBinary,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from stage_plane.base import (
    Blob,
    Snapshot,
    SnapshotData,
    SnapshotProvider,
    StageStore,
)
from stage_plane.errors import PersistenceError

logger = logging.getLogger(__name__)

ADDITION = "addition"
REMOVAL = "removal"


class Base(DeclarativeBase):
    pass


class BlobModel(Base):
    __tablename__ = "blobs"
    id: Mapped[int] = mapped_column(primary_key=True)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class SnapshotModel(Base):
    __tablename__ = "snapshots"
    id: Mapped[int] = mapped_column(primary_key=True)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("snapshots.id"), nullable=True
    )
    message: Mapped[str] = mapped_column(default="")


class SnapshotItemModel(Base):
    __tablename__ = "snapshot_items"
    snapshot_id: Mapped[int] = mapped_column(
        ForeignKey("snapshots.id"), primary_key=True
    )
    key: Mapped[str] = mapped_column(primary_key=True)
    blob_id: Mapped[int] = mapped_column(ForeignKey("blobs.id"))

    blob: Mapped[BlobModel] = relationship(BlobModel)


class BranchModel(Base):
    __tablename__ = "branches"
    name: Mapped[str] = mapped_column(primary_key=True)
    snapshot_id: Mapped[int] = mapped_column(ForeignKey("snapshots.id"))


class StagedBlobModel(Base):
    """Content of one path in the addition or removal overlay."""

    __tablename__ = "staged_blobs"
    overlay: Mapped[str] = mapped_column(primary_key=True)
    path: Mapped[str] = mapped_column(primary_key=True)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class AdditionIndexModel(Base):
    __tablename__ = "addition_index"
    path: Mapped[str] = mapped_column(primary_key=True)


@contextmanager
def _transaction(session_maker: Callable[[], Session]) -> Iterator[Session]:
    try:
        with session_maker() as session:
            with session.begin():
                yield session
    except SQLAlchemyError as e:
        raise PersistenceError(f"Stage database error: {e}") from e


class SqlSnapshot(Snapshot):
    def __init__(
        self, session_maker: Callable[[], Session], snapshot_id: int | None
    ) -> None:
        self.session_maker = session_maker
        self.snapshot_id = snapshot_id

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("SqlSnapshot(...)")
        else:
            with p.group(4, "SqlSnapshot(", ")"):
                p.breakable()
                p.text(f"id={self.snapshot_id},")
                p.breakable()

    def __getitem__(self, path: str) -> Blob:
        if self.snapshot_id is None:
            raise KeyError(path)
        with _transaction(self.session_maker) as session:
            stmt = (
                select(BlobModel.content)
                .join(SnapshotItemModel, SnapshotItemModel.blob_id == BlobModel.id)
                .where(
                    SnapshotItemModel.snapshot_id == self.snapshot_id,
                    SnapshotItemModel.key == path,
                )
            )
            content = session.execute(stmt).scalar_one_or_none()
        if content is None:
            raise KeyError(path)
        return content

    def _keys(self) -> list[str]:
        if self.snapshot_id is None:
            return []
        with _transaction(self.session_maker) as session:
            stmt = (
                select(SnapshotItemModel.key)
                .where(SnapshotItemModel.snapshot_id == self.snapshot_id)
                .order_by(SnapshotItemModel.key)
            )
            return list(session.execute(stmt).scalars().all())

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys())

    def __len__(self) -> int:
        if self.snapshot_id is None:
            return 0
        with _transaction(self.session_maker) as session:
            stmt = (
                select(func.count())
                .select_from(SnapshotItemModel)
                .where(SnapshotItemModel.snapshot_id == self.snapshot_id)
            )
            return session.execute(stmt).scalar_one()


class SqlSnapshotProvider(SnapshotProvider):
    """
    Committed snapshots stored as full path -> blob listings.

    A branch row points at the current snapshot, every snapshot points at
    its parent.
    """

    def __init__(
        self, session_maker: Callable[[], Session], branch: str = "master"
    ) -> None:
        self.session_maker = session_maker
        self.branch = branch

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("SqlSnapshotProvider(...)")
        else:
            p.text(f"SqlSnapshotProvider(branch='{self.branch}')")

    def _head_id(self, session: Session) -> int | None:
        branch_model = session.execute(
            select(BranchModel).where(BranchModel.name == self.branch)
        ).scalar_one_or_none()
        return branch_model.snapshot_id if branch_model else None

    def current_snapshot(self) -> Snapshot:
        with _transaction(self.session_maker) as session:
            head_id = self._head_id(session)
        return SqlSnapshot(self.session_maker, head_id)

    def advance(self, data: SnapshotData, message: str) -> None:
        with _transaction(self.session_maker) as session:
            parent_id = self._head_id(session)
            snap = SnapshotModel(parent_id=parent_id, message=message)
            session.add(snap)
            session.flush()

            for key, content in data.items():
                blob = BlobModel(content=content)
                session.add(blob)
                session.flush()
                session.add(
                    SnapshotItemModel(snapshot_id=snap.id, key=key, blob_id=blob.id)
                )

            branch_model = session.execute(
                select(BranchModel).where(BranchModel.name == self.branch)
            ).scalar_one_or_none()
            if branch_model:
                branch_model.snapshot_id = snap.id
            else:
                session.add(BranchModel(name=self.branch, snapshot_id=snap.id))
            snapshot_id = snap.id

        logger.debug("Branch '%s' advanced to snapshot %s", self.branch, snapshot_id)


class SqlStageStore(StageStore):
    """
    Stage store kept in a database.

    Every mutation runs in one transaction, so the addition overlay and the
    addition index always change together.
    """

    def __init__(self, session_maker: Callable[[], Session]) -> None:
        self.session_maker = session_maker

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("SqlStageStore(...)")
        else:
            with p.group(4, "SqlStageStore(", ")"):
                p.breakable()
                p.text(f"index={sorted(self.addition_index())},")
                p.breakable()

    def initialize(self) -> None:
        with _transaction(self.session_maker) as session:
            Base.metadata.create_all(session.connection())

    def _get(self, overlay: str, path: str) -> Blob | None:
        with _transaction(self.session_maker) as session:
            stmt = select(StagedBlobModel.content).where(
                StagedBlobModel.overlay == overlay, StagedBlobModel.path == path
            )
            return session.execute(stmt).scalar_one_or_none()

    def _put(self, session: Session, overlay: str, path: str, content: Blob) -> None:
        session.merge(StagedBlobModel(overlay=overlay, path=path, content=content))

    def _drop(self, session: Session, overlay: str, path: str) -> None:
        session.execute(
            delete(StagedBlobModel).where(
                StagedBlobModel.overlay == overlay, StagedBlobModel.path == path
            )
        )

    def _drop_addition(self, session: Session, path: str) -> None:
        self._drop(session, ADDITION, path)
        session.execute(
            delete(AdditionIndexModel).where(AdditionIndexModel.path == path)
        )

    def addition_index(self) -> frozenset[str]:
        with _transaction(self.session_maker) as session:
            stmt = select(AdditionIndexModel.path)
            return frozenset(session.execute(stmt).scalars().all())

    def removal_paths(self) -> frozenset[str]:
        with _transaction(self.session_maker) as session:
            stmt = select(StagedBlobModel.path).where(
                StagedBlobModel.overlay == REMOVAL
            )
            return frozenset(session.execute(stmt).scalars().all())

    def get_addition(self, path: str) -> Blob | None:
        return self._get(ADDITION, path)

    def get_removal(self, path: str) -> Blob | None:
        return self._get(REMOVAL, path)

    def stage_addition(self, path: str, content: Blob) -> None:
        with _transaction(self.session_maker) as session:
            self._put(session, ADDITION, path, content)
            session.merge(AdditionIndexModel(path=path))
            self._drop(session, REMOVAL, path)
        logger.debug("Staged '%s' (%d bytes)", path, len(content))

    def unstage_addition(self, path: str) -> None:
        with _transaction(self.session_maker) as session:
            self._drop_addition(session, path)

    def stage_removal(self, path: str, content: Blob) -> None:
        with _transaction(self.session_maker) as session:
            self._drop_addition(session, path)
            self._put(session, REMOVAL, path, content)
        logger.debug("Staged '%s' for removal", path)

    def unstage_removal(self, path: str) -> None:
        with _transaction(self.session_maker) as session:
            self._drop(session, REMOVAL, path)

    def clear_additions(self) -> None:
        with _transaction(self.session_maker) as session:
            session.execute(
                delete(StagedBlobModel).where(StagedBlobModel.overlay == ADDITION)
            )
            session.execute(delete(AdditionIndexModel))

    def clear_removals(self) -> None:
        with _transaction(self.session_maker) as session:
            session.execute(
                delete(StagedBlobModel).where(StagedBlobModel.overlay == REMOVAL)
            )


def create_session_maker(database_url: str) -> Callable[[], Session]:
    try:
        engine = create_engine(database_url)
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        logger.error("Cannot open stage database %s: %s", database_url, e)
        raise PersistenceError(f"Stage database error: {e}") from e
    return sessionmaker(bind=engine)


def create_sql_stage_store(session_maker: Callable[[], Session]) -> SqlStageStore:
    return SqlStageStore(session_maker)


def create_sql_snapshot_provider(
    session_maker: Callable[[], Session], branch: str = "master"
) -> SqlSnapshotProvider:
    return SqlSnapshotProvider(session_maker, branch=branch)

import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from stage_plane.base import Blob, Snapshot, SnapshotData, SnapshotProvider
from stage_plane.errors import StageError
from stage_plane.impl.memory import MemorySnapshot

logger = logging.getLogger(__name__)


def _run_git(
    cwd: Path, args: list[str], env: dict[str, str] | None = None
) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
        env=env,
    )
    return result.stdout.strip()


def _run_git_bytes(cwd: Path, args: list[str], input: bytes | None = None) -> bytes:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        check=True,
        input=input,
    )
    return result.stdout


class GitSnapshot(Snapshot):
    def __init__(self, repo_path: Path, commit_hash: str):
        self.repo_path = repo_path
        self.commit_hash = commit_hash
        self._paths: list[str] | None = None

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("GitSnapshot(...)")
        else:
            p.text(f"GitSnapshot(commit={self.commit_hash[:7]})")

    def _list_paths(self) -> list[str]:
        if self._paths is None:
            raw = _run_git_bytes(
                self.repo_path, ["ls-tree", "-r", "-z", "--name-only", self.commit_hash]
            )
            self._paths = [p.decode("utf-8") for p in raw.split(b"\0") if p]
        return self._paths

    def __getitem__(self, path: str) -> Blob:
        if path not in self._list_paths():
            raise KeyError(path)
        # git show <commit>:<path>
        return _run_git_bytes(self.repo_path, ["show", f"{self.commit_hash}:{path}"])

    def __iter__(self) -> Iterator[str]:
        return iter(self._list_paths())

    def __len__(self) -> int:
        return len(self._list_paths())


class GitSnapshotProvider(SnapshotProvider):
    """
    Snapshots read from ``HEAD`` of an existing git checkout.

    New commits are written with plumbing commands through a private index
    file, so neither the git index nor the working tree is touched.
    """

    def __init__(self, work_path: str | Path) -> None:
        self.work_path = Path(work_path).absolute()
        if not (self.work_path / ".git").exists():
            raise StageError(f"Not a git checkout: {self.work_path}")

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("GitSnapshotProvider(...)")
        else:
            p.text(f"GitSnapshotProvider(path={self.work_path})")

    def _head(self) -> str | None:
        try:
            return _run_git(self.work_path, ["rev-parse", "--verify", "HEAD"])
        except subprocess.CalledProcessError:
            # No commits yet
            return None

    def current_snapshot(self) -> Snapshot:
        head = self._head()
        if head is None:
            return MemorySnapshot({})
        return GitSnapshot(self.work_path, head)

    def advance(self, data: SnapshotData, message: str) -> None:
        parent = self._head()

        with tempfile.TemporaryDirectory() as tmp:
            env = {**os.environ, "GIT_INDEX_FILE": str(Path(tmp) / "index")}
            for path, content in sorted(data.items()):
                oid = _run_git_bytes(
                    self.work_path, ["hash-object", "-w", "--stdin"], input=content
                )
                _run_git(
                    self.work_path,
                    [
                        "update-index",
                        "--add",
                        "--cacheinfo",
                        f"100644,{oid.decode().strip()},{path}",
                    ],
                    env=env,
                )
            tree = _run_git(self.work_path, ["write-tree"], env=env)

        args = ["commit-tree", tree, "-m", message]
        if parent:
            args += ["-p", parent]
        commit = _run_git(self.work_path, args)
        _run_git(self.work_path, ["update-ref", "HEAD", commit])
        logger.debug("HEAD advanced to %s", commit[:7])


def create_git_snapshot_provider(work_path: str | Path) -> GitSnapshotProvider:
    return GitSnapshotProvider(work_path)

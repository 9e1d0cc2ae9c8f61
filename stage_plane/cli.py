"""Command-line interface for stage-plane"""
import argparse
import json
import logging
import sys

from stage_plane.base import SnapshotProvider, StageStore
from stage_plane.commit import commit_stage
from stage_plane.config import StageConfig
from stage_plane.errors import PersistenceError, StageError
from stage_plane.impl.files import create_file_stage_store
from stage_plane.impl.git import create_git_snapshot_provider
from stage_plane.impl.sql import (
    create_session_maker,
    create_sql_snapshot_provider,
    create_sql_stage_store,
)
from stage_plane.staging import StagingArea

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stage-plane")
    parser.add_argument("--root", default=".", help="Repository root")
    parser.add_argument(
        "--backend",
        choices=["files", "sql"],
        help="Stage store backend, chosen at init (default: files)",
    )
    parser.add_argument(
        "--snapshots",
        choices=["sql", "git"],
        help="Where committed snapshots live, chosen at init (default: sql)",
    )
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="cmd")
    sub.add_parser("init")
    sub.add_parser("status")

    p_add = sub.add_parser("add")
    p_add.add_argument("paths", nargs="+")

    p_rm = sub.add_parser("rm")
    p_rm.add_argument("path")

    p_commit = sub.add_parser("commit")
    p_commit.add_argument("-m", "--message", required=True)

    return parser


DEFAULT_SETTINGS = {"backend": "files", "snapshots": "sql"}


def save_settings(config: StageConfig, settings: dict[str, str]) -> None:
    config.meta_dir.mkdir(parents=True, exist_ok=True)
    try:
        config.settings_file.write_text(json.dumps(settings, indent=2))
    except OSError as e:
        raise PersistenceError(f"Failed to write settings: {e}") from e


def load_settings(config: StageConfig) -> dict[str, str]:
    if not config.settings_file.exists():
        return dict(DEFAULT_SETTINGS)
    try:
        settings = json.loads(config.settings_file.read_text())
    except (OSError, ValueError) as e:
        raise PersistenceError(f"Failed to read settings: {e}") from e
    if not isinstance(settings, dict):
        raise PersistenceError("Settings have unexpected layout")
    return {**DEFAULT_SETTINGS, **settings}


def resolve_settings(config: StageConfig, args: argparse.Namespace) -> dict[str, str]:
    """Settings recorded at init; a flag that contradicts them is an error."""
    settings = load_settings(config)
    for key in ("backend", "snapshots"):
        requested = getattr(args, key)
        if requested is not None and requested != settings[key]:
            raise StageError(
                f"Staging area was initialized with --{key} {settings[key]}."
            )
    return settings


def open_staging_area(config: StageConfig, backend: str, snapshots: str) -> StagingArea:
    config.meta_dir.mkdir(parents=True, exist_ok=True)

    session_maker = None
    if backend == "sql" or snapshots == "sql":
        session_maker = create_session_maker(config.database_url)

    store: StageStore
    if backend == "sql":
        store = create_sql_stage_store(session_maker)
        store.initialize()
    else:
        store = create_file_stage_store(config)

    provider: SnapshotProvider
    if snapshots == "git":
        provider = create_git_snapshot_provider(config.repository_root)
    else:
        provider = create_sql_snapshot_provider(session_maker)

    return StagingArea(store, provider, config)


def print_status(area: StagingArea) -> None:
    print("=== Staged Files ===")
    for path in sorted(area.staged_addition_paths()):
        print(path)
    print()
    print("=== Removed Files ===")
    for path in sorted(area.staged_removal_paths()):
        print(path)
    print()


def run(args: argparse.Namespace) -> int:
    config = StageConfig.from_env(args.root)

    if args.cmd == "init":
        if config.meta_dir.exists():
            raise StageError("A staging area already exists in the current directory.")
        settings = {
            "backend": args.backend or DEFAULT_SETTINGS["backend"],
            "snapshots": args.snapshots or DEFAULT_SETTINGS["snapshots"],
        }
        save_settings(config, settings)
        open_staging_area(config, settings["backend"], settings["snapshots"])
        print(f"Initialized empty staging area in {config.meta_dir}")
        return 0

    if not config.meta_dir.exists():
        raise StageError("Not in an initialized staging area directory.")

    settings = resolve_settings(config, args)
    area = open_staging_area(config, settings["backend"], settings["snapshots"])

    if args.cmd == "add":
        # Read everything first so a missing file aborts before any mutation
        contents = [(path, area.read_working(path)) for path in args.paths]
        for path, content in contents:
            area.add(path, content)
        return 0
    if args.cmd == "rm":
        area.remove(args.path)
        return 0
    if args.cmd == "status":
        print_status(area)
        return 0
    if args.cmd == "commit":
        commit_stage(area, area.snapshots, args.message)
        return 0

    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.cmd is None:
        parser.print_help()
        return 2

    try:
        return run(args)
    except StageError as e:
        logger.debug("Command '%s' failed", args.cmd, exc_info=True)
        print(e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import logging
import re
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Sequence


class BuildError(Exception):
    """Base exception for monorepo build errors."""


class ConfigError(BuildError):
    """Invalid source descriptors or build configuration."""


class GitCommandError(BuildError):
    """A git invocation exited non-zero."""


class SourceUnavailable(BuildError):
    """No candidate ref of a source could be cloned."""


class RewriteFailed(BuildError):
    """History rewrite to a subdirectory failed."""


class MergeFailed(BuildError):
    """Merging a rewritten source into the target was rejected."""


class FixupSkipped(BuildError):
    """A fixup step found nothing to act on."""


class BranchReplicationFailed(BuildError):
    """One or more auxiliary branches could not be replicated."""

    def __init__(self, failures: Sequence[tuple[str, str]]) -> None:
        self.failures = list(failures)
        details = "; ".join(f"{branch}: {reason}" for branch, reason in self.failures)
        super().__init__(f"Branch replication failed for {len(self.failures)} branch(es): {details}")


@dataclass(frozen=True)
class BuildPaths:
    root: Path
    staging: Path
    target: Path
    assets: Path


def resolve_paths(
    workspace_root: Path,
    *,
    assets: Path | None = None,
    staging_name: str = "temp",
    target_name: str = "monorepo",
) -> BuildPaths:
    root = workspace_root.expanduser().resolve()
    assets_dir = assets.expanduser().resolve() if assets else root
    return BuildPaths(
        root=root,
        staging=root / staging_name,
        target=root / target_name,
        assets=assets_dir,
    )


def sanitize_identifier(value: str) -> str:
    sanitized = re.sub(r"[^A-Za-z0-9._-]+", "-", value.strip()).strip("-")
    return sanitized or "source"


def reset_directory(path: Path, *, describe: str) -> None:
    if path.exists():
        if not path.is_dir():
            raise BuildError(f"Existing {describe} is not a directory: {path}")
        logging.warning("Removing existing %s at %s", describe, path)
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def remove_directories(paths: Sequence[Path]) -> List[Path]:
    removed: List[Path] = []
    for path in paths:
        if path.exists():
            shutil.rmtree(path)
            removed.append(path)
    return removed


@contextmanager
def staging_area(paths: BuildPaths) -> Iterator[Path]:
    """Provide a fresh staging directory and remove it however the block exits.

    The target directory is wiped up front but never removed on failure, so a
    partially built repository stays on disk for inspection.
    """
    reset_directory(paths.staging, describe="staging directory")
    if paths.target.exists():
        logging.warning("Target directory already exists. Removing it...")
        shutil.rmtree(paths.target)
    try:
        yield paths.staging
    except BaseException:
        logging.warning("Build failed. Cleaning up staging directory %s", paths.staging)
        raise
    finally:
        if paths.staging.exists():
            shutil.rmtree(paths.staging)

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from .gitutils import (
    add_remote,
    commit,
    fetch,
    git_rev_parse,
    init_repo,
    merge_unrelated,
    remove_remote,
)
from .rewrite import RewrittenSource
from .workspace import GitCommandError, MergeFailed, sanitize_identifier

ANCHOR_MESSAGE = "Initial commit: monorepo creation"


@dataclass
class MergeResult:
    source: str
    subdir: str
    branch: str
    commit: str
    status: str
    message: str = ""


def merge_message(source_name: str) -> str:
    return f"Merge {source_name} repository"


def init_target(target: Path, default_branch: str) -> str:
    """Create the target repository with its empty anchor commit."""
    logging.info("Initializing monorepo at %s...", target)
    init_repo(target, default_branch)
    return commit(target, ANCHOR_MESSAGE, allow_empty=True)


def merge_sources(target: Path, rewritten: Sequence[RewrittenSource]) -> List[MergeResult]:
    results: List[MergeResult] = []
    for item in rewritten:
        results.append(_merge_single(target, item))
    return results


def _merge_single(target: Path, item: RewrittenSource) -> MergeResult:
    name = item.source.name
    remote = sanitize_identifier(name)
    logging.info("Merging %s into monorepo...", name)
    try:
        add_remote(target, remote, item.path)
        fetch(target, remote)
        result = merge_unrelated(target, f"{remote}/{item.branch}", merge_message(name))
        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise MergeFailed(f"Merging {name} failed: {detail}")
    except GitCommandError as exc:
        raise MergeFailed(f"Merging {name} failed: {exc}") from exc
    finally:
        _drop_remote(target, remote)

    return MergeResult(
        source=name,
        subdir=item.source.subdir,
        branch=item.branch,
        commit=git_rev_parse(target),
        status="merged",
        message=merge_message(name),
    )


def _drop_remote(target: Path, remote: str) -> None:
    try:
        remove_remote(target, remote)
    except GitCommandError as exc:
        logging.debug("Remote %s was not registered: %s", remote, exc)

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Sequence

from .fixups import FixupGroup, FixupOutcome, normalize
from .gitutils import (
    add_remote,
    checkout,
    create_branch,
    current_branch,
    discard_changes,
    fetch,
    git_rev_parse,
    remove_remote,
)
from .rewrite import rewrite_source
from .sources import BranchJob
from .workspace import BuildError, ConfigError, GitCommandError, sanitize_identifier


@dataclass
class BranchResult:
    branch: str
    source: str
    status: str
    head: str | None = None
    message: str = ""
    fixups: List[FixupOutcome] = field(default_factory=list)


def replicate_branch(
    job: BranchJob,
    target: Path,
    staging: Path,
    *,
    groups: Sequence[FixupGroup],
    assets: Path,
    default_branch: str,
) -> BranchResult:
    """Attach ``job.branch`` of one source to ``target`` as its own branch head.

    The branch is rewritten into the source's subdirectory and created straight
    from the rewritten history; it is never merged into the default branch.
    Branch-relevant fixups are committed on the new branch, and the default
    branch is checked out again before returning, even on failure.
    """
    label = f"{job.source.name}-{job.branch}"
    logging.info("Processing %s of %s...", job.branch, job.source.name)
    rewritten = rewrite_source(job.source, staging, refs=[job.branch], label=label)

    remote = sanitize_identifier(label)
    add_remote(target, remote, rewritten.path)
    try:
        fetch(target, remote)
        create_branch(target, job.branch, f"{remote}/{rewritten.branch}")
    finally:
        remove_remote(target, remote)

    try:
        checkout(target, job.branch)
        logging.info("Applying branch fixups to %s...", job.branch)
        outcomes = normalize(target, groups, assets)
        head = git_rev_parse(target)
    except BaseException:
        discard_changes(target)
        raise
    finally:
        _restore_default(target, default_branch)

    logging.info("%s replicated successfully.", job.branch)
    return BranchResult(
        branch=job.branch,
        source=job.source.name,
        status="replicated",
        head=head,
        fixups=outcomes,
    )


def replicate_branches(
    jobs: Sequence[BranchJob],
    target: Path,
    staging: Path,
    *,
    groups: Mapping[str, FixupGroup],
    assets: Path,
    default_branch: str,
) -> List[BranchResult]:
    """Replicate every job, each with the fixup groups named by ``job.fixups``.

    A failing job is recorded and the remaining jobs still run.
    """
    results: List[BranchResult] = []
    for job in jobs:
        try:
            result = replicate_branch(
                job,
                target,
                staging,
                groups=_groups_for(job, groups),
                assets=assets,
                default_branch=default_branch,
            )
        except BuildError as exc:
            logging.error("Replicating %s of %s failed: %s", job.branch, job.source.name, exc)
            result = BranchResult(
                branch=job.branch,
                source=job.source.name,
                status="failed",
                message=str(exc),
            )
        results.append(result)
    return results


def _groups_for(job: BranchJob, groups: Mapping[str, FixupGroup]) -> List[FixupGroup]:
    missing = [name for name in job.fixups if name not in groups]
    if missing:
        raise ConfigError(f"Unknown fixup group(s) for {job.branch}: {', '.join(missing)}")
    return [groups[name] for name in job.fixups]


def _restore_default(target: Path, default_branch: str) -> None:
    try:
        if current_branch(target) != default_branch:
            checkout(target, default_branch, force=True)
    except GitCommandError as exc:
        raise BuildError(f"Could not switch back to {default_branch}: {exc}") from exc

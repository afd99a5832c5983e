from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence, Tuple

from .branches import replicate_branches
from .catalog import CATALOG_NAMES, available_groups, select_groups
from .fixups import normalize
from .gitutils import add_remote, filter_repo_command, has_git_dir, list_remotes, push_force
from .merge import init_target, merge_sources
from .reporting import BuildReport, summarize_cli, write_markdown_report
from .rewrite import RewrittenSource, rewrite_sources
from .sources import BuildConfig, validate_config
from .workspace import (
    BranchReplicationFailed,
    BuildError,
    BuildPaths,
    remove_directories,
    staging_area,
)


@dataclass(frozen=True)
class BuildContext:
    """Everything a build needs; nothing is read from the process cwd."""

    paths: BuildPaths
    config: BuildConfig
    jobs: int = 1


@dataclass
class BuildRun:
    context: BuildContext
    staging: Path
    report: BuildReport
    rewritten: List[RewrittenSource] = field(default_factory=list)


PipelineStep = Tuple[str, Callable[[BuildRun], None]]


def check_dependencies() -> None:
    logging.info("Checking dependencies...")
    if shutil.which("git") is None:
        raise BuildError("git is not installed. Please install git first.")
    if filter_repo_command() is None:
        raise BuildError(
            "git-filter-repo is not installed. Install it with: pip install git-filter-repo"
        )
    logging.info("All dependencies found.")


def _rewrite_step(run: BuildRun) -> None:
    run.rewritten = rewrite_sources(run.context.config.sources, run.staging, jobs=run.context.jobs)


def _init_step(run: BuildRun) -> None:
    config = run.context.config
    run.report.anchor = init_target(run.context.paths.target, config.default_branch)


def _merge_step(run: BuildRun) -> None:
    run.report.merges = merge_sources(run.context.paths.target, run.rewritten)


def _normalize_step(run: BuildRun) -> None:
    config = run.context.config
    groups = select_groups(config, config.fixups)
    run.report.fixups = normalize(run.context.paths.target, groups, run.context.paths.assets)


def _origin_step(run: BuildRun) -> None:
    origin = run.context.config.origin_url
    if not origin:
        logging.info("No origin configured; skipping remote setup.")
        return
    add_remote(run.context.paths.target, "origin", origin)
    run.report.origin_url = origin
    logging.info("Monorepo finalized with remote origin %s.", origin)


def _branches_step(run: BuildRun) -> None:
    config = run.context.config
    jobs = config.branch_jobs()
    if not jobs:
        return
    logging.info("Replicating %d auxiliary branch(es)...", len(jobs))
    run.report.branches = replicate_branches(
        jobs,
        run.context.paths.target,
        run.staging,
        groups=available_groups(config),
        assets=run.context.paths.assets,
        default_branch=config.default_branch,
    )


BUILD_STEPS: Sequence[PipelineStep] = (
    ("rewrite sources", _rewrite_step),
    ("initialize target", _init_step),
    ("merge sources", _merge_step),
    ("normalize content", _normalize_step),
    ("configure origin", _origin_step),
    ("replicate branches", _branches_step),
)


def build(
    context: BuildContext,
    *,
    report_path: Path | None = None,
    steps: Sequence[PipelineStep] = BUILD_STEPS,
) -> BuildReport:
    config = context.config
    validate_config(config, known_fixups=CATALOG_NAMES)
    check_dependencies()
    logging.info("Starting monorepo build process...")

    report = BuildReport(target=context.paths.target, default_branch=config.default_branch)
    with staging_area(context.paths) as staging:
        run = BuildRun(context=context, staging=staging, report=report)
        for name, step in steps:
            logging.info("== %s", name)
            step(run)

    logging.info("\n%s", summarize_cli(report))
    if report_path is not None:
        write_markdown_report(report_path, report)

    failed = report.failed_branches
    if failed:
        raise BranchReplicationFailed([(result.branch, result.message) for result in failed])

    logging.info("Monorepo created successfully at: %s", context.paths.target)
    logging.info(
        "Next steps:\n  cd %s\n  git log --oneline  # View combined history\n"
        "  make help          # View available make targets",
        context.paths.target,
    )
    return report


def push(context: BuildContext) -> None:
    target = context.paths.target
    if not has_git_dir(target):
        raise BuildError(f"{target} does not exist. Run 'build' first.")
    if "origin" not in list_remotes(target):
        raise BuildError(f"{target} has no origin remote configured.")

    config = context.config
    logging.info("Pushing %s branch...", config.default_branch)
    push_force(target, "origin", [config.default_branch], set_upstream=True)
    branches = config.auxiliary_branches()
    if branches:
        logging.info("Pushing auxiliary branches: %s", ", ".join(branches))
        push_force(target, "origin", branches)
    logging.info("Push complete.")


def clean(context: BuildContext) -> List[Path]:
    removed = remove_directories([context.paths.target, context.paths.staging])
    for path in removed:
        logging.info("Removed %s", path)
    if not removed:
        logging.info("Nothing to clean.")
    return removed

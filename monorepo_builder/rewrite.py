from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from .gitutils import clone_single_branch, current_branch, rewrite_to_subdirectory
from .sources import SourceDescriptor
from .workspace import RewriteFailed, SourceUnavailable, sanitize_identifier


@dataclass(frozen=True)
class RewrittenSource:
    source: SourceDescriptor
    path: Path
    ref: str
    branch: str


def clone_source(url: str, refs: Sequence[str], destination: Path) -> str:
    """Clone the first ref of ``refs`` that exists and return its name."""
    for ref in refs:
        logging.info("Cloning %s (%s)...", url, ref)
        if clone_single_branch(url, ref, destination):
            return ref
        logging.debug("Ref %s not available from %s", ref, url)
    raise SourceUnavailable(f"None of the refs {', '.join(refs)} could be cloned from {url}")


def rewrite_source(
    source: SourceDescriptor,
    staging: Path,
    *,
    refs: Sequence[str] | None = None,
    label: str | None = None,
) -> RewrittenSource:
    destination = staging / sanitize_identifier(label or source.name)
    ref = clone_source(source.url, refs or source.refs, destination)

    logging.info("Rewriting %s history to %s/...", source.name, source.subdir)
    result = rewrite_to_subdirectory(destination, source.subdir)
    if result.returncode != 0:
        raise RewriteFailed(
            f"git filter-repo failed for {source.name}: {result.stderr.strip()}"
        )
    return RewrittenSource(
        source=source,
        path=destination,
        ref=ref,
        branch=current_branch(destination),
    )


def rewrite_sources(
    sources: Sequence[SourceDescriptor],
    staging: Path,
    *,
    jobs: int = 1,
) -> List[RewrittenSource]:
    if jobs <= 1 or len(sources) <= 1:
        return [rewrite_source(source, staging) for source in sources]

    logging.info("Rewriting %d sources with %d workers", len(sources), jobs)
    with ThreadPoolExecutor(max_workers=jobs) as pool:
        futures = [pool.submit(rewrite_source, source, staging) for source in sources]
        # result() re-raises the first failure in descriptor order
        return [future.result() for future in futures]

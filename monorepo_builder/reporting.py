from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .branches import BranchResult
from .fixups import FixupOutcome
from .merge import MergeResult


@dataclass
class BuildReport:
    target: Path
    default_branch: str
    anchor: str | None = None
    merges: List[MergeResult] = field(default_factory=list)
    fixups: List[FixupOutcome] = field(default_factory=list)
    branches: List[BranchResult] = field(default_factory=list)
    origin_url: str | None = None

    @property
    def failed_branches(self) -> List[BranchResult]:
        return [result for result in self.branches if result.status == "failed"]


def summarize_cli(report: BuildReport) -> str:
    lines = []
    lines.append("Merge Results")
    lines.append("=============")
    for result in report.merges:
        lines.append(f"- {result.source} -> {result.subdir}/: {result.status} ({result.commit[:12]})")
    if report.fixups:
        lines.append("")
        lines.append("Fixups")
        lines.append("======")
        for outcome in report.fixups:
            detail = f"- {outcome.group}: {outcome.status}"
            if outcome.skipped:
                detail += f" [skipped: {len(outcome.skipped)}]"
            lines.append(detail)
    if report.branches:
        lines.append("")
        lines.append("Branches")
        lines.append("========")
        for result in report.branches:
            detail = f"- {result.branch} ({result.source}): {result.status}"
            if result.message:
                detail += f" ({result.message})"
            lines.append(detail)
    return "\n".join(lines)


def write_markdown_report(output_path: Path, report: BuildReport) -> None:
    lines = ["# Monorepo Build Report", ""]
    lines.append(f"- Target: `{report.target}`")
    lines.append(f"- Default branch: `{report.default_branch}`")
    if report.anchor:
        lines.append(f"- Anchor commit: `{report.anchor}`")
    if report.origin_url:
        lines.append(f"- Origin: `{report.origin_url}`")
    lines.append("")

    lines.append("## Merged Sources")
    lines.append("")
    for result in report.merges:
        lines.append(f"- **{result.source}** — `{result.subdir}/` from `{result.branch}`")
        lines.append(f"  - Merge commit: `{result.commit}`")
    lines.append("")

    if report.fixups:
        lines.append("## Fixups")
        lines.append("")
        for outcome in report.fixups:
            lines.append(f"- **{outcome.title}** — {outcome.status}")
            if outcome.commit:
                lines.append(f"  - Commit: `{outcome.commit}`")
            for description in outcome.skipped:
                lines.append(f"  - Skipped: {description}")
        lines.append("")

    if report.branches:
        lines.append("## Branches")
        lines.append("")
        for result in report.branches:
            lines.append(f"- **{result.branch}** — {result.status}")
            if result.head:
                lines.append(f"  - Head: `{result.head}`")
            if result.message:
                lines.append(f"  - Notes: {result.message}")
            lines.append("")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("\n".join(lines).rstrip() + "\n")
    logging.info("Wrote report to %s", output_path)

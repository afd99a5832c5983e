"""
Post-merge content fixups.

A fixup group is one logical change to the merged tree (one commit at most).
Each group is an ordered list of steps; a step is one of:

* ``Substitute`` - in-place regular expression substitution over globbed files
* ``ReplaceFile`` - overwrite an existing file with a template from the assets
* ``Delete`` - remove files or directories matched by globs
* ``CopyIn`` - add a file or directory tree from the assets

Groups can also be declared in the build config as JSON, e.g.::

    {"name": "ports", "title": "Use port 8080",
     "steps": [{"type": "substitute", "paths": ["app/*.toml"],
                "pattern": "8000", "replacement": "8080"}]}

Steps only touch the working tree; ``normalize`` is what stages and commits.
A step with nothing to act on raises ``FixupSkipped``; the group carries on.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from .gitutils import commit, has_changes, stage_all
from .workspace import BuildError, FixupSkipped


@dataclass(frozen=True)
class Substitute:
    description: str
    paths: Tuple[str, ...]
    pattern: str
    replacement: str
    flags: int = re.MULTILINE

    def apply(self, root: Path, assets: Path) -> List[str]:
        files = [path for path in glob_paths(root, self.paths) if path.is_file()]
        if not files:
            raise FixupSkipped(f"no file matches {', '.join(self.paths)}")
        regex = re.compile(self.pattern, self.flags)
        changed: List[str] = []
        for path in files:
            try:
                original = _read_text(path)
            except UnicodeDecodeError:
                logging.warning("'%s': %s is not UTF-8 text, leaving it alone", self.description, path)
                continue
            updated = regex.sub(self.replacement, original)
            if updated != original:
                _write_text(path, updated)
                changed.append(_relative(root, path))
        return changed


@dataclass(frozen=True)
class ReplaceFile:
    description: str
    path: str
    template: str

    def apply(self, root: Path, assets: Path) -> List[str]:
        target = root / self.path
        if not target.is_file():
            raise FixupSkipped(f"{self.path} does not exist")
        template = assets / self.template
        if not template.is_file():
            raise FixupSkipped(f"template {template} not found")
        content = template.read_bytes()
        if target.read_bytes() == content:
            return []
        target.write_bytes(content)
        return [self.path]


@dataclass(frozen=True)
class Delete:
    description: str
    paths: Tuple[str, ...]

    def apply(self, root: Path, assets: Path) -> List[str]:
        matches = glob_paths(root, self.paths)
        if not matches:
            raise FixupSkipped(f"nothing to delete at {', '.join(self.paths)}")
        removed: List[str] = []
        for path in matches:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
            else:
                continue
            removed.append(_relative(root, path))
        return removed


@dataclass(frozen=True)
class CopyIn:
    description: str
    asset: str
    destination: str
    executable: bool = False

    def apply(self, root: Path, assets: Path) -> List[str]:
        source = assets / self.asset
        if not source.exists():
            raise FixupSkipped(f"asset {source} not found")
        target = root / self.destination
        if source.is_dir():
            shutil.copytree(source, target, dirs_exist_ok=True)
            return sorted(
                _relative(root, target / item.relative_to(source))
                for item in source.rglob("*")
                if item.is_file()
            )
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        if self.executable:
            mode = target.stat().st_mode
            target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return [self.destination]


FixupStep = Union[Substitute, ReplaceFile, Delete, CopyIn]


@dataclass(frozen=True)
class FixupGroup:
    name: str
    title: str
    steps: Tuple[FixupStep, ...]
    rationale: Tuple[str, ...] = ()

    def commit_message(self) -> str:
        if not self.rationale:
            return self.title
        body = "\n".join(f"- {line}" for line in self.rationale)
        return f"{self.title}\n\n{body}"


@dataclass
class FixupOutcome:
    group: str
    title: str
    status: str
    commit: str | None = None
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


_FLAG_NAMES = {
    "IGNORECASE": re.IGNORECASE,
    "MULTILINE": re.MULTILINE,
    "DOTALL": re.DOTALL,
}


def step_from_dict(data: dict) -> FixupStep:
    kind = data.get("type")
    description = data.get("description") or f"{kind} fixup"
    try:
        if kind == "substitute":
            flags = 0
            for name in data.get("flags", ["MULTILINE"]):
                flags |= _FLAG_NAMES[name]
            re.compile(data["pattern"], flags)
            return Substitute(
                description=description,
                paths=tuple(data["paths"]),
                pattern=data["pattern"],
                replacement=data["replacement"],
                flags=flags,
            )
        if kind == "replace":
            return ReplaceFile(description=description, path=data["path"], template=data["template"])
        if kind == "delete":
            return Delete(description=description, paths=tuple(data["paths"]))
        if kind == "copy":
            return CopyIn(
                description=description,
                asset=data["asset"],
                destination=data["destination"],
                executable=bool(data.get("executable", False)),
            )
    except KeyError as exc:
        raise ValueError(f"{kind} step '{description}' is missing {exc}") from exc
    except re.error as exc:
        raise ValueError(f"substitute step '{description}' has a bad pattern: {exc}") from exc
    raise ValueError(f"Unknown fixup step type: {kind!r}")


def group_from_dict(data: dict) -> FixupGroup:
    try:
        name = data["name"]
        steps = data["steps"]
    except (KeyError, TypeError) as exc:
        raise ValueError("Fixup groups need 'name' and 'steps'") from exc
    return FixupGroup(
        name=name,
        title=data.get("title", name),
        steps=tuple(step_from_dict(step) for step in steps),
        rationale=tuple(data.get("rationale", ())),
    )


def glob_paths(root: Path, patterns: Sequence[str]) -> List[Path]:
    found: dict[str, Path] = {}
    for pattern in patterns:
        for path in root.glob(pattern):
            relative = path.relative_to(root)
            if ".git" in relative.parts:
                continue
            found[str(relative)] = path
    return [found[key] for key in sorted(found)]


def apply_group(group: FixupGroup, root: Path, assets: Path) -> FixupOutcome:
    """Apply every step of ``group`` to the tree at ``root`` without committing."""
    outcome = FixupOutcome(group=group.name, title=group.title, status="unchanged")
    for step in group.steps:
        try:
            touched = step.apply(root, assets)
        except FixupSkipped as exc:
            logging.warning("Skipping '%s': %s", step.description, exc)
            outcome.skipped.append(step.description)
            continue
        except OSError as exc:
            raise BuildError(f"Fixup '{step.description}' of {group.name} failed: {exc}") from exc
        if touched:
            logging.info("✓ %s (%d path(s))", step.description, len(touched))
            outcome.applied.append(step.description)
        else:
            logging.debug("No change from '%s'", step.description)
    return outcome


def normalize(repo: Path, groups: Sequence[FixupGroup], assets: Path) -> List[FixupOutcome]:
    outcomes: List[FixupOutcome] = []
    for group in groups:
        logging.info("Applying fixup: %s", group.title)
        outcome = apply_group(group, repo, assets)
        if has_changes(repo):
            stage_all(repo)
            outcome.commit = commit(repo, group.commit_message())
            outcome.status = "committed"
            logging.info("Committed '%s' as %s", group.title, outcome.commit[:12])
        else:
            logging.info("No changes for '%s'; nothing to commit.", group.title)
        outcomes.append(outcome)
    return outcomes


def _read_text(path: Path) -> str:
    with path.open("r", encoding="utf-8", newline="") as handle:
        return handle.read()


def _write_text(path: Path, content: str) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(content)


def _relative(root: Path, path: Path) -> str:
    return os.path.relpath(path, root).replace(os.sep, "/")

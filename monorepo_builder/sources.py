from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Sequence, Tuple

from .fixups import FixupGroup, group_from_dict
from .workspace import ConfigError, sanitize_identifier

DEFAULT_REFS: Tuple[str, ...] = ("main", "master")
DEFAULT_BRANCH_FIXUPS: Tuple[str, ...] = ("python-package-paths",)


def source_name_from_url(url: str) -> str:
    cleaned = url.strip().rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")]
    name = cleaned.replace(":", "/").split("/")[-1]
    return name or "source"


@dataclass(frozen=True)
class SourceDescriptor:
    url: str
    subdir: str
    name: str = ""
    refs: Tuple[str, ...] = DEFAULT_REFS
    branches: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", source_name_from_url(self.url))


@dataclass(frozen=True)
class BranchJob:
    source: SourceDescriptor
    branch: str
    fixups: Tuple[str, ...]


@dataclass(frozen=True)
class BuildConfig:
    sources: Tuple[SourceDescriptor, ...]
    origin_url: str | None = None
    default_branch: str = "main"
    fixups: Tuple[str, ...] | None = None
    branch_fixups: Tuple[str, ...] = DEFAULT_BRANCH_FIXUPS
    assets: Path | None = None
    custom_fixups: Tuple[FixupGroup, ...] = ()

    def branch_jobs(self) -> List[BranchJob]:
        return [
            BranchJob(source=source, branch=branch, fixups=self.branch_fixups)
            for source in self.sources
            for branch in source.branches
        ]

    def auxiliary_branches(self) -> List[str]:
        return [job.branch for job in self.branch_jobs()]


DEFAULT_CONFIG = BuildConfig(
    sources=(
        SourceDescriptor(
            url="https://github.com/jumpstarter-dev/jumpstarter.git",
            subdir="python",
            branches=("release-0.5", "release-0.6", "release-0.7"),
        ),
        SourceDescriptor(url="https://github.com/jumpstarter-dev/jumpstarter-protocol.git", subdir="protocol"),
        SourceDescriptor(url="https://github.com/jumpstarter-dev/jumpstarter-controller.git", subdir="controller"),
        SourceDescriptor(url="https://github.com/jumpstarter-dev/jumpstarter-e2e.git", subdir="e2e"),
    ),
    origin_url="git@github.com:jumpstarter-dev/monorepo.git",
)


def load_config(path: Path, *, known_fixups: Sequence[str] = ()) -> BuildConfig:
    path = path.expanduser().resolve()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigError(f"Config {path} is not valid UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config {path} is not valid JSON: {exc}") from exc
    config = config_from_dict(data, base_dir=path.parent)
    validate_config(config, known_fixups=known_fixups)
    logging.info("Loaded %d source(s) from %s", len(config.sources), path)
    return config


def config_from_dict(data: Dict[str, Any], *, base_dir: Path | None = None) -> BuildConfig:
    if not isinstance(data, dict):
        raise ConfigError("Config must be a JSON object")
    entries = data.get("sources")
    if not entries:
        raise ConfigError("Config must list at least one source")

    sources = []
    for index, entry in enumerate(entries, start=1):
        try:
            url = entry["url"]
            subdir = entry["subdir"]
        except (KeyError, TypeError) as exc:
            raise ConfigError(f"Source #{index} needs 'url' and 'subdir'") from exc
        sources.append(
            SourceDescriptor(
                url=url,
                subdir=subdir,
                name=entry.get("name", ""),
                refs=tuple(entry.get("refs", DEFAULT_REFS)),
                branches=tuple(entry.get("branches", ())),
            )
        )

    assets = data.get("assets")
    assets_path = None
    if assets:
        assets_path = Path(assets).expanduser()
        if not assets_path.is_absolute() and base_dir is not None:
            assets_path = base_dir / assets_path

    try:
        custom = tuple(group_from_dict(group) for group in data.get("custom_fixups", ()))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    fixups = data.get("fixups")
    return BuildConfig(
        sources=tuple(sources),
        origin_url=data.get("origin"),
        default_branch=data.get("default_branch", "main"),
        fixups=tuple(fixups) if fixups is not None else None,
        branch_fixups=tuple(data.get("branch_fixups", DEFAULT_BRANCH_FIXUPS)),
        assets=assets_path,
        custom_fixups=custom,
    )


def validate_config(config: BuildConfig, *, known_fixups: Sequence[str] = ()) -> None:
    seen_subdirs: Dict[str, str] = {}
    seen_names: set[str] = set()
    for source in config.sources:
        subdir = _normalize_subdir(source.subdir)
        if subdir in seen_subdirs:
            raise ConfigError(
                f"Sources {seen_subdirs[subdir]} and {source.name} share subdirectory '{subdir}'"
            )
        for other, owner in seen_subdirs.items():
            if subdir.startswith(other + "/") or other.startswith(subdir + "/"):
                raise ConfigError(
                    f"Subdirectory '{subdir}' of {source.name} overlaps '{other}' of {owner}"
                )
        seen_subdirs[subdir] = source.name
        if source.name in seen_names:
            raise ConfigError(f"Duplicate source name: {source.name}")
        seen_names.add(source.name)
        if not source.refs:
            raise ConfigError(f"Source {source.name} has no candidate refs")

    branches = config.auxiliary_branches()
    if config.default_branch in branches:
        raise ConfigError(f"Auxiliary branch may not be the default branch '{config.default_branch}'")
    duplicates = sorted({branch for branch in branches if branches.count(branch) > 1})
    if duplicates:
        raise ConfigError(f"Auxiliary branch(es) requested twice: {', '.join(duplicates)}")

    # Staging directories and temporary remotes are keyed by these labels.
    labels: Dict[str, str] = {}
    work_items = [(source.name, source.name) for source in config.sources] + [
        (f"{job.source.name}-{job.branch}", f"{job.branch} of {job.source.name}")
        for job in config.branch_jobs()
    ]
    for label, owner in work_items:
        key = sanitize_identifier(label)
        if key in labels:
            raise ConfigError(f"{owner} and {labels[key]} would share the working name '{key}'")
        labels[key] = owner

    custom_names = [group.name for group in config.custom_fixups]
    clashes = sorted(set(custom_names) & set(known_fixups)) or sorted(
        {name for name in custom_names if custom_names.count(name) > 1}
    )
    if clashes:
        raise ConfigError(f"Duplicate fixup group name(s): {', '.join(clashes)}")

    if known_fixups:
        requested = list(config.fixups or ()) + list(config.branch_fixups)
        unknown = sorted(set(requested) - set(known_fixups) - set(custom_names))
        if unknown:
            raise ConfigError(f"Unknown fixup group(s): {', '.join(unknown)}")


def _normalize_subdir(value: str) -> str:
    path = PurePosixPath(value.strip())
    if not value.strip() or path.is_absolute() or ".." in path.parts or str(path) == ".":
        raise ConfigError(f"Invalid target subdirectory: '{value}'")
    return str(path)

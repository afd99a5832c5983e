from __future__ import annotations

from typing import Dict, List, Sequence

from .fixups import CopyIn, Delete, FixupGroup, Substitute
from .sources import BuildConfig
from .workspace import ConfigError

# ``../..`` not already part of a longer ``../../..`` chain
RELATIVE_ROOT_PATTERN = r"(?<!\.\./)\.\./\.\.(?!/\.\.)"
DEX_ISSUER_PATTERN = r"https://dex\.dex\.svc\.cluster\.local:5556"
NIP_ISSUER = "https://dex.127.0.0.1.nip.io:5556"

PYTHON_CONTAINERFILES = ("python/Dockerfile", "python/.devfile/Containerfile.client")


def catalog_groups(subdirs: Sequence[str] = ("controller", "e2e", "protocol", "python")) -> List[FixupGroup]:
    return [
        FixupGroup(
            name="toplevel-files",
            title="Add monorepo top-level files",
            steps=(
                CopyIn("Copy Makefile.monorepo to Makefile", "Makefile.monorepo", "Makefile"),
                CopyIn("Copy README.monorepo.md to README.md", "README.monorepo.md", "README.md"),
                CopyIn("Copy typos.toml", "typos.toml", "typos.toml"),
            ),
            rationale=(
                "Add unified README.md with overview of all components",
                "Add Makefile with e2e-setup, e2e, e2e-full and e2e-clean targets",
                "Add typos.toml to exclude false positives (ANDed, mosquitto, etc.)",
            ),
        ),
        FixupGroup(
            name="python-package-paths",
            title="Fix Python package paths for monorepo structure",
            steps=(
                Substitute(
                    "Update raw-options root in python/packages pyproject.toml files",
                    ("python/packages/**/pyproject.toml",),
                    RELATIVE_ROOT_PATTERN,
                    "../../..",
                ),
                Substitute(
                    "Update raw-options root in the driver template",
                    ("python/__templates__/driver/pyproject.toml.tmpl",),
                    RELATIVE_ROOT_PATTERN,
                    "../../..",
                ),
            ),
            rationale=(
                "python/ now lives one level below the repository root, so the "
                "hatch-vcs raw-options root moves from ../.. to ../../..",
            ),
        ),
        FixupGroup(
            name="multiversion-docs",
            title="Update multiversion.sh paths for monorepo worktree structure",
            steps=(
                Substitute(
                    "Point --project at the python/ worktree path",
                    ("python/docs/multiversion.sh",),
                    r'--project "\$\{WORKTREE\}"',
                    '--project "${WORKTREE}/python"',
                ),
                Substitute(
                    "Point the docs path at python/docs",
                    ("python/docs/multiversion.sh",),
                    r'"\$\{WORKTREE\}/docs"',
                    '"${WORKTREE}/python/docs"',
                ),
                Substitute(
                    "Point the docs build path at python/docs/build",
                    ("python/docs/multiversion.sh",),
                    r"\$\{WORKTREE\}/docs/build",
                    "${WORKTREE}/python/docs/build",
                ),
            ),
            rationale=("Worktrees are checked out at the monorepo root, so docs live under python/",),
        ),
        FixupGroup(
            name="python-containerfiles",
            title="Build Python container images from the repository root",
            steps=(
                Substitute(
                    "Drop ARG GIT_VERSION",
                    PYTHON_CONTAINERFILES,
                    r"^ARG GIT_VERSION\r?(?:\n|\Z)",
                    "",
                ),
                Substitute(
                    "Drop SETUPTOOLS_SCM_PRETEND_VERSION",
                    PYTHON_CONTAINERFILES,
                    r"^ENV SETUPTOOLS_SCM_PRETEND_VERSION=\$GIT_VERSION\r?(?:\n|\Z)",
                    "",
                ),
                Substitute(
                    "Build from /src/python",
                    PYTHON_CONTAINERFILES,
                    r"make -C /src build",
                    "make -C /src/python build",
                ),
                Substitute(
                    "Mount /src/python/dist",
                    PYTHON_CONTAINERFILES,
                    r"source=/src/dist",
                    "source=/src/python/dist",
                ),
            ),
            rationale=(
                "Update Python Dockerfiles to use repo root context (includes .git for hatch-vcs)",
                "GIT_VERSION is no longer needed with a real .git directory",
            ),
        ),
        FixupGroup(
            name="e2e-dex",
            title="Configure e2e dex to use dex.127.0.0.1.nip.io",
            steps=(
                Substitute(
                    "Add dex.127.0.0.1.nip.io to dex-csr.json hosts",
                    ("e2e/dex-csr.json",),
                    r'("hosts": \[\s*"dex\.dex\.svc\.cluster\.local")'
                    r'(?!,\s*"dex\.127\.0\.0\.1\.nip\.io")',
                    '\\1,\n        "dex.127.0.0.1.nip.io"',
                ),
                Substitute(
                    "Use the nip.io issuer in dex.values.yaml",
                    ("e2e/dex.values.yaml",),
                    DEX_ISSUER_PATTERN,
                    NIP_ISSUER,
                ),
                Substitute(
                    "Use the nip.io issuer URL in values.kind.yaml",
                    ("e2e/values.kind.yaml",),
                    "url: " + DEX_ISSUER_PATTERN,
                    "url: " + NIP_ISSUER,
                ),
                Substitute(
                    "Use the nip.io issuer in tests.bats",
                    ("e2e/tests.bats",),
                    DEX_ISSUER_PATTERN,
                    NIP_ISSUER,
                ),
                Substitute(
                    "Run tests.bats from the monorepo root",
                    ("e2e/tests.bats",),
                    r"\$GITHUB_ACTION_PATH",
                    "e2e",
                ),
            ),
            rationale=("Configure dex to use dex.127.0.0.1.nip.io (no /etc/hosts modification needed)",),
        ),
        FixupGroup(
            name="github-actions",
            title="Move GitHub Actions to the repository root",
            steps=(
                CopyIn("Copy unified workflows", "github_actions/workflows", ".github/workflows"),
                CopyIn("Copy combined dependabot.yml", "github_actions/dependabot.yml", ".github/dependabot.yml"),
                Delete("Remove e2e/action.yml", ("e2e/action.yml",)),
                Delete(
                    "Remove per-component .github directories",
                    tuple(f"{subdir}/.github" for subdir in subdirs),
                ),
                Delete("Remove controller/typos.toml", ("controller/typos.toml",)),
            ),
            rationale=(
                "Move all workflows to unified .github/workflows/ directory",
                "E2E workflow uses make targets instead of the composite action",
                "Add combined dependabot.yml for all package ecosystems",
                "Remove old .github directories from the component subdirectories",
                "Remove component-level typos.toml in favour of the root config",
            ),
        ),
        FixupGroup(
            name="e2e-scripts",
            title="Add e2e setup and run scripts",
            steps=(
                CopyIn("Install e2e/setup-e2e.sh", "patches/setup-e2e.sh", "e2e/setup-e2e.sh", executable=True),
                CopyIn("Install e2e/run-e2e.sh", "patches/run-e2e.sh", "e2e/run-e2e.sh", executable=True),
            ),
            rationale=(
                "Add e2e/setup-e2e.sh script for one-time e2e environment setup",
                "Add e2e/run-e2e.sh script for running end-to-end tests",
            ),
        ),
    ]


CATALOG_NAMES = tuple(group.name for group in catalog_groups())


def available_groups(config: BuildConfig) -> Dict[str, FixupGroup]:
    groups = catalog_groups([source.subdir for source in config.sources])
    groups.extend(config.custom_fixups)
    return {group.name: group for group in groups}


def select_groups(config: BuildConfig, names: Sequence[str] | None) -> List[FixupGroup]:
    available = available_groups(config)
    if names is None:
        return list(available.values())
    missing = [name for name in names if name not in available]
    if missing:
        raise ConfigError(f"Unknown fixup group(s): {', '.join(missing)}")
    return [available[name] for name in names]

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from monorepo_builder.catalog import RELATIVE_ROOT_PATTERN, catalog_groups
from monorepo_builder.fixups import (
    CopyIn,
    Delete,
    FixupGroup,
    ReplaceFile,
    Substitute,
    apply_group,
    group_from_dict,
)
from monorepo_builder.workspace import FixupSkipped

PACKAGE_ROOTS = Substitute(
    "Update package roots",
    ("packages/*/config.toml",),
    RELATIVE_ROOT_PATTERN,
    "../../..",
)


def write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def catalog_group(name: str) -> FixupGroup:
    return next(group for group in catalog_groups() if group.name == name)


def test_substitute_rewrites_every_matching_file(tmp_path: Path) -> None:
    write(tmp_path, "packages/a/config.toml", 'root = "../.."\n')
    write(tmp_path, "packages/b/config.toml", 'root = "../../"\nother = "x"\n')
    write(tmp_path, "packages/c/README.md", 'root = "../.."\n')

    changed = PACKAGE_ROOTS.apply(tmp_path, tmp_path)

    assert changed == ["packages/a/config.toml", "packages/b/config.toml"]
    assert (tmp_path / "packages/a/config.toml").read_text() == 'root = "../../.."\n'
    assert (tmp_path / "packages/b/config.toml").read_text() == 'root = "../../../"\nother = "x"\n'
    assert (tmp_path / "packages/c/README.md").read_text() == 'root = "../.."\n'


def test_substitute_is_idempotent(tmp_path: Path) -> None:
    write(tmp_path, "packages/a/config.toml", 'root = "../.."\n')

    PACKAGE_ROOTS.apply(tmp_path, tmp_path)
    assert PACKAGE_ROOTS.apply(tmp_path, tmp_path) == []
    assert (tmp_path / "packages/a/config.toml").read_text() == 'root = "../../.."\n'


def test_substitute_preserves_crlf(tmp_path: Path) -> None:
    path = tmp_path / "packages/a/config.toml"
    path.parent.mkdir(parents=True)
    path.write_bytes(b'root = "../.."\r\nname = "a"\r\n')

    PACKAGE_ROOTS.apply(tmp_path, tmp_path)

    assert path.read_bytes() == b'root = "../../.."\r\nname = "a"\r\n'


def test_substitute_without_matches_is_skipped(tmp_path: Path) -> None:
    with pytest.raises(FixupSkipped):
        PACKAGE_ROOTS.apply(tmp_path, tmp_path)


def test_apply_group_logs_skipped_steps(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    write(tmp_path, "packages/a/config.toml", 'root = "../.."\n')
    group = FixupGroup(
        name="roots",
        title="Fix roots",
        steps=(PACKAGE_ROOTS, Delete("Remove stale action", ("e2e/action.yml",))),
    )
    caplog.set_level(logging.WARNING)

    outcome = apply_group(group, tmp_path, tmp_path)

    assert outcome.applied == ["Update package roots"]
    assert outcome.skipped == ["Remove stale action"]
    assert any("Remove stale action" in record.message for record in caplog.records)


def test_delete_removes_files_and_directories(tmp_path: Path) -> None:
    write(tmp_path, "python/.github/workflows/ci.yml", "on: push\n")
    write(tmp_path, "controller/typos.toml", "[default]\n")
    write(tmp_path, "controller/main.go", "package main\n")
    step = Delete("Remove leftovers", ("python/.github", "controller/typos.toml", "e2e/.github"))

    removed = step.apply(tmp_path, tmp_path)

    assert removed == ["controller/typos.toml", "python/.github"]
    assert not (tmp_path / "python/.github").exists()
    assert (tmp_path / "controller/main.go").exists()


def test_copy_in_file_and_tree(tmp_path: Path) -> None:
    assets = tmp_path / "assets"
    root = tmp_path / "root"
    root.mkdir()
    write(assets, "patches/setup-e2e.sh", "#!/bin/sh\necho setup\n")
    write(assets, "github_actions/workflows/lint.yml", "name: lint\n")
    write(assets, "github_actions/workflows/build.yml", "name: build\n")

    script = CopyIn("Install setup script", "patches/setup-e2e.sh", "e2e/setup-e2e.sh", executable=True)
    workflows = CopyIn("Copy workflows", "github_actions/workflows", ".github/workflows")

    assert script.apply(root, assets) == ["e2e/setup-e2e.sh"]
    assert os.access(root / "e2e/setup-e2e.sh", os.X_OK)
    assert workflows.apply(root, assets) == [".github/workflows/build.yml", ".github/workflows/lint.yml"]
    assert (root / ".github/workflows/lint.yml").read_text() == "name: lint\n"


def test_copy_in_missing_asset_is_skipped(tmp_path: Path) -> None:
    step = CopyIn("Install run script", "patches/run-e2e.sh", "e2e/run-e2e.sh")
    with pytest.raises(FixupSkipped):
        step.apply(tmp_path, tmp_path / "assets")


def test_replace_file_requires_existing_target(tmp_path: Path) -> None:
    assets = tmp_path / "assets"
    root = tmp_path / "root"
    write(assets, "templates/Dockerfile", "FROM scratch\n")
    step = ReplaceFile("Replace Dockerfile", "python/Dockerfile", "templates/Dockerfile")

    with pytest.raises(FixupSkipped):
        step.apply(root, assets)

    write(root, "python/Dockerfile", "FROM fedora\n")
    assert step.apply(root, assets) == ["python/Dockerfile"]
    assert (root / "python/Dockerfile").read_text() == "FROM scratch\n"
    assert step.apply(root, assets) == []


def test_containerfile_fixups(tmp_path: Path) -> None:
    write(
        tmp_path,
        "python/Dockerfile",
        "FROM fedora\n"
        "ARG GIT_VERSION\n"
        "ENV SETUPTOOLS_SCM_PRETEND_VERSION=$GIT_VERSION\n"
        "RUN make -C /src build\n"
        "RUN --mount=type=bind,source=/src/dist,target=/dist true\n",
    )

    apply_group(catalog_group("python-containerfiles"), tmp_path, tmp_path)
    first = (tmp_path / "python/Dockerfile").read_text()
    apply_group(catalog_group("python-containerfiles"), tmp_path, tmp_path)

    assert first == (
        "FROM fedora\n"
        "RUN make -C /src/python build\n"
        "RUN --mount=type=bind,source=/src/python/dist,target=/dist true\n"
    )
    assert (tmp_path / "python/Dockerfile").read_text() == first


def test_dex_host_is_added_once(tmp_path: Path) -> None:
    write(
        tmp_path,
        "e2e/dex-csr.json",
        '{\n    "hosts": [\n        "dex.dex.svc.cluster.local"\n    ]\n}\n',
    )
    write(tmp_path, "e2e/tests.bats", "jmp login --issuer https://dex.dex.svc.cluster.local:5556\n"
          "load $GITHUB_ACTION_PATH/helpers\n")

    group = catalog_group("e2e-dex")
    apply_group(group, tmp_path, tmp_path)
    apply_group(group, tmp_path, tmp_path)

    csr = (tmp_path / "e2e/dex-csr.json").read_text()
    assert csr.count("dex.127.0.0.1.nip.io") == 1
    assert (tmp_path / "e2e/tests.bats").read_text() == (
        "jmp login --issuer https://dex.127.0.0.1.nip.io:5556\nload e2e/helpers\n"
    )


def test_multiversion_paths(tmp_path: Path) -> None:
    write(
        tmp_path,
        "python/docs/multiversion.sh",
        'uv run --project "${WORKTREE}" make -C "${WORKTREE}/docs" html\n'
        "cp -r ${WORKTREE}/docs/build/html out\n",
    )

    outcome = apply_group(catalog_group("multiversion-docs"), tmp_path, tmp_path)

    assert not outcome.skipped
    assert (tmp_path / "python/docs/multiversion.sh").read_text() == (
        'uv run --project "${WORKTREE}/python" make -C "${WORKTREE}/python/docs" html\n'
        "cp -r ${WORKTREE}/python/docs/build/html out\n"
    )


def test_group_from_dict_builds_every_step_type() -> None:
    group = group_from_dict(
        {
            "name": "custom",
            "title": "Custom tweaks",
            "rationale": ["Because the layout moved"],
            "steps": [
                {"type": "substitute", "paths": ["a/*.txt"], "pattern": "x", "replacement": "y",
                 "flags": ["IGNORECASE"]},
                {"type": "replace", "path": "a/b.txt", "template": "t/b.txt"},
                {"type": "delete", "paths": ["a/old"]},
                {"type": "copy", "asset": "new.txt", "destination": "a/new.txt", "executable": True},
            ],
        }
    )

    kinds = [type(step) for step in group.steps]
    assert kinds == [Substitute, ReplaceFile, Delete, CopyIn]
    assert group.commit_message() == "Custom tweaks\n\n- Because the layout moved"


@pytest.mark.parametrize(
    "step",
    [
        {"type": "rename", "paths": ["a"]},
        {"type": "substitute", "paths": ["a"], "pattern": "(", "replacement": ""},
        {"type": "delete"},
    ],
)
def test_group_from_dict_rejects_bad_steps(step: dict) -> None:
    with pytest.raises(ValueError):
        group_from_dict({"name": "bad", "steps": [step]})

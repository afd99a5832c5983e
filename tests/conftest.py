from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, Tuple

import pytest

from monorepo_builder.gitutils import filter_repo_command

TESTER_ENV = {
    "GIT_AUTHOR_NAME": "tester",
    "GIT_AUTHOR_EMAIL": "tester@example.com",
    "GIT_COMMITTER_NAME": "tester",
    "GIT_COMMITTER_EMAIL": "tester@example.com",
}


def run_git(args: list[str], cwd: Path, env: Dict[str, str] | None = None) -> str:
    full_env = os.environ.copy()
    full_env.update(TESTER_ENV)
    if env:
        full_env.update(env)
    result = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        env=full_env,
        check=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    return result.stdout


def author_env(author: Tuple[str, str], date: str) -> Dict[str, str]:
    name, email = author
    return {
        "GIT_AUTHOR_NAME": name,
        "GIT_AUTHOR_EMAIL": email,
        "GIT_AUTHOR_DATE": date,
        "GIT_COMMITTER_NAME": name,
        "GIT_COMMITTER_EMAIL": email,
        "GIT_COMMITTER_DATE": date,
    }


def write_files(root: Path, files: Dict[str, str]) -> None:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def git() -> Callable[..., str]:
    return run_git


@pytest.fixture
def require_filter_repo() -> None:
    if filter_repo_command() is None:
        pytest.skip("git-filter-repo is not installed")


@pytest.fixture
def make_source(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        name: str,
        files: Dict[str, str],
        *,
        branch: str = "main",
        author: Tuple[str, str] = ("Alice Example", "alice@example.com"),
        date: str = "2020-01-02T03:04:05+00:00",
        message: str | None = None,
    ) -> Path:
        repo = tmp_path / "sources" / name
        repo.mkdir(parents=True)
        run_git(["init", f"--initial-branch={branch}"], repo)
        write_files(repo, files)
        run_git(["add", "-A"], repo)
        run_git(["commit", "-m", message or f"Add {name} files"], repo, env=author_env(author, date))
        return repo

    return _make


@pytest.fixture
def commit_files() -> Callable[..., None]:
    def _commit(
        repo: Path,
        files: Dict[str, str],
        message: str,
        *,
        author: Tuple[str, str] = ("Bob Example", "bob@example.com"),
        date: str = "2021-05-06T07:08:09+00:00",
    ) -> None:
        write_files(repo, files)
        run_git(["add", "-A"], repo)
        run_git(["commit", "-m", message], repo, env=author_env(author, date))

    return _commit

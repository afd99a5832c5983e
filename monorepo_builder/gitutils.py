from __future__ import annotations

import importlib.util
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .workspace import GitCommandError

DEFAULT_IDENTITY_NAME = "monorepo-builder"
DEFAULT_IDENTITY_EMAIL = "monorepo-builder@example.com"


def run_git(
    repo: Path,
    args: Sequence[str],
    *,
    env: dict | None = None,
) -> subprocess.CompletedProcess:
    logging.debug("git -C %s %s", repo, " ".join(args))
    return subprocess.run(
        ["git", "-C", str(repo)] + list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
    )


def check_git(repo: Path, args: Sequence[str], *, env: dict | None = None) -> str:
    result = run_git(repo, args, env=env)
    if result.returncode != 0:
        raise GitCommandError(f"git {' '.join(args)} failed in {repo}: {result.stderr.strip()}")
    return result.stdout


def has_git_dir(path: Path) -> bool:
    return (path / ".git").is_dir()


def git_rev_parse(repo: Path, ref: str = "HEAD") -> str:
    return check_git(repo, ["rev-parse", ref]).strip()


def current_branch(repo: Path) -> str:
    return check_git(repo, ["rev-parse", "--abbrev-ref", "HEAD"]).strip()


def list_remotes(repo: Path) -> List[str]:
    return [line for line in check_git(repo, ["remote"]).splitlines() if line]


def clone_single_branch(url: Union[Path, str], branch: str, destination: Path) -> bool:
    """Clone only ``branch`` of ``url``; report whether the branch existed."""
    result = subprocess.run(
        ["git", "clone", "--single-branch", "--branch", branch, str(url), str(destination)],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    if result.returncode != 0:
        logging.debug("git clone of %s@%s failed: %s", url, branch, result.stderr.strip())
        if destination.exists():
            shutil.rmtree(destination)
        return False
    return True


def filter_repo_command() -> Optional[List[str]]:
    if shutil.which("git-filter-repo"):
        return ["git", "filter-repo"]
    if importlib.util.find_spec("git_filter_repo") is not None:
        return [sys.executable, "-m", "git_filter_repo"]
    return None


def rewrite_to_subdirectory(repo: Path, subdir: str) -> subprocess.CompletedProcess:
    command = filter_repo_command()
    if command is None:
        raise GitCommandError("git filter-repo is not installed")
    args = command + ["--to-subdirectory-filter", subdir, "--force"]
    logging.debug("%s (cwd=%s)", " ".join(args), repo)
    return subprocess.run(
        args,
        cwd=str(repo),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )


def init_repo(path: Path, default_branch: str) -> None:
    path.mkdir(parents=True, exist_ok=True)
    check_git(path, ["init", f"--initial-branch={default_branch}"])


def commit_env(repo: Path) -> dict:
    env = os.environ.copy()
    name = run_git(repo, ["config", "user.name"]).stdout.strip()
    email = run_git(repo, ["config", "user.email"]).stdout.strip()
    if not (name and email):
        env.setdefault("GIT_AUTHOR_NAME", DEFAULT_IDENTITY_NAME)
        env.setdefault("GIT_AUTHOR_EMAIL", DEFAULT_IDENTITY_EMAIL)
        env.setdefault("GIT_COMMITTER_NAME", env["GIT_AUTHOR_NAME"])
        env.setdefault("GIT_COMMITTER_EMAIL", env["GIT_AUTHOR_EMAIL"])
    return env


def commit(repo: Path, message: str, *, allow_empty: bool = False) -> str:
    args = ["commit", "-m", message]
    if allow_empty:
        args.insert(1, "--allow-empty")
    check_git(repo, args, env=commit_env(repo))
    return git_rev_parse(repo)


def stage_all(repo: Path) -> None:
    check_git(repo, ["add", "-A"])


def has_changes(repo: Path) -> bool:
    return bool(check_git(repo, ["status", "--porcelain"]).strip())


def add_remote(repo: Path, name: str, url: Union[Path, str]) -> None:
    check_git(repo, ["remote", "add", name, str(url)])


def remove_remote(repo: Path, name: str) -> None:
    check_git(repo, ["remote", "remove", name])


def fetch(repo: Path, remote: str) -> None:
    check_git(repo, ["fetch", remote])


def merge_unrelated(repo: Path, ref: str, message: str) -> subprocess.CompletedProcess:
    return run_git(
        repo,
        ["merge", ref, "--allow-unrelated-histories", "--no-edit", "-m", message],
        env=commit_env(repo),
    )


def create_branch(repo: Path, name: str, start_point: str) -> None:
    check_git(repo, ["branch", name, start_point])


def checkout(repo: Path, ref: str, *, force: bool = False) -> None:
    args = ["checkout", ref]
    if force:
        args.insert(1, "--force")
    check_git(repo, args)


def discard_changes(repo: Path) -> None:
    """Drop staged, modified and untracked (non-ignored) work in ``repo``."""
    for args in (["reset", "--hard", "--quiet"], ["clean", "-fd", "--quiet"]):
        result = run_git(repo, args)
        if result.returncode != 0:
            logging.warning("git %s failed in %s: %s", " ".join(args), repo, result.stderr.strip())


def push_force(repo: Path, remote: str, refs: Sequence[str], *, set_upstream: bool = False) -> None:
    args = ["push", "--force"]
    if set_upstream:
        args.append("--set-upstream")
    args.append(remote)
    args.extend(refs)
    check_git(repo, args)

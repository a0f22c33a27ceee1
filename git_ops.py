"""Git operations module.

This module wraps the git CLI for the working copy the loop operates on:
branching, staging, committing, pushing and worktree management.
"""

import os
import re
import uuid
import logging
import subprocess
from datetime import date
from typing import List, Optional, Sequence, Tuple

from config import GIT_TIMEOUT_SECONDS
from errors import CommandError

logger = logging.getLogger(__name__)

NETWORK_ERROR_SIGNATURES = (
    "Could not resolve host",
    "Connection refused",
    "Network is unreachable",
    "Connection timed out",
    "SSL",
    "TLS",
    "443",
)

HTTPS_REMOTE = re.compile(r"https://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")
SSH_REMOTE = re.compile(r"git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$")


def is_network_error_output(output: str) -> bool:
    """Return True if git output looks like a network failure."""
    return any(signature in output for signature in NETWORK_ERROR_SIGNATURES)


def generate_branch_name(prefix: str, iteration: int, today: Optional[date] = None) -> str:
    """Generate a unique branch name for an iteration.

    Format: ``{prefix}iteration-{n}/{YYYY-MM-DD}-{8 hex chars}``. The suffix
    only avoids collisions between runs; it is not meant to be unguessable.
    """
    today = today or date.today()
    suffix = uuid.uuid4().hex[:8]
    return f"{prefix}iteration-{iteration}/{today.isoformat()}-{suffix}"


class GitClient:
    """Runs git commands inside one working copy."""

    def __init__(self, work_dir: str = "."):
        self.work_dir = work_dir

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        cmd = ["git", *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=self.work_dir,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT_SECONDS
            )
        except FileNotFoundError as e:
            raise CommandError("git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(f"git {args[0]} timed out after {GIT_TIMEOUT_SECONDS}s", transient=True) from e

        if check and result.returncode != 0:
            output = (result.stderr or "") + (result.stdout or "")
            raise CommandError(
                f"git {' '.join(args)} failed with exit code {result.returncode}",
                output=output,
                transient=is_network_error_output(output),
            )
        return result

    def is_repo(self) -> bool:
        try:
            result = self._run("rev-parse", "--is-inside-work-tree", check=False)
        except CommandError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def has_commits(self) -> bool:
        result = self._run("rev-parse", "--verify", "HEAD", check=False)
        return result.returncode == 0

    def current_branch(self) -> str:
        return self._run("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def create_branch(self, name: str) -> None:
        """Create a new branch and switch to it."""
        self._run("checkout", "-b", name)

    def switch_branch(self, name: str) -> None:
        self._run("checkout", name)

    def delete_branch(self, name: str) -> None:
        self._run("branch", "-D", name)

    def stage_all(self) -> None:
        self._run("add", "-A")

    def has_changes(self) -> bool:
        """Check if there are staged or unstaged changes."""
        return bool(self._run("status", "--porcelain").stdout.strip())

    def discard_changes(self, keep: Sequence[str] = ()) -> None:
        """Throw away staged, modified and untracked files.

        Paths matching a pattern in ``keep`` are left as they are.
        """
        self._run("reset", "--quiet")
        self._run("checkout", "--", ".", *(f":(exclude){pattern}" for pattern in keep))
        excludes = []
        for pattern in keep:
            excludes.extend(["-e", pattern])
        self._run("clean", "-fd", *excludes)

    def commit(self, message: str) -> None:
        self._run("commit", "-m", message)

    def push(self, branch: str) -> None:
        """Push ``branch`` to origin and set upstream.

        Raises:
            CommandError: with ``transient`` set when the failure looks like a
                network problem
        """
        self._run("push", "-u", "origin", branch)

    def pull(self, branch: str) -> None:
        self._run("pull", "origin", branch)

    def last_commit_title(self) -> str:
        return self._run("log", "-1", "--format=%s").stdout.strip()

    def last_commit_message(self) -> str:
        return self._run("log", "-1", "--format=%B").stdout.strip()

    def remote_url(self) -> str:
        return self._run("remote", "get-url", "origin").stdout.strip()

    def detect_github_repo(self) -> Tuple[str, str]:
        """Extract (owner, repo) from the origin remote URL.

        Raises:
            CommandError: if there is no origin or it is not a GitHub URL
        """
        url = self.remote_url()
        for pattern in (HTTPS_REMOTE, SSH_REMOTE):
            match = pattern.search(url)
            if match:
                return match.group(1), match.group(2)
        raise CommandError(f"could not parse GitHub URL from: {url}")

    def worktree_add(self, path: str, branch: str, start_point: str = "") -> None:
        """Create a worktree at ``path`` on a new branch ``branch``."""
        args = ["worktree", "add", "-b", branch, path]
        if start_point:
            args.append(start_point)
        self._run(*args)

    def worktree_remove(self, path: str) -> None:
        self._run("worktree", "remove", path, "--force")

    def worktree_list(self) -> List[str]:
        output = self._run("worktree", "list", "--porcelain").stdout
        return [
            line[len("worktree "):]
            for line in output.splitlines()
            if line.startswith("worktree ")
        ]


def ensure_worktree(git: GitClient, name: str, base_dir: str, start_point: str = "") -> str:
    """Create (or reuse) a named worktree under ``base_dir`` and return its path.

    A new worktree gets a local ``worktree/{name}`` branch cut from
    ``start_point`` (HEAD when empty).
    """
    path = os.path.abspath(os.path.join(git.work_dir, base_dir, name))
    if os.path.isdir(path) and path in [os.path.abspath(p) for p in git.worktree_list()]:
        logger.info(f"Reusing existing worktree: {path}")
        return path

    os.makedirs(os.path.dirname(path), exist_ok=True)
    git.worktree_add(path, f"worktree/{name}", start_point)
    logger.info(f"✓ Created worktree: {path}")
    return path

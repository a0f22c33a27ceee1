"""Configuration module for Continuous Claude.

This module centralizes all configuration values and environment variables
for the continuous development loop. Environment variables provide defaults;
command-line flags in ``main.py`` override them and are collected into a
``RunConfig`` which is validated before the loop starts.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Tuple

from errors import ConfigurationError
from limits import LimitConfig

# GitHub API Configuration
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_GRAPHQL_URL = os.getenv("GITHUB_GRAPHQL_URL", "https://api.github.com/graphql")
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN", "")

# Repository Configuration
BASE_BRANCH = os.getenv("BASE_BRANCH", "")  # empty = branch checked out at start
GIT_BRANCH_PREFIX = os.getenv("GIT_BRANCH_PREFIX", "continuous-claude/")
NOTES_FILE = os.getenv("NOTES_FILE", "SHARED_TASK_NOTES.md")

# Polling and Timeout Configuration
PR_POLL_INTERVAL_SECONDS = int(os.getenv("PR_POLL_INTERVAL_SECONDS", "10"))
PR_CHECK_TIMEOUT_SECONDS = int(os.getenv("PR_CHECK_TIMEOUT_SECONDS", "1800"))  # 30 minutes
CLAUDE_TIMEOUT_SECONDS = int(os.getenv("CLAUDE_TIMEOUT_SECONDS", "3600"))  # 1 hour
GIT_TIMEOUT_SECONDS = int(os.getenv("GIT_TIMEOUT_SECONDS", "120"))

# Push retry Configuration
PUSH_MAX_RETRIES = int(os.getenv("PUSH_MAX_RETRIES", "3"))
PUSH_BACKOFF_SECONDS = int(os.getenv("PUSH_BACKOFF_SECONDS", "2"))

# Merge Configuration
MERGE_METHOD = os.getenv("MERGE_METHOD", "squash")  # squash, merge, or rebase
VALID_MERGE_METHODS = ("squash", "merge", "rebase")

# Check classification: how to treat check states GitHub adds in the future
UNKNOWN_CHECK_STATE = os.getenv("UNKNOWN_CHECK_STATE", "passed")  # passed or pending
VALID_UNKNOWN_CHECK_STATES = ("passed", "pending")

# Loop Control Configuration
MAX_RUNS = int(os.getenv("MAX_RUNS", "0"))  # 0 = unlimited
MAX_COST = float(os.getenv("MAX_COST", "0"))  # USD, 0 = unlimited
MAX_DURATION = os.getenv("MAX_DURATION", "")  # e.g. "2h", "1h30m"
COMPLETION_SIGNAL = os.getenv("COMPLETION_SIGNAL", "CONTINUOUS_CLAUDE_PROJECT_COMPLETE")
COMPLETION_THRESHOLD = int(os.getenv("COMPLETION_THRESHOLD", "3"))

# Worktree Configuration
WORKTREE_BASE_DIR = os.getenv("WORKTREE_BASE_DIR", "../continuous-claude-worktrees")

# Logging
LOG_FILE = os.getenv("CONTINUOUS_CLAUDE_LOG_FILE", "continuous_claude.log")

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)([hms])")
_DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}


@dataclass(frozen=True)
class RunConfig:
    """All settings for one run of the loop."""

    prompt: str
    max_runs: int = 0
    max_cost: float = 0.0
    max_duration: float = 0.0  # seconds
    owner: str = ""
    repo: str = ""
    merge_strategy: str = MERGE_METHOD
    git_branch_prefix: str = GIT_BRANCH_PREFIX
    notes_file: str = NOTES_FILE
    disable_commits: bool = False
    dry_run: bool = False
    completion_signal: str = COMPLETION_SIGNAL
    completion_threshold: int = COMPLETION_THRESHOLD
    unknown_check_state: str = UNKNOWN_CHECK_STATE
    pr_check_timeout: int = PR_CHECK_TIMEOUT_SECONDS
    poll_interval: int = PR_POLL_INTERVAL_SECONDS
    push_max_retries: int = PUSH_MAX_RETRIES
    worktree: str = ""
    worktree_base_dir: str = WORKTREE_BASE_DIR
    cleanup_worktree: bool = False
    extra_claude_args: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def limits(self) -> LimitConfig:
        return LimitConfig(
            max_iterations=self.max_runs,
            max_cost=self.max_cost,
            max_duration=self.max_duration,
            completion_threshold=self.completion_threshold,
        )

    @property
    def repository(self) -> str:
        """Repository in 'owner/repo' format, or empty if not known yet."""
        if self.owner and self.repo:
            return f"{self.owner}/{self.repo}"
        return ""


def validate_run_config(cfg: RunConfig) -> None:
    """Check that the configuration is usable.

    Raises:
        ConfigurationError: describing the first problem found
    """
    if not cfg.prompt:
        raise ConfigurationError("prompt is required (use -p or --prompt)")

    if cfg.max_runs < 0:
        raise ConfigurationError("--max-runs must be non-negative")
    if cfg.max_cost < 0:
        raise ConfigurationError("--max-cost must be non-negative")
    if cfg.max_duration < 0:
        raise ConfigurationError("--max-duration must be non-negative")

    if cfg.max_runs == 0 and cfg.max_cost == 0 and cfg.max_duration == 0:
        raise ConfigurationError(
            "at least one limit must be set: --max-runs, --max-cost, or --max-duration"
        )

    if cfg.completion_threshold < 1:
        raise ConfigurationError("--completion-threshold must be at least 1")

    if cfg.merge_strategy not in VALID_MERGE_METHODS:
        raise ConfigurationError(
            f"--merge-strategy must be one of: {', '.join(VALID_MERGE_METHODS)}"
        )

    if cfg.unknown_check_state not in VALID_UNKNOWN_CHECK_STATES:
        raise ConfigurationError(
            f"--unknown-check-state must be one of: {', '.join(VALID_UNKNOWN_CHECK_STATES)}"
        )

    if cfg.pr_check_timeout <= 0:
        raise ConfigurationError("PR_CHECK_TIMEOUT_SECONDS must be positive")
    if cfg.push_max_retries < 0:
        raise ConfigurationError("PUSH_MAX_RETRIES must be non-negative")


def parse_duration(value: str) -> float:
    """Parse a duration such as '2h', '30m', '1h30m' or '90s' into seconds.

    An empty string means no limit and returns 0.
    """
    value = (value or "").strip()
    if not value:
        return 0.0

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(value):
        raise ConfigurationError(
            f"invalid duration format: {value} (use format like '2h', '30m', '1h30m')"
        )
    if total == 0:
        raise ConfigurationError(f"invalid duration: {value}")

    return total

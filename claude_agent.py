"""Claude Code CLI integration module.

This module runs the Claude Code CLI non-interactively for each iteration
and for authoring commits, and parses its JSON output.
"""

import os
import json
import shutil
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from config import CLAUDE_TIMEOUT_SECONDS
from errors import AgentError
from prompt_builder import COMMIT_PROMPT

logger = logging.getLogger(__name__)

COMMIT_ALLOWED_TOOLS = "Bash(git commit:*),Bash(git diff:*),Bash(git status:*)"


@dataclass
class AgentResult:
    """Outcome of one Claude Code invocation."""

    output: str = ""
    cost: float = 0.0
    is_error: bool = False
    raw_output: str = ""


def find_claude_executable() -> Optional[str]:
    """Find the claude executable, checking PATH and common install locations."""
    found = shutil.which("claude")
    if found:
        return found

    common_paths = [
        os.path.expanduser("~/.claude/local/claude"),
        os.path.expanduser("~/.local/bin/claude"),
        "/usr/local/bin/claude",
    ]
    for path in common_paths:
        if os.path.exists(path):
            return path

    return None


def parse_claude_output(output: str, result: AgentResult) -> bool:
    """Fill ``result`` from Claude Code's ``--output-format json`` output.

    Accepts either a single result object or an array of messages, in which
    case the last message carrying a result is used.

    Returns:
        True if the output was understood, False otherwise
    """
    output = (output or "").strip()
    if not output:
        return False

    try:
        data = json.loads(output)
    except ValueError:
        return False

    if isinstance(data, list):
        if not data:
            return False
        for item in reversed(data):
            if not isinstance(item, dict):
                continue
            if item.get("type") == "result" or item.get("result"):
                result.output = item.get("result") or ""
                result.cost = float(item.get("total_cost_usd") or 0)
                result.is_error = bool(item.get("is_error"))
                return True
        # No result message; still pick up the cost if the last entry has it
        last = data[-1]
        if isinstance(last, dict):
            result.cost = float(last.get("total_cost_usd") or 0)
        return True

    if isinstance(data, dict):
        result.output = data.get("result") or ""
        result.cost = float(data.get("total_cost_usd") or 0)
        result.is_error = bool(data.get("is_error"))
        return True

    return False


def contains_completion_signal(output: str, signal: str) -> bool:
    """Exact, case-sensitive substring match. An empty signal never matches."""
    if not signal:
        return False
    return signal in (output or "")


class ClaudeAgent:
    """Runs Claude Code in a working directory."""

    def __init__(self, work_dir: str = ".", extra_args: Sequence[str] = (),
                 timeout: int = CLAUDE_TIMEOUT_SECONDS):
        self.work_dir = work_dir
        self.extra_args = list(extra_args)
        self.timeout = timeout
        self._executable: Optional[str] = None

    @property
    def executable(self) -> str:
        if self._executable is None:
            self._executable = find_claude_executable()
        if not self._executable:
            raise AgentError(
                "Claude Code CLI not found. Install it with: npm install -g @anthropic-ai/claude-code"
            )
        return self._executable

    def check_available(self) -> str:
        """Verify the CLI runs and return its version string.

        Raises:
            AgentError: if the CLI is missing or broken
        """
        try:
            result = subprocess.run(
                [self.executable, "--version"],
                capture_output=True,
                text=True,
                timeout=30
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise AgentError(f"Claude Code CLI not usable: {e}") from e

        if result.returncode != 0:
            raise AgentError(f"Claude Code CLI not usable: {result.stderr.strip()}")

        version = result.stdout.strip()
        logger.info(f"✓ Claude Code CLI available: {version}")
        return version

    def _invoke(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = [self.executable, *args]
        try:
            return subprocess.run(
                cmd,
                cwd=self.work_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except subprocess.TimeoutExpired as e:
            raise AgentError(f"Claude Code timed out after {self.timeout}s") from e
        except OSError as e:
            raise AgentError(f"Failed to run Claude Code: {e}") from e

    def run(self, prompt: str) -> AgentResult:
        """Run one iteration's prompt.

        A non-zero exit does not raise: the result is flagged ``is_error``
        with stderr as its output, so the cost reported so far still counts.
        """
        args = [
            "-p", prompt,
            "--output-format", "json",
            "--dangerously-skip-permissions",
            *self.extra_args,
        ]
        completed = self._invoke(args)

        result = AgentResult(raw_output=completed.stdout or "")
        if result.raw_output and not parse_claude_output(result.raw_output, result):
            result.output = result.raw_output

        if completed.returncode != 0:
            result.is_error = True
            if completed.stderr:
                result.output = completed.stderr

        return result

    def run_commit(self) -> str:
        """Ask Claude to review staged changes and commit them.

        Returns:
            Claude's reply, which normally echoes the commit message

        Raises:
            AgentError: if the commit run fails
        """
        args = [
            "-p", COMMIT_PROMPT,
            "--output-format", "json",
            "--dangerously-skip-permissions",
            "--allowedTools", COMMIT_ALLOWED_TOOLS,
        ]
        completed = self._invoke(args)

        if completed.returncode != 0:
            raise AgentError(f"Claude commit run failed: {completed.stderr.strip()}")

        result = AgentResult()
        if not parse_claude_output(completed.stdout, result):
            return completed.stdout
        return result.output

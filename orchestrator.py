"""Continuous development loop.

The Orchestrator runs iterations until the limit policy says stop. Each
iteration creates a feature branch, runs Claude Code, commits and pushes any
changes, opens a pull request, waits for its checks and merges it when it is
mergeable. Errors inside an iteration are logged and the loop moves on; only
the limit policy (or a shutdown request) ends the run.
"""

import os
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from claude_agent import contains_completion_signal
from config import PUSH_BACKOFF_SECONDS, RunConfig
from errors import CommandError, ReviewTimeoutError
from git_ops import generate_branch_name
from limits import RunState, format_duration, should_stop
from metrics import Metrics
from prompt_builder import build_iteration_prompt, format_pr_body
from retry import with_retry
from review_tracker import PRStatus, ReviewTracker, format_check_status

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW_CHARS = 500


@dataclass
class RunSummary:
    """What a finished run reports."""

    iterations: int
    total_cost: float
    elapsed: float
    completed: bool
    stop_reason: str = ""
    metrics: Dict[str, Any] = field(default_factory=dict)


def truncate_output(text: str, max_len: int = OUTPUT_PREVIEW_CHARS) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "\n...[truncated]"


class Orchestrator:
    """Drives the iteration loop for one working copy.

    Collaborators:
        git: a ``git_ops.GitClient``-like object
        review_system: a ``pr_manager.GitHubReviewSystem``-like object
        agent: a ``claude_agent.ClaudeAgent``-like object
        notes: a ``notes.NotesManager``-like object

    Pull requests target ``base_branch`` on origin. Between iterations the
    working copy sits on ``home_branch``, which defaults to ``base_branch``
    and differs only inside a worktree, where the base is checked out
    elsewhere.

    The orchestrator is the only writer of its ``RunState``.
    """

    def __init__(
        self,
        config: RunConfig,
        base_branch: str,
        git,
        review_system,
        agent,
        notes,
        tracker: Optional[ReviewTracker] = None,
        shutdown_check: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        push_backoff: float = PUSH_BACKOFF_SECONDS,
        home_branch: Optional[str] = None,
    ):
        self.config = config
        self.base_branch = base_branch
        self.home_branch = home_branch or base_branch
        self.git = git
        self.review_system = review_system
        self.agent = agent
        self.notes = notes
        self.tracker = tracker or ReviewTracker(
            review_system,
            poll_interval=config.poll_interval,
            unknown_policy=config.unknown_check_state,
            sleep=sleep,
            clock=clock,
        )
        self._shutdown_check = shutdown_check
        self._sleep = sleep
        self._clock = clock
        self.push_backoff = push_backoff

        self.state = RunState(started_at=clock())
        self.metrics = Metrics()

    # ------------------------------------------------------------------
    # Outer loop
    # ------------------------------------------------------------------

    def run(self) -> RunSummary:
        """Run iterations until a stop condition is met.

        The summary is always logged, even if the run is interrupted.
        """
        self.state = RunState(started_at=self._clock())
        self.metrics = Metrics()
        stop_reason = ""

        self._log_configuration()

        try:
            while True:
                self.state.iteration += 1

                if self._shutdown_check is not None and self._shutdown_check():
                    stop_reason = "shutdown requested"
                    logger.info("Shutdown requested. Stopping gracefully.")
                    break

                stop, reason = should_stop(self.state, self.config.limits, now=self._clock())
                if stop:
                    stop_reason = reason
                    logger.info(f"Stopping: {reason}")
                    break

                try:
                    self.run_iteration()
                except Exception as e:
                    self.metrics.record_iteration_failed()
                    logger.error(f"[Iteration #{self.state.iteration}] ✗ Iteration failed: {e}")
                    logger.debug("Iteration traceback", exc_info=True)
        finally:
            summary = self._build_summary(stop_reason)
            self._log_summary(summary)

        return summary

    # ------------------------------------------------------------------
    # One iteration
    # ------------------------------------------------------------------

    def run_iteration(self) -> None:
        """Run a single iteration. Raises on any iteration-local failure.

        Until the branch is pushed, any failure throws away the iteration's
        work and branch so the next iteration starts from the home branch.
        """
        n = self.state.iteration
        limits = self.config.limits
        of_max = f"/{limits.max_iterations}" if limits.has_max_iterations else ""

        logger.info(f"\n========== Starting iteration #{n}{of_max} ==========")

        branch = generate_branch_name(self.config.git_branch_prefix, n)
        logger.info(f"[Iteration #{n}] Creating branch: {branch}")
        self.git.create_branch(branch)

        try:
            commit_title = self._produce_commit(branch)
        except Exception:
            logger.warning(f"[Iteration #{n}] Discarding {branch} and its uncommitted work")
            self._discard_branch(branch, clean=True)
            raise

        if commit_title is None:
            return

        merged = False
        try:
            self._publish(branch)
            merged = self._open_and_resolve_pr(branch, commit_title)
        finally:
            self._return_to_base()

        if merged:
            self.git.pull(self.base_branch)
            logger.info(f"[Iteration #{n}] ✓ {self.home_branch} is up to date with {self.base_branch}")

        elapsed = self.state.elapsed(self._clock())
        if limits.has_max_duration:
            logger.info(f"Elapsed: {format_duration(elapsed)} / {format_duration(limits.max_duration)}")
        else:
            logger.info(f"Elapsed: {format_duration(elapsed)}")

    def _produce_commit(self, branch: str) -> Optional[str]:
        """Run Claude on ``branch`` and commit what it changed.

        Returns:
            The commit title, or None when there is nothing to publish (the
            branch has already been discarded)
        """
        n = self.state.iteration
        limits = self.config.limits

        prompt = build_iteration_prompt(
            self.config.prompt,
            self._read_notes(),
            self.config.completion_signal,
            n,
            notes_file=os.path.basename(self.config.notes_file),
        )

        logger.info(f"[Iteration #{n}] Running Claude...")
        result = self.agent.run(prompt)

        self.state.total_cost += result.cost
        logger.info(f"[Iteration #{n}] Cost: ${result.cost:.4f} (total: ${self.state.total_cost:.4f})")

        if contains_completion_signal(result.output, self.config.completion_signal):
            self.state.completion_signal_count += 1
            logger.info(
                f"[Iteration #{n}] 🎯 Completion signal detected "
                f"({self.state.completion_signal_count}/{limits.completion_threshold})"
            )
        else:
            self.state.completion_signal_count = 0

        if result.is_error:
            logger.warning(f"[Iteration #{n}] ⚠️  Claude reported an error in output")

        logger.info(f"[Iteration #{n}] Claude output:\n{truncate_output(result.output)}")
        self._warn_on_verbose_notes()

        if self.config.disable_commits:
            logger.info(f"[Iteration #{n}] Commits disabled, skipping PR workflow")
            self._discard_branch(branch)
            return None

        if self.config.dry_run:
            logger.info(f"[Iteration #{n}] Dry run mode, skipping commit and PR")
            self._discard_branch(branch)
            return None

        self.git.stage_all()
        if not self.git.has_changes():
            logger.info(f"[Iteration #{n}] No changes to commit")
            self.metrics.record_no_changes()
            self._discard_branch(branch)
            return None

        logger.info(f"[Iteration #{n}] Creating commit...")
        self.agent.run_commit()
        commit_title = self.git.last_commit_title()
        logger.info(f"[Iteration #{n}] ✓ Committed: {commit_title}")
        return commit_title

    def _publish(self, branch: str) -> None:
        n = self.state.iteration
        logger.info(f"[Iteration #{n}] Pushing branch...")
        with_retry(
            lambda: self.git.push(branch),
            max_retries=self.config.push_max_retries,
            base_delay=self.push_backoff,
            sleep=self._sleep,
            description=f"Push of {branch}",
        )
        logger.info(f"[Iteration #{n}] ✓ Pushed to origin/{branch}")

    def _open_and_resolve_pr(self, branch: str, commit_title: str) -> bool:
        """Open a PR for ``branch`` and drive it to an outcome.

        Returns:
            True if the PR was merged
        """
        n = self.state.iteration
        commit_message = self.git.last_commit_message()

        pr_number = self.review_system.open(
            commit_title, format_pr_body(commit_message, n), self.base_branch, branch
        )
        self.metrics.record_pr_created(pr_number)
        logger.info(f"[PR #{pr_number}] Waiting for checks...")

        try:
            status = self.tracker.await_terminal(
                pr_number,
                self.config.pr_check_timeout,
                on_change=lambda s: self._report_status(pr_number, s),
            )
        except ReviewTimeoutError as e:
            logger.warning(f"[PR #{pr_number}] ⚠️  Timeout waiting for checks: {e}")
            status = e.last_status

        if status is None:
            logger.warning(f"[PR #{pr_number}] ⚠️  No check status available - leaving PR open")
            self.metrics.record_pr_left_open()
            return False

        if status.has_failed_checks:
            logger.error(f"[PR #{pr_number}] ✗ Checks failed, closing PR")
            self.review_system.close(pr_number, delete_branch=True)
            self.metrics.record_pr_closed()
            return False

        if not status.is_mergeable:
            logger.warning(
                f"[PR #{pr_number}] ⚠️  PR not mergeable (review: {status.review_decision.value}) - leaving it open"
            )
            self.metrics.record_pr_left_open()
            return False

        logger.info(f"[PR #{pr_number}] Merging ({self.config.merge_strategy})...")
        self.review_system.merge(pr_number, self.config.merge_strategy)
        self.metrics.record_pr_merged()
        logger.info(f"[PR #{pr_number}] ✓ Merged")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _report_status(self, pr_number: int, status: PRStatus) -> None:
        if status.has_failed_checks:
            checks = "failed"
        elif status.has_pending_checks:
            checks = "pending"
        else:
            checks = "passed"
        logger.info(
            f"[PR #{pr_number}] Checks: {checks} | Review: {status.review_decision.value} | "
            f"{format_check_status(status)}"
        )

    def _read_notes(self) -> str:
        try:
            return self.notes.read()
        except OSError as e:
            logger.warning(f"Could not read notes file: {e}")
            return ""

    def _warn_on_verbose_notes(self) -> None:
        try:
            warning = self.notes.validate()
        except OSError as e:
            logger.warning(f"Could not validate notes file: {e}")
            return
        if warning:
            logger.warning(f"⚠️  {warning}")

    def _return_to_base(self) -> None:
        try:
            self.git.switch_branch(self.home_branch)
        except CommandError as e:
            logger.warning(f"Could not switch back to {self.home_branch}: {e}")

    def _discard_branch(self, branch: str, clean: bool = False) -> None:
        if clean:
            try:
                self.git.discard_changes(keep=(os.path.basename(self.config.notes_file),))
            except CommandError as e:
                logger.warning(f"Could not discard uncommitted changes on {branch}: {e}")
        self._return_to_base()
        try:
            self.git.delete_branch(branch)
        except CommandError as e:
            logger.warning(f"Could not delete branch {branch}: {e}")

    def _log_configuration(self) -> None:
        limits = self.config.limits
        logger.info("=" * 60)
        logger.info("Starting Continuous Claude")
        logger.info("=" * 60)
        logger.info(f"Base Branch: {self.base_branch}")
        if self.home_branch != self.base_branch:
            logger.info(f"Working Branch: {self.home_branch}")
        if limits.has_max_iterations:
            logger.info(f"Max iterations: {limits.max_iterations}")
        if limits.has_max_cost:
            logger.info(f"Max cost: ${limits.max_cost:.2f}")
        if limits.has_max_duration:
            logger.info(f"Max duration: {format_duration(limits.max_duration)}")
        logger.info(f"Merge strategy: {self.config.merge_strategy}")
        logger.info(f"Completion threshold: {limits.completion_threshold}")
        logger.info(f"Notes file: {getattr(self.notes, 'path', self.config.notes_file)}")
        logger.info("=" * 60)

    def _build_summary(self, stop_reason: str) -> RunSummary:
        return RunSummary(
            iterations=self.state.iterations_completed,
            total_cost=self.state.total_cost,
            elapsed=self.state.elapsed(self._clock()),
            completed=self.state.completion_signal_count >= self.config.completion_threshold,
            stop_reason=stop_reason,
            metrics=self.metrics.get_summary(),
        )

    def _log_summary(self, summary: RunSummary) -> None:
        m = summary.metrics
        logger.info("=" * 60)
        logger.info("Continuous Claude Finished")
        logger.info("=" * 60)
        logger.info(f"Iterations completed: {summary.iterations}")
        logger.info(f"Total cost: ${summary.total_cost:.2f}")
        logger.info(f"Total runtime: {format_duration(summary.elapsed)}")
        if summary.completed:
            logger.info("Result: 🎯 goal satisfied (completion signal threshold reached)")
        else:
            logger.info(f"Result: limit reached ({summary.stop_reason or 'interrupted'})")
        logger.info(f"PRs Created: {m.get('prs_created', 0)}")
        logger.info(f"PRs Merged: {m.get('prs_merged', 0)}")
        logger.info(f"PRs Closed (failed checks): {m.get('prs_closed', 0)}")
        logger.info(f"PRs Left Open: {m.get('prs_left_open', 0)}")
        logger.info(f"Failed Iterations: {m.get('iterations_failed', 0)}")
        if m.get("pr_numbers"):
            logger.info(f"PR Numbers: {', '.join(f'#{n}' for n in m['pr_numbers'])}")
        logger.info("=" * 60)

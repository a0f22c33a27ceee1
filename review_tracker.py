"""Pull request lifecycle tracking.

This module normalizes GitHub check states, derives mergeability from checks
and the review decision, and polls a pull request until its checks reach a
terminal state.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from errors import ReviewTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 10


class CheckState(Enum):
    PENDING = "pending"
    FAILED = "failed"
    PASSED = "passed"


class ReviewDecision(Enum):
    NONE = "none"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    PENDING = "pending"

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "ReviewDecision":
        """Map GitHub's reviewDecision value onto our enum.

        An empty or null decision means no review is required. Anything we
        do not recognise (including REVIEW_REQUIRED) is treated as pending.
        """
        value = (raw or "").strip().upper()
        if not value:
            return cls.NONE
        if value == "APPROVED":
            return cls.APPROVED
        if value == "CHANGES_REQUESTED":
            return cls.CHANGES_REQUESTED
        return cls.PENDING


PASSED_STATES = frozenset({"SUCCESS", "NEUTRAL", "SKIPPED"})
PENDING_STATES = frozenset({"PENDING", "QUEUED", "IN_PROGRESS"})
FAILED_STATES = frozenset({"FAILURE", "ERROR", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED"})

UNKNOWN_POLICIES = {
    "passed": CheckState.PASSED,
    "pending": CheckState.PENDING,
}


def classify_check_state(raw_state: str, unknown_policy: str = "passed") -> CheckState:
    """Classify a raw check state into pending, failed or passed.

    States outside the known vocabulary follow ``unknown_policy``: "passed"
    keeps the historical fail-open behaviour, "pending" makes the tracker
    wait for them instead.
    """
    state = (raw_state or "").strip().upper()
    if state in PASSED_STATES:
        return CheckState.PASSED
    if state in PENDING_STATES:
        return CheckState.PENDING
    if state in FAILED_STATES:
        return CheckState.FAILED

    try:
        return UNKNOWN_POLICIES[unknown_policy]
    except KeyError:
        raise ValueError(f"Unknown check state policy: {unknown_policy}") from None


@dataclass(frozen=True)
class Check:
    """A single CI check attached to a pull request."""

    name: str
    state: str


@dataclass(frozen=True)
class PRStatus:
    """Snapshot of a pull request's checks and review decision."""

    checks: List[Check] = field(default_factory=list)
    review_decision: ReviewDecision = ReviewDecision.NONE
    has_pending_checks: bool = False
    has_failed_checks: bool = False
    all_checks_passed: bool = True
    is_mergeable: bool = True


def build_status(
    checks: List[Check],
    review_decision: ReviewDecision,
    unknown_policy: str = "passed",
) -> PRStatus:
    """Derive a PRStatus from raw checks and the review decision."""
    has_pending = False
    has_failed = False

    for check in checks:
        state = classify_check_state(check.state, unknown_policy)
        if state is CheckState.PENDING:
            has_pending = True
        elif state is CheckState.FAILED:
            has_failed = True

    all_passed = len(checks) == 0 or (not has_pending and not has_failed)
    mergeable = all_passed and review_decision in (ReviewDecision.NONE, ReviewDecision.APPROVED)

    return PRStatus(
        checks=list(checks),
        review_decision=review_decision,
        has_pending_checks=has_pending,
        has_failed_checks=has_failed,
        all_checks_passed=all_passed,
        is_mergeable=mergeable,
    )


def has_status_changed(old: Optional[PRStatus], new: PRStatus) -> bool:
    if old is None:
        return True
    return (
        old.all_checks_passed != new.all_checks_passed
        or old.has_pending_checks != new.has_pending_checks
        or old.has_failed_checks != new.has_failed_checks
        or old.review_decision != new.review_decision
    )


def format_check_status(status: PRStatus) -> str:
    """Render check states as a single line, e.g. '✓ build, ○ lint'."""
    if not status.checks:
        return "No checks configured"

    icons = {
        CheckState.PASSED: "✓",
        CheckState.PENDING: "○",
        CheckState.FAILED: "✗",
    }
    parts = []
    for check in status.checks:
        state = (check.state or "").upper()
        if state in PASSED_STATES or state in PENDING_STATES or state in FAILED_STATES:
            icon = icons[classify_check_state(state)]
        else:
            icon = "?"
        parts.append(f"{icon} {check.name}")
    return ", ".join(parts)


class ReviewTracker:
    """Polls a review system until a pull request's checks settle.

    ``review_system`` must provide ``get_checks(pr_number)`` returning a list
    of ``Check`` and ``get_review_decision(pr_number)`` returning the raw
    decision string. Both raise ``TransportError`` on failure.
    """

    def __init__(
        self,
        review_system,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        unknown_policy: str = "passed",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if unknown_policy not in UNKNOWN_POLICIES:
            raise ValueError(f"Unknown check state policy: {unknown_policy}")
        self.review_system = review_system
        self.poll_interval = poll_interval
        self.unknown_policy = unknown_policy
        self._sleep = sleep
        self._clock = clock

    def poll(self, pr_number: int) -> PRStatus:
        """Fetch the current status of a pull request.

        Checks and the review decision are fetched independently; if either
        query fails the exception propagates and nothing is kept.
        """
        checks = self.review_system.get_checks(pr_number)
        decision = self.review_system.get_review_decision(pr_number)
        return build_status(checks, ReviewDecision.from_raw(decision), self.unknown_policy)

    def await_terminal(
        self,
        pr_number: int,
        timeout: float,
        on_change: Optional[Callable[[PRStatus], None]] = None,
    ) -> PRStatus:
        """Poll until checks fail or all pass, or until ``timeout`` seconds elapse.

        ``on_change`` is called with the new snapshot whenever pending/failed/
        passed flags or the review decision differ from the previous poll.

        Returns:
            The terminal PRStatus. A status with failed checks is
            failure-terminal; one with all checks passed is success-terminal.

        Raises:
            ReviewTimeoutError: carrying the last snapshot seen, if the
                deadline passes before a terminal state
            TransportError: if GitHub cannot be queried
        """
        deadline = self._clock() + timeout
        last_status: Optional[PRStatus] = None

        while self._clock() < deadline:
            status = self.poll(pr_number)

            if on_change is not None and has_status_changed(last_status, status):
                on_change(status)
            last_status = status

            if status.has_failed_checks or status.all_checks_passed:
                return status

            logger.debug(f"[PR #{pr_number}] Checks pending, polling again in {self.poll_interval}s")
            self._sleep(self.poll_interval)

        raise ReviewTimeoutError(timeout, last_status)

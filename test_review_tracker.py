#!/usr/bin/env python3
"""Tests for PR check classification and the polling loop."""

import unittest
from unittest.mock import Mock

from errors import ReviewTimeoutError, TransportError
from review_tracker import (
    Check, CheckState, ReviewDecision, ReviewTracker,
    build_status, classify_check_state, format_check_status, has_status_changed,
)


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeReviewSystem:
    """Returns scripted (checks, decision) pairs, repeating the last one."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def _current(self):
        idx = min(self.calls, len(self.script) - 1)
        return self.script[idx]

    def get_checks(self, pr_number):
        return self._current()[0]

    def get_review_decision(self, pr_number):
        decision = self._current()[1]
        self.calls += 1
        return decision


class TestClassifyCheckState(unittest.TestCase):

    def test_passed_states(self):
        for state in ("SUCCESS", "NEUTRAL", "SKIPPED", "success"):
            self.assertIs(classify_check_state(state), CheckState.PASSED)

    def test_pending_states(self):
        for state in ("PENDING", "QUEUED", "IN_PROGRESS"):
            self.assertIs(classify_check_state(state), CheckState.PENDING)

    def test_failed_states(self):
        for state in ("FAILURE", "ERROR", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED"):
            self.assertIs(classify_check_state(state), CheckState.FAILED)

    def test_unknown_state_fails_open_by_default(self):
        self.assertIs(classify_check_state("STALE"), CheckState.PASSED)
        self.assertIs(classify_check_state(""), CheckState.PASSED)

    def test_unknown_state_pending_policy(self):
        self.assertIs(classify_check_state("STALE", "pending"), CheckState.PENDING)
        self.assertIs(classify_check_state("SUCCESS", "pending"), CheckState.PASSED)

    def test_invalid_policy(self):
        with self.assertRaises(ValueError):
            classify_check_state("STALE", "ignore")


class TestReviewDecision(unittest.TestCase):

    def test_from_raw(self):
        self.assertIs(ReviewDecision.from_raw(""), ReviewDecision.NONE)
        self.assertIs(ReviewDecision.from_raw(None), ReviewDecision.NONE)
        self.assertIs(ReviewDecision.from_raw("APPROVED"), ReviewDecision.APPROVED)
        self.assertIs(ReviewDecision.from_raw("CHANGES_REQUESTED"), ReviewDecision.CHANGES_REQUESTED)
        self.assertIs(ReviewDecision.from_raw("REVIEW_REQUIRED"), ReviewDecision.PENDING)


class TestBuildStatus(unittest.TestCase):

    def test_no_checks_means_all_passed(self):
        status = build_status([], ReviewDecision.NONE)
        self.assertTrue(status.all_checks_passed)
        self.assertFalse(status.has_pending_checks)
        self.assertFalse(status.has_failed_checks)
        self.assertTrue(status.is_mergeable)

    def test_any_failed_check_sets_has_failed(self):
        checks = [Check("build", "SUCCESS"), Check("lint", "IN_PROGRESS"), Check("test", "FAILURE")]
        status = build_status(checks, ReviewDecision.APPROVED)
        self.assertTrue(status.has_failed_checks)
        self.assertTrue(status.has_pending_checks)
        self.assertFalse(status.all_checks_passed)
        self.assertFalse(status.is_mergeable)

    def test_changes_requested_blocks_merge(self):
        status = build_status([Check("build", "SUCCESS")], ReviewDecision.CHANGES_REQUESTED)
        self.assertTrue(status.all_checks_passed)
        self.assertFalse(status.is_mergeable)

    def test_review_required_blocks_merge(self):
        status = build_status([], ReviewDecision.PENDING)
        self.assertTrue(status.all_checks_passed)
        self.assertFalse(status.is_mergeable)

    def test_approved_and_passed_is_mergeable(self):
        status = build_status([Check("build", "SUCCESS"), Check("docs", "SKIPPED")], ReviewDecision.APPROVED)
        self.assertTrue(status.is_mergeable)

    def test_unknown_state_under_both_policies(self):
        checks = [Check("deploy", "WAITING")]
        lenient = build_status(checks, ReviewDecision.NONE, unknown_policy="passed")
        strict = build_status(checks, ReviewDecision.NONE, unknown_policy="pending")
        self.assertTrue(lenient.all_checks_passed)
        self.assertTrue(lenient.is_mergeable)
        self.assertFalse(strict.all_checks_passed)
        self.assertTrue(strict.has_pending_checks)
        self.assertFalse(strict.is_mergeable)


class TestStatusHelpers(unittest.TestCase):

    def test_has_status_changed(self):
        pending = build_status([Check("ci", "QUEUED")], ReviewDecision.NONE)
        pending_again = build_status([Check("ci", "IN_PROGRESS")], ReviewDecision.NONE)
        failed = build_status([Check("ci", "FAILURE")], ReviewDecision.NONE)
        approved = build_status([Check("ci", "QUEUED")], ReviewDecision.APPROVED)

        self.assertTrue(has_status_changed(None, pending))
        self.assertFalse(has_status_changed(pending, pending_again))
        self.assertTrue(has_status_changed(pending, failed))
        self.assertTrue(has_status_changed(pending, approved))

    def test_format_check_status(self):
        self.assertEqual(format_check_status(build_status([], ReviewDecision.NONE)), "No checks configured")
        status = build_status(
            [Check("build", "SUCCESS"), Check("lint", "QUEUED"), Check("test", "ERROR"), Check("x", "STALE")],
            ReviewDecision.NONE,
        )
        self.assertEqual(format_check_status(status), "✓ build, ○ lint, ✗ test, ? x")


class TestAwaitTerminal(unittest.TestCase):

    def make_tracker(self, script, policy="passed"):
        clock = FakeClock()
        system = FakeReviewSystem(script)
        tracker = ReviewTracker(system, poll_interval=10, unknown_policy=policy,
                                sleep=clock.sleep, clock=clock)
        return tracker, system, clock

    def test_returns_on_first_poll_when_clean_and_approved(self):
        tracker, system, clock = self.make_tracker([([], "APPROVED")])
        on_change = Mock()

        status = tracker.await_terminal(42, timeout=1800, on_change=on_change)

        self.assertTrue(status.is_mergeable)
        self.assertEqual(system.calls, 1)
        self.assertEqual(clock.sleeps, [])
        on_change.assert_called_once_with(status)

    def test_pending_to_failed_fires_callback_once_per_transition(self):
        script = [
            ([Check("ci", "PENDING")], ""),
            ([Check("ci", "IN_PROGRESS")], ""),
            ([Check("ci", "FAILURE")], ""),
        ]
        tracker, system, clock = self.make_tracker(script)
        on_change = Mock()

        status = tracker.await_terminal(7, timeout=1800, on_change=on_change)

        self.assertTrue(status.has_failed_checks)
        self.assertEqual(system.calls, 3)
        # Initial snapshot plus the pending -> failed transition
        self.assertEqual(on_change.call_count, 2)
        self.assertTrue(on_change.call_args_list[0][0][0].has_pending_checks)
        self.assertTrue(on_change.call_args_list[1][0][0].has_failed_checks)
        self.assertEqual(clock.sleeps, [10, 10])
        self.assertLess(clock.now, 1800)

    def test_timeout_carries_last_status(self):
        tracker, system, clock = self.make_tracker([([Check("ci", "QUEUED")], "")])

        with self.assertRaises(ReviewTimeoutError) as ctx:
            tracker.await_terminal(1, timeout=35)

        self.assertIsNotNone(ctx.exception.last_status)
        self.assertTrue(ctx.exception.last_status.has_pending_checks)
        self.assertEqual(system.calls, 4)  # polls at t=0, 10, 20, 30

    def test_zero_timeout_raises_without_status(self):
        tracker, system, _ = self.make_tracker([([], "")])

        with self.assertRaises(ReviewTimeoutError) as ctx:
            tracker.await_terminal(1, timeout=0)

        self.assertIsNone(ctx.exception.last_status)
        self.assertEqual(system.calls, 0)

    def test_transport_error_aborts_poll(self):
        system = Mock()
        system.get_checks.return_value = []
        system.get_review_decision.side_effect = TransportError("boom")
        tracker = ReviewTracker(system, sleep=Mock(), clock=lambda: 0.0)

        with self.assertRaises(TransportError):
            tracker.await_terminal(3, timeout=60)

    def test_unknown_state_waits_under_pending_policy(self):
        script = [
            ([Check("deploy", "WAITING")], ""),
            ([Check("deploy", "SUCCESS")], ""),
        ]
        tracker, system, _ = self.make_tracker(script, policy="pending")

        status = tracker.await_terminal(9, timeout=600)

        self.assertTrue(status.all_checks_passed)
        self.assertEqual(system.calls, 2)

    def test_rejects_invalid_policy(self):
        with self.assertRaises(ValueError):
            ReviewTracker(Mock(), unknown_policy="maybe")


if __name__ == "__main__":
    unittest.main()

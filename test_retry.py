#!/usr/bin/env python3
"""Tests for the retry module."""

import unittest
from unittest.mock import Mock

import requests

from errors import CommandError, RetryExhaustedError
from retry import is_transient_error, with_retry


class TestIsTransientError(unittest.TestCase):

    def test_tagged_errors(self):
        self.assertTrue(is_transient_error(CommandError("push failed", transient=True)))
        self.assertFalse(is_transient_error(CommandError("push rejected")))

    def test_requests_network_errors(self):
        self.assertTrue(is_transient_error(requests.ConnectionError("reset")))
        self.assertTrue(is_transient_error(requests.Timeout("slow")))
        self.assertFalse(is_transient_error(ValueError("bad")))


class TestWithRetry(unittest.TestCase):

    def test_success_on_first_attempt(self):
        operation = Mock(return_value="ok")
        sleep = Mock()

        self.assertEqual(with_retry(operation, max_retries=3, sleep=sleep), "ok")
        operation.assert_called_once()
        sleep.assert_not_called()

    def test_recovers_after_transient_failures(self):
        operation = Mock(side_effect=[
            CommandError("Could not resolve host", transient=True),
            CommandError("Could not resolve host", transient=True),
            "pushed",
        ])
        sleep = Mock()

        self.assertEqual(with_retry(operation, max_retries=3, sleep=sleep), "pushed")
        self.assertEqual(operation.call_count, 3)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [2, 4])

    def test_exhaustion_invokes_operation_n_plus_one_times(self):
        error = CommandError("Connection timed out", transient=True)
        operation = Mock(side_effect=error)
        sleep = Mock()

        with self.assertRaises(RetryExhaustedError) as ctx:
            with_retry(operation, max_retries=3, sleep=sleep)

        self.assertEqual(operation.call_count, 4)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [2, 4, 8])
        self.assertEqual(ctx.exception.attempts, 4)
        self.assertIs(ctx.exception.last_error, error)
        self.assertIn("failed after 4 attempts", str(ctx.exception))

    def test_permanent_error_is_not_retried(self):
        operation = Mock(side_effect=CommandError("non-fast-forward"))
        sleep = Mock()

        with self.assertRaises(CommandError):
            with_retry(operation, max_retries=3, sleep=sleep)

        operation.assert_called_once()
        sleep.assert_not_called()

    def test_zero_retries(self):
        operation = Mock(side_effect=requests.ConnectionError("down"))

        with self.assertRaises(RetryExhaustedError) as ctx:
            with_retry(operation, max_retries=0, sleep=Mock())

        operation.assert_called_once()
        self.assertEqual(ctx.exception.attempts, 1)

    def test_custom_base_delay(self):
        operation = Mock(side_effect=[requests.Timeout("t"), "done"])
        sleep = Mock()

        with_retry(operation, max_retries=2, base_delay=0.5, sleep=sleep)

        sleep.assert_called_once_with(0.5)


if __name__ == "__main__":
    unittest.main()

#!/usr/bin/env python3
"""Tests for run configuration parsing and validation."""

import unittest

from config import RunConfig, parse_duration, validate_run_config
from errors import ConfigurationError


class TestParseDuration(unittest.TestCase):

    def test_units(self):
        self.assertEqual(parse_duration("2h"), 7200)
        self.assertEqual(parse_duration("30m"), 1800)
        self.assertEqual(parse_duration("90s"), 90)
        self.assertEqual(parse_duration("1h30m"), 5400)
        self.assertEqual(parse_duration("1.5h"), 5400)

    def test_empty_means_unbounded(self):
        self.assertEqual(parse_duration(""), 0)
        self.assertEqual(parse_duration(None), 0)

    def test_invalid(self):
        for value in ("2d", "abc", "h", "10", "1h 30m"):
            with self.subTest(value=value):
                with self.assertRaises(ConfigurationError):
                    parse_duration(value)

    def test_zero_duration_rejected(self):
        with self.assertRaises(ConfigurationError):
            parse_duration("0m")


class TestValidateRunConfig(unittest.TestCase):

    def assertInvalid(self, message, **kwargs):
        values = dict(prompt="Add tests", max_runs=3)
        values.update(kwargs)
        with self.assertRaises(ConfigurationError) as ctx:
            validate_run_config(RunConfig(**values))
        self.assertIn(message, str(ctx.exception))

    def test_valid(self):
        validate_run_config(RunConfig(prompt="Add tests", max_runs=3))
        validate_run_config(RunConfig(prompt="Add tests", max_cost=5.0))
        validate_run_config(RunConfig(prompt="Add tests", max_duration=3600))

    def test_prompt_required(self):
        self.assertInvalid("prompt is required", prompt="")

    def test_at_least_one_limit(self):
        self.assertInvalid("at least one limit", max_runs=0)

    def test_negative_limits(self):
        self.assertInvalid("--max-runs", max_runs=-1)
        self.assertInvalid("--max-cost", max_cost=-0.5)

    def test_merge_strategy(self):
        self.assertInvalid("--merge-strategy", merge_strategy="octopus")

    def test_unknown_check_state(self):
        self.assertInvalid("--unknown-check-state", unknown_check_state="ignore")

    def test_completion_threshold(self):
        self.assertInvalid("--completion-threshold", completion_threshold=0)

    def test_pr_check_timeout(self):
        self.assertInvalid("PR_CHECK_TIMEOUT_SECONDS", pr_check_timeout=0)


class TestRunConfig(unittest.TestCase):

    def test_limits(self):
        cfg = RunConfig(prompt="x", max_runs=4, max_cost=2.5, max_duration=60, completion_threshold=2)
        limits = cfg.limits
        self.assertEqual(limits.max_iterations, 4)
        self.assertEqual(limits.max_cost, 2.5)
        self.assertEqual(limits.max_duration, 60)
        self.assertEqual(limits.completion_threshold, 2)

    def test_repository(self):
        self.assertEqual(RunConfig(prompt="x", owner="o", repo="r").repository, "o/r")
        self.assertEqual(RunConfig(prompt="x", owner="o").repository, "")


if __name__ == "__main__":
    unittest.main()

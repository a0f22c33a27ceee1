"""Metrics tracking module.

This module provides simple counters for one run of the continuous
development loop. An instance is owned by the orchestrator.
"""

from typing import Dict, Any


class Metrics:
    """Track PR and iteration outcomes for the run summary."""

    def __init__(self):
        self.total_prs_created = 0
        self.total_prs_merged = 0
        self.total_prs_closed = 0
        self.total_prs_left_open = 0
        self.total_iterations_failed = 0
        self.total_iterations_without_changes = 0
        self.pr_numbers = []

    def record_pr_created(self, pr_number: int):
        """Record that a PR was created."""
        self.total_prs_created += 1
        self.pr_numbers.append(pr_number)

    def record_pr_merged(self):
        self.total_prs_merged += 1

    def record_pr_closed(self):
        """Record that a PR was closed because its checks failed."""
        self.total_prs_closed += 1

    def record_pr_left_open(self):
        self.total_prs_left_open += 1

    def record_iteration_failed(self):
        self.total_iterations_failed += 1

    def record_no_changes(self):
        self.total_iterations_without_changes += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        return {
            "prs_created": self.total_prs_created,
            "prs_merged": self.total_prs_merged,
            "prs_closed": self.total_prs_closed,
            "prs_left_open": self.total_prs_left_open,
            "iterations_failed": self.total_iterations_failed,
            "iterations_without_changes": self.total_iterations_without_changes,
            "pr_numbers": list(self.pr_numbers),
        }

"""Stop-condition evaluation for the continuous development loop.

``should_stop`` is a pure function of the current ``RunState`` and the
immutable ``LimitConfig``. It is evaluated at the top of every cycle, before
any branch is created or the agent is invoked.
"""

import time
from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class LimitConfig:
    """Ceilings for a run. Zero means unbounded."""

    max_iterations: int = 0
    max_cost: float = 0.0
    max_duration: float = 0.0  # seconds
    completion_threshold: int = 3

    @property
    def has_max_iterations(self) -> bool:
        return self.max_iterations > 0

    @property
    def has_max_cost(self) -> bool:
        return self.max_cost > 0

    @property
    def has_max_duration(self) -> bool:
        return self.max_duration > 0


@dataclass
class RunState:
    """Counters for one run, owned by the orchestrator.

    ``iteration`` is incremented at the top of each cycle, so the first value
    the policy sees is 1. ``total_cost`` only ever grows.
    """

    iteration: int = 0
    total_cost: float = 0.0
    completion_signal_count: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def elapsed(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.monotonic()
        return max(0.0, now - self.started_at)

    @property
    def iterations_completed(self) -> int:
        return max(0, self.iteration - 1)


def format_duration(seconds: float) -> str:
    """Format seconds as a compact human-readable duration, e.g. '1h30m'."""
    seconds = int(seconds)
    if seconds <= 0:
        return "0s"

    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)

    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs:
        parts.append(f"{secs}s")
    return "".join(parts)


def should_stop(state: RunState, limits: LimitConfig, now: Optional[float] = None) -> Tuple[bool, str]:
    """Decide whether the loop should stop before starting ``state.iteration``.

    Conditions are checked in a fixed order and the first match supplies the
    reason: iteration ceiling, cost ceiling, duration ceiling, then the
    consecutive completion-signal threshold.

    The iteration ceiling counts completed iterations, so an iteration whose
    index equals ``max_iterations`` still runs. Cost and duration ceilings are
    inclusive: reaching the ceiling stops the loop.

    Returns:
        (stop, reason) where reason is empty when stop is False
    """
    if limits.has_max_iterations and state.iteration > limits.max_iterations:
        return True, f"reached max iterations ({limits.max_iterations})"

    if limits.has_max_cost and state.total_cost >= limits.max_cost:
        return True, f"reached max cost (${limits.max_cost:.2f})"

    if limits.has_max_duration and state.elapsed(now) >= limits.max_duration:
        return True, f"reached max duration ({format_duration(limits.max_duration)})"

    if state.completion_signal_count >= limits.completion_threshold:
        return True, "project completion signal detected"

    return False, ""

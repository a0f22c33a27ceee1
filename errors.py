"""Exception types shared across the continuous development loop."""

from typing import Any, Optional


class ConfigurationError(ValueError):
    """Raised when run configuration is invalid. Fatal before the loop starts."""


class CommandError(RuntimeError):
    """A git subprocess failed.

    ``transient`` is set by the caller that ran the command when the output
    looks like a network failure, so retry logic never has to parse text.
    """

    def __init__(self, message: str, output: str = "", transient: bool = False):
        super().__init__(message)
        self.output = output
        self.transient = transient

    def __str__(self) -> str:
        base = super().__str__()
        if self.output:
            return f"{base}\n{self.output.strip()}"
        return base


class TransportError(RuntimeError):
    """GitHub was unreachable or returned data we could not interpret."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class AgentError(RuntimeError):
    """The Claude Code CLI could not be run."""


class RetryExhaustedError(RuntimeError):
    """All retry attempts for a transient failure were used up."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class ReviewTimeoutError(TimeoutError):
    """PR checks did not reach a terminal state before the deadline.

    ``last_status`` is the last snapshot seen, or None if no poll completed.
    """

    def __init__(self, timeout: float, last_status: Optional[Any] = None):
        super().__init__(f"timeout waiting for PR checks after {int(timeout)}s")
        self.timeout = timeout
        self.last_status = last_status

"""
Exceptions raised by the review-watch components.

Precondition skips and reviewer failures are not exceptions: they come back
as ``SessionResult`` / ``ReviewOutcome`` values. These exceptions cover the
cases that must stop the process before any session runs, and git commands
that fail unexpectedly.
"""

from typing import List, Optional


class ReviewWatchError(RuntimeError):
    """Base class for review-watch errors."""


class SetupError(ReviewWatchError):
    """Raised when the environment cannot run reviews at all.

    Examples: git is not installed, the working directory is not inside a
    repository, or the configured review command cannot be found.
    """


class ConfigError(ReviewWatchError):
    """Raised when the configuration is invalid."""

    def __init__(self, errors: List[str]):
        """
        Args:
            errors: Validation messages collected by ``ConfigManager``.
        """
        super().__init__("; ".join(errors))
        self.errors = errors


class GitCommandError(ReviewWatchError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(self, args: List[str], returncode: int, stderr: Optional[str] = None):
        self.command = args
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"git {' '.join(args)} failed with exit code {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)

"""
review-watch - AI code review on save and on commit

Wires the PR-Agent reviewer into a local git workflow: a file watcher that
reviews every batch of saved changes through a temporary commit, git hooks
that review at commit time, and a thin dispatcher that runs PR-Agent against
the local repository.
"""

__version__ = "1.0.0"
__author__ = "review-watch contributors"
__description__ = "AI code review on save and on commit, powered by PR-Agent"

from .config import ConfigManager, ReviewWatchConfig
from .git_state import GitRepository, GitSnapshot
from .guard import ReviewGuard
from .invoker import ReviewInvoker, ReviewOutcome, SubprocessReviewInvoker
from .session import ReviewRunner, ReviewSession, SessionResult, SessionState

__all__ = [
    "ConfigManager",
    "ReviewWatchConfig",
    "GitRepository",
    "GitSnapshot",
    "ReviewGuard",
    "ReviewInvoker",
    "ReviewOutcome",
    "SubprocessReviewInvoker",
    "ReviewRunner",
    "ReviewSession",
    "SessionResult",
    "SessionState",
]

"""
Review session orchestration.

One session takes the guard, checks the preconditions, snapshots the
repository, turns the working tree into a temporary commit, runs the
reviewer and restores the repository. Restoring happens in a ``finally``
block, so it also runs when the reviewer fails, times out, raises, or the
user interrupts the process.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .config import ReviewWatchConfig
from .diff_parser import DiffParser, DiffStats
from .errors import GitCommandError
from .git_state import GitRepository, GitSnapshot
from .guard import ReviewGuard
from .invoker import ReviewInvoker, ReviewOutcome

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    GUARDED = "guarded"
    SNAPSHOTTING = "snapshotting"
    REVIEWING = "reviewing"
    RESTORING = "restoring"


# Session statuses
REVIEWED = "reviewed"
REVIEW_FAILED = "review_failed"
TIMED_OUT = "timed_out"
ERROR = "error"
SKIPPED_BUSY = "skipped_busy"
SKIPPED_PROTECTED_BRANCH = "skipped_protected_branch"
SKIPPED_DETACHED_HEAD = "skipped_detached_head"
SKIPPED_NO_CREDENTIALS = "skipped_no_credentials"
SKIPPED_NO_COMMITS = "skipped_no_commits"
SKIPPED_NO_CHANGES = "skipped_no_changes"
SKIPPED_DIFF_TOO_LARGE = "skipped_diff_too_large"

OUTCOME_STATUS = {
    "succeeded": REVIEWED,
    "failed": REVIEW_FAILED,
    "unavailable": REVIEW_FAILED,
    "timed_out": TIMED_OUT,
}


@dataclass
class ReviewSession:
    """Everything one review needs, from snapshot to restore."""

    snapshot: GitSnapshot
    confidence_level: str
    base_branch: Optional[str] = None
    trigger_paths: List[str] = field(default_factory=list)
    temp_commit: Optional[str] = None

    @property
    def branch(self) -> str:
        return self.snapshot.branch

    @property
    def original_head(self) -> str:
        return self.snapshot.original_head


@dataclass
class SessionResult:
    """How a triggered session ended."""

    status: str
    message: str
    outcome: Optional[ReviewOutcome] = None
    stats: Optional[DiffStats] = None
    session: Optional[ReviewSession] = None

    @property
    def skipped(self) -> bool:
        return self.status.startswith("skipped_")


def check_branch_and_credentials(
    repo: GitRepository, config: ReviewWatchConfig
) -> Optional[SessionResult]:
    """Skip checks shared by the watcher and the git hooks."""
    branch = repo.current_branch()
    if not branch:
        return SessionResult(SKIPPED_DETACHED_HEAD, "⏭️  Detached HEAD - skipping review")

    if repo.is_protected_branch(branch, config.git.protected_branches):
        return SessionResult(
            SKIPPED_PROTECTED_BRANCH,
            f"⏭️  On protected branch '{branch}' - skipping review",
        )

    if not config.has_credentials:
        return SessionResult(
            SKIPPED_NO_CREDENTIALS,
            "⚠️  No OPENAI_API_KEY configured - skipping review",
        )

    return None


class ReviewRunner:
    """Runs review sessions against one repository."""

    def __init__(
        self,
        repo: GitRepository,
        guard: ReviewGuard,
        invoker: ReviewInvoker,
        config: ReviewWatchConfig,
        on_state_change: Optional[Callable[[SessionState], None]] = None,
    ):
        """
        Args:
            repo: Repository to review
            guard: Guard shared by every entry point of this repository
            invoker: Reviewer to call on the temporary commit
            config: Loaded configuration
            on_state_change: Called with every new session state
        """
        self.repo = repo
        self.guard = guard
        self.invoker = invoker
        self.config = config
        self.on_state_change = on_state_change
        self.state = SessionState.IDLE

    def run(self, trigger_paths: Optional[List[str]] = None) -> SessionResult:
        """Run one session. Never raises for skips or reviewer failures."""
        if self.state is not SessionState.IDLE:
            logger.info("⏳ Session already running - dropping trigger")
            return SessionResult(SKIPPED_BUSY, "A review session is already running")

        self._set_state(SessionState.TRIGGERED)
        try:
            with self.guard.hold() as acquired:
                if not acquired:
                    return SessionResult(SKIPPED_BUSY, "Another review is in progress")
                self._set_state(SessionState.GUARDED)

                skip = self.check_preconditions()
                if skip is not None:
                    logger.info(skip.message)
                    return skip

                return self._run_guarded(list(trigger_paths or []))
        finally:
            self._set_state(SessionState.IDLE)

    def check_preconditions(self) -> Optional[SessionResult]:
        """Return a skip result when no review should run, else None."""
        skip = check_branch_and_credentials(self.repo, self.config)
        if skip is not None:
            return skip

        if self.repo.head() is None:
            return SessionResult(SKIPPED_NO_COMMITS, "ℹ️  Branch has no commits yet - skipping review")

        if not self.repo.has_changes():
            return SessionResult(SKIPPED_NO_CHANGES, "ℹ️  No changes detected")

        return None

    def _run_guarded(self, trigger_paths: List[str]) -> SessionResult:
        self._set_state(SessionState.SNAPSHOTTING)
        try:
            snapshot = self.repo.snapshot()
        except GitCommandError as e:
            logger.error("❌ Could not snapshot repository state: %s", e)
            return SessionResult(ERROR, f"Could not snapshot repository state: {e}")

        session = ReviewSession(
            snapshot=snapshot,
            confidence_level=self.config.review.confidence_level,
            base_branch=self.config.review.base_branch,
            trigger_paths=trigger_paths,
        )
        logger.info("🌿 Branch: %s", session.branch)

        try:
            logger.info("📝 Creating temporary commit for review...")
            session.temp_commit = self.repo.commit_for_review(self.config.git.commit_message)

            diff_text = self.repo.diff_text(session.original_head, session.temp_commit)
            parser = DiffParser.safe(diff_text)
            stats = parser.get_statistics()
            logger.info("📊 Changes: %s", stats.summary())
            logger.debug("Files in review commit: %s", ", ".join(parser.get_files()))

            if parser.is_large_diff(self.config.review.max_diff_size):
                return SessionResult(
                    SKIPPED_DIFF_TOO_LARGE,
                    f"⚠️  Diff too large ({stats.changes} changes, max {self.config.review.max_diff_size})",
                    stats=stats,
                    session=session,
                )

            self._set_state(SessionState.REVIEWING)
            logger.info("🎯 Running review (confidence: %s)...", session.confidence_level)
            outcome = self.invoker.invoke(session.confidence_level, session.base_branch)
            return self._result_from_outcome(outcome, stats, session)

        except GitCommandError as e:
            logger.error("❌ Review session failed: %s", e)
            return SessionResult(ERROR, f"Review session failed: {e}", session=session)

        finally:
            self._set_state(SessionState.RESTORING)
            self._restore(session)

    def _restore(self, session: ReviewSession) -> None:
        logger.info("🔄 Restoring original state...")
        try:
            self.repo.restore(session.snapshot)
        except GitCommandError:
            logger.error(
                "❌ Could not restore repository state. Your changes are in commit %s; "
                "run 'git reset --soft %s' to undo the temporary commit.",
                session.temp_commit or "(none)",
                session.original_head,
            )
            raise
        logger.info("✅ State restored")

    def _result_from_outcome(
        self, outcome: ReviewOutcome, stats: DiffStats, session: ReviewSession
    ) -> SessionResult:
        status = OUTCOME_STATUS.get(outcome.status, REVIEW_FAILED)
        if status == REVIEWED:
            message = "✅ Review completed"
        elif status == TIMED_OUT:
            message = "⚠️  Review timed out"
        else:
            message = "⚠️  Review had issues (API error or reviewer failure)"
        return SessionResult(status, message, outcome=outcome, stats=stats, session=session)

    def _set_state(self, state: SessionState) -> None:
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)

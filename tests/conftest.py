"""
Shared fixtures for the review-watch tests.

Most tests run against a real throwaway git repository created in
``tmp_path`` and a fake reviewer that records its calls.
"""

import subprocess
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from review_watch.config import ReviewWatchConfig
from review_watch.git_state import GitRepository
from review_watch.guard import ReviewGuard
from review_watch.invoker import ReviewInvoker, ReviewOutcome
from review_watch.session import ReviewRunner


def run_git(repo: Path, args: List[str]) -> str:
    completed = subprocess.run(
        ["git", "-C", str(repo), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


class FakeReviewInvoker(ReviewInvoker):
    """Records calls instead of running a reviewer."""

    def __init__(
        self,
        outcome: Optional[ReviewOutcome] = None,
        side_effect: Optional[Callable[[], None]] = None,
    ):
        self.outcome = outcome or ReviewOutcome(status="succeeded", returncode=0, output="LGTM")
        self.side_effect = side_effect
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.cwds: List[Optional[Path]] = []

    def invoke(self, confidence_level, base_branch=None, cwd=None):
        self.calls.append((confidence_level, base_branch))
        self.cwds.append(cwd)
        if self.side_effect is not None:
            self.side_effect()
        return self.outcome


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository with one commit on main and ``feature/x`` checked out."""
    repo = tmp_path / "repo"
    repo.mkdir()

    run_git(repo, ["init", "-q"])
    run_git(repo, ["symbolic-ref", "HEAD", "refs/heads/main"])
    run_git(repo, ["config", "user.email", "test@example.com"])
    run_git(repo, ["config", "user.name", "Review Watch Test"])
    run_git(repo, ["config", "commit.gpgsign", "false"])

    (repo / "app.py").write_text("def hello():\n    return 'hello'\n", encoding="utf-8")
    (repo / "README.md").write_text("# Demo\n", encoding="utf-8")
    run_git(repo, ["add", "."])
    run_git(repo, ["commit", "-q", "-m", "initial"])
    run_git(repo, ["checkout", "-q", "-b", "feature/x"])
    return repo


@pytest.fixture
def repository(git_repo: Path) -> GitRepository:
    return GitRepository(git_repo, lock_retries=3, lock_backoff_seconds=0.01)


@pytest.fixture
def review_config() -> ReviewWatchConfig:
    config = ReviewWatchConfig()
    config.openai_api_key = "sk-test"
    config.git.lock_retries = 3
    config.git.lock_backoff_seconds = 0.01
    return config


@pytest.fixture
def fake_invoker() -> FakeReviewInvoker:
    return FakeReviewInvoker()


@pytest.fixture
def guard(repository: GitRepository) -> ReviewGuard:
    return ReviewGuard(repository.git_path("review-watch.marker"))


@pytest.fixture
def runner(repository, guard, fake_invoker, review_config) -> ReviewRunner:
    return ReviewRunner(repository, guard, fake_invoker, review_config)


def head_of(repo: Path) -> str:
    return run_git(repo, ["rev-parse", "HEAD"]).strip()


def commit_count(repo: Path) -> int:
    return int(run_git(repo, ["rev-list", "--count", "HEAD"]).strip())

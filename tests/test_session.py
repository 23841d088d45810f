"""
Tests for the review session: snapshot, temporary commit, review, restore.
"""

from pathlib import Path

import pytest

from conftest import FakeReviewInvoker, commit_count, head_of, run_git
from review_watch.invoker import ReviewOutcome
from review_watch.session import ReviewRunner, SessionState


def _dirty_tree(repo: Path) -> None:
    """One modified tracked file and one new untracked file."""
    (repo / "app.py").write_text(
        "def hello():\n    return 'hello, world'\n", encoding="utf-8"
    )
    (repo / "new_module.py").write_text("VALUE = 42\n", encoding="utf-8")


class TestReviewScenario:
    def test_modified_and_untracked_files_on_feature_branch(self, git_repo, runner, fake_invoker):
        _dirty_tree(git_repo)
        before_head = head_of(git_repo)
        before_status = run_git(git_repo, ["status", "--porcelain"])
        before_app = (git_repo / "app.py").read_bytes()
        before_new = (git_repo / "new_module.py").read_bytes()

        seen = {}

        def inspect_during_review():
            seen["subject"] = run_git(git_repo, ["log", "-1", "--pretty=%s"]).strip()
            seen["parent"] = run_git(git_repo, ["rev-parse", "HEAD~1"]).strip()
            seen["files"] = run_git(
                git_repo, ["show", "--name-only", "--pretty=format:", "HEAD"]
            ).split()
            seen["status"] = run_git(git_repo, ["status", "--porcelain"])

        fake_invoker.side_effect = inspect_during_review

        result = runner.run(["app.py"])

        assert result.status == "reviewed"
        assert fake_invoker.calls == [("medium", None)]

        # Exactly one temporary commit holding both files
        assert seen["subject"].startswith("[TEMP]")
        assert seen["parent"] == before_head
        assert sorted(seen["files"]) == ["app.py", "new_module.py"]
        assert seen["status"] == ""

        # HEAD, index and files are back to the pre-session state
        assert head_of(git_repo) == before_head
        assert run_git(git_repo, ["status", "--porcelain"]) == before_status
        assert (git_repo / "app.py").read_bytes() == before_app
        assert (git_repo / "new_module.py").read_bytes() == before_new

        assert result.stats.files == 2
        assert result.session.temp_commit is not None
        assert result.session.trigger_paths == ["app.py"]

    def test_staged_boundary_is_preserved(self, git_repo, runner):
        (git_repo / "app.py").write_text("STAGED = True\n", encoding="utf-8")
        run_git(git_repo, ["add", "app.py"])
        (git_repo / "app.py").write_text("STAGED = True\nUNSTAGED = True\n", encoding="utf-8")
        (git_repo / "other.py").write_text("x = 1\n", encoding="utf-8")

        staged_before = run_git(git_repo, ["diff", "--cached"])
        unstaged_before = run_git(git_repo, ["diff"])

        result = runner.run()

        assert result.status == "reviewed"
        assert run_git(git_repo, ["diff", "--cached"]) == staged_before
        assert run_git(git_repo, ["diff"]) == unstaged_before
        assert "?? other.py" in run_git(git_repo, ["status", "--porcelain"])


class TestRestoreAlwaysRuns:
    @pytest.mark.parametrize("status", ["failed", "timed_out", "unavailable"])
    def test_head_restored_for_every_outcome(self, git_repo, repository, guard, review_config, status):
        _dirty_tree(git_repo)
        before = head_of(git_repo)
        invoker = FakeReviewInvoker(outcome=ReviewOutcome(status=status, returncode=1))
        runner = ReviewRunner(repository, guard, invoker, review_config)

        result = runner.run()

        assert head_of(git_repo) == before
        assert not guard.is_busy()
        assert result.status in ("review_failed", "timed_out")

    def test_timeout_still_restores_and_releases(self, git_repo, repository, guard, review_config):
        _dirty_tree(git_repo)
        before = head_of(git_repo)
        invoker = FakeReviewInvoker(outcome=ReviewOutcome(status="timed_out"))
        runner = ReviewRunner(repository, guard, invoker, review_config)

        result = runner.run()

        assert result.status == "timed_out"
        assert head_of(git_repo) == before
        assert not guard.marker_path.exists()

    def test_interrupt_during_review_restores(self, git_repo, repository, guard, review_config):
        _dirty_tree(git_repo)
        before = head_of(git_repo)

        def interrupt():
            raise KeyboardInterrupt

        runner = ReviewRunner(
            repository, guard, FakeReviewInvoker(side_effect=interrupt), review_config
        )

        with pytest.raises(KeyboardInterrupt):
            runner.run()

        assert head_of(git_repo) == before
        assert not guard.is_busy()
        assert runner.state is SessionState.IDLE
        assert "?? new_module.py" in run_git(git_repo, ["status", "--porcelain"])


class TestSkips:
    @pytest.mark.parametrize("branch", ["main", "master"])
    def test_protected_branch_never_mutates(self, git_repo, runner, fake_invoker, branch):
        run_git(git_repo, ["checkout", "-q", "-B", branch])
        _dirty_tree(git_repo)
        before = head_of(git_repo)
        status_before = run_git(git_repo, ["status", "--porcelain"])

        result = runner.run()

        assert result.status == "skipped_protected_branch"
        assert fake_invoker.calls == []
        assert head_of(git_repo) == before
        assert run_git(git_repo, ["status", "--porcelain"]) == status_before

    def test_clean_tree_creates_no_commit(self, git_repo, runner, fake_invoker):
        count = commit_count(git_repo)

        result = runner.run()

        assert result.status == "skipped_no_changes"
        assert commit_count(git_repo) == count
        assert fake_invoker.calls == []

    def test_busy_guard_drops_session(self, git_repo, repository, runner, fake_invoker):
        _dirty_tree(git_repo)
        before = head_of(git_repo)
        status_before = run_git(git_repo, ["status", "--porcelain"])
        other = type(runner.guard)(runner.guard.marker_path)
        assert other.acquire()

        try:
            result = runner.run()
        finally:
            other.release()

        assert result.status == "skipped_busy"
        assert fake_invoker.calls == []
        assert head_of(git_repo) == before
        assert run_git(git_repo, ["status", "--porcelain"]) == status_before

    def test_missing_credentials(self, git_repo, runner, fake_invoker, review_config):
        _dirty_tree(git_repo)
        review_config.openai_api_key = None

        result = runner.run()

        assert result.status == "skipped_no_credentials"
        assert result.skipped
        assert fake_invoker.calls == []

    def test_detached_head(self, git_repo, runner):
        run_git(git_repo, ["checkout", "-q", "--detach"])
        _dirty_tree(git_repo)

        assert runner.run().status == "skipped_detached_head"

    def test_diff_too_large_restores(self, git_repo, runner, fake_invoker, review_config):
        review_config.review.max_diff_size = 1
        _dirty_tree(git_repo)
        before = head_of(git_repo)

        result = runner.run()

        assert result.status == "skipped_diff_too_large"
        assert fake_invoker.calls == []
        assert head_of(git_repo) == before

    def test_diff_at_size_limit_is_reviewed(self, git_repo, runner, fake_invoker, review_config, caplog):
        # app.py +1 -1, new_module.py +1
        review_config.review.max_diff_size = 3
        _dirty_tree(git_repo)

        with caplog.at_level("DEBUG", logger="review_watch.session"):
            result = runner.run()

        assert result.status == "reviewed"
        assert result.stats.changes == 3
        assert "Files in review commit: app.py, new_module.py" in caplog.text


class TestStateMachine:
    def test_state_sequence(self, git_repo, repository, guard, fake_invoker, review_config):
        _dirty_tree(git_repo)
        states = []
        runner = ReviewRunner(
            repository, guard, fake_invoker, review_config, on_state_change=states.append
        )

        runner.run()

        assert states == [
            SessionState.TRIGGERED,
            SessionState.GUARDED,
            SessionState.SNAPSHOTTING,
            SessionState.REVIEWING,
            SessionState.RESTORING,
            SessionState.IDLE,
        ]

    def test_trigger_while_running_is_dropped(self, git_repo, repository, guard, review_config):
        _dirty_tree(git_repo)
        nested = []
        runner = None

        def trigger_again():
            nested.append(runner.run())

        invoker = FakeReviewInvoker(side_effect=trigger_again)
        runner = ReviewRunner(repository, guard, invoker, review_config)

        result = runner.run()

        assert result.status == "reviewed"
        assert [r.status for r in nested] == ["skipped_busy"]
        assert len(invoker.calls) == 1

    def test_confidence_and_base_branch_passed(self, git_repo, runner, fake_invoker, review_config):
        review_config.review.confidence_level = "high"
        review_config.review.base_branch = "main"
        _dirty_tree(git_repo)

        runner.run()

        assert fake_invoker.calls == [("high", "main")]


def test_stale_index_lock_is_cleared(git_repo, repository, runner):
    _dirty_tree(git_repo)
    lock = repository.index_lock_path()
    lock.write_text("")
    before = head_of(git_repo)

    result = runner.run()

    assert result.status == "reviewed"
    assert not lock.exists()
    assert head_of(git_repo) == before

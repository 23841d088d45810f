"""
Git hook installation and the commit-time review entry points.

The installed ``pre-commit`` and ``post-commit`` scripts call back into
``review_watch.cli hook <name>``. Both hooks independently skip trunk
branches, missing credentials and re-entry from our own temporary commits,
and both share the watcher's guard. Neither ever blocks a commit.

The reviewer runs in a temporary worktree checked out at the commit under
review (the staged content for pre-commit, the new commit for post-commit),
so it sees a clean repository whatever state the main worktree is in.
"""

import logging
import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import ReviewWatchConfig
from .diff_parser import DiffParser, DiffStats
from .git_state import ACTIVE_ENV_VAR, GitRepository
from .guard import ReviewGuard
from .invoker import ReviewInvoker
from .session import (
    SKIPPED_BUSY,
    SKIPPED_NO_CHANGES,
    SessionResult,
    OUTCOME_STATUS,
    check_branch_and_credentials,
)

logger = logging.getLogger(__name__)

HOOK_NAMES = ("pre-commit", "post-commit")

HOOK_MARKER = "# Installed by review-watch"

SKIPPED_REENTRY = "skipped_reentry"

HOOK_TEMPLATE = """#!/bin/sh
{marker}
# Runs the review-watch {name} review. Never blocks the commit.

if [ -n "${active_var}" ]; then
    exit 0
fi

"{python}" -m review_watch.cli hook {name} || true
exit 0
"""


class HookInstaller:
    """Installs and removes the review-watch git hooks."""

    def __init__(self, repo: GitRepository, python: Optional[str] = None):
        """
        Args:
            repo: Repository to install into
            python: Interpreter the hooks should run (defaults to the current one)
        """
        self.repo = repo
        self.python = python or sys.executable

    def hook_path(self, name: str) -> Path:
        return self.repo.hooks_dir() / name

    def backup_path(self, name: str) -> Path:
        return self.repo.hooks_dir() / f"{name}.review-watch.bak"

    def render(self, name: str) -> str:
        return HOOK_TEMPLATE.format(
            marker=HOOK_MARKER, name=name, python=self.python, active_var=ACTIVE_ENV_VAR
        )

    def is_installed(self, name: str) -> bool:
        path = self.hook_path(name)
        if not path.is_file():
            return False
        try:
            return HOOK_MARKER in path.read_text(errors="replace")
        except OSError:
            return False

    def status(self) -> Dict[str, bool]:
        return {name: self.is_installed(name) for name in HOOK_NAMES}

    def install(self) -> List[Path]:
        """
        Write both hooks. Foreign hooks are backed up first.

        Returns:
            Paths of the installed hooks
        """
        hooks_dir = self.repo.hooks_dir()
        hooks_dir.mkdir(parents=True, exist_ok=True)

        installed = []
        for name in HOOK_NAMES:
            path = self.hook_path(name)
            if path.exists() and not self.is_installed(name):
                backup = self.backup_path(name)
                if not backup.exists():
                    shutil.copy2(path, backup)
                    logger.info("📦 Backed up existing %s hook to %s", name, backup.name)

            path.write_text(self.render(name))
            path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            installed.append(path)
            logger.info("✅ %s hook installed", name)

        return installed

    def uninstall(self) -> List[Path]:
        """
        Remove our hooks and put back any backed-up hooks.

        Returns:
            Paths of the removed hooks
        """
        removed = []
        for name in HOOK_NAMES:
            if not self.is_installed(name):
                continue
            path = self.hook_path(name)
            path.unlink()
            removed.append(path)

            backup = self.backup_path(name)
            if backup.exists():
                backup.rename(path)
                logger.info("♻️  Restored previous %s hook", name)
        return removed


class HookRunner:
    """Commit-time form of the review session."""

    def __init__(
        self,
        repo: GitRepository,
        guard: ReviewGuard,
        invoker: ReviewInvoker,
        config: ReviewWatchConfig,
    ):
        self.repo = repo
        self.guard = guard
        self.invoker = invoker
        self.config = config

    def run(self, name: str) -> SessionResult:
        if name not in HOOK_NAMES:
            raise ValueError(f"Unknown hook: {name}")

        if os.environ.get(ACTIVE_ENV_VAR):
            return SessionResult(SKIPPED_REENTRY, "Review commit - hook skipped")

        skip = check_branch_and_credentials(self.repo, self.config)
        if skip is not None:
            return skip

        with self.guard.hold() as acquired:
            if not acquired:
                return SessionResult(SKIPPED_BUSY, "Another review is in progress")
            if name == "pre-commit":
                return self._pre_commit()
            return self._post_commit()

    def _pre_commit(self) -> SessionResult:
        # git holds the index lock while pre-commit runs: work on a copy of the index
        if not self.repo.has_staged_changes():
            return SessionResult(SKIPPED_NO_CHANGES, "ℹ️  No staged changes to review")

        stats = DiffParser.safe(self.repo.staged_diff_text()).get_statistics()
        print(f"🔍 Running PR-Agent review on staged changes ({stats.summary()})...")
        commit = self.repo.staged_commit(self.config.git.commit_message)
        return self._invoke(commit, stats=stats)

    def _post_commit(self) -> SessionResult:
        commit_hash, subject = self.repo.head_commit_info()
        print("📊 Just committed:")
        print(f"   Hash: {commit_hash}")
        print(f"   Message: {subject}")
        print("")
        print("🤖 Running PR-Agent review on latest commit...")
        return self._invoke(commit_hash)

    def _invoke(self, commit: str, stats: Optional[DiffStats] = None) -> SessionResult:
        # The main worktree may be dirty; the reviewer gets a clean checkout of commit
        with self.repo.review_worktree(commit) as worktree:
            outcome = self.invoker.invoke(
                self.config.review.confidence_level,
                self.config.review.base_branch,
                cwd=worktree,
            )
        status = OUTCOME_STATUS.get(outcome.status, outcome.status)
        if outcome.succeeded:
            message = "✅ PR-Agent review completed"
        else:
            message = "⚠️  PR-Agent review had issues, but proceeding with commit"
        return SessionResult(status, message, outcome=outcome, stats=stats)

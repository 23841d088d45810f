"""
Git state snapshot and restore for review sessions.

A review needs a commit to diff against the base branch, but the user's
working tree is usually dirty. This module turns the working tree into one
temporary commit and afterwards puts HEAD and the index back exactly as they
were. File contents on disk are never modified.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import GitCommandError, SetupError

logger = logging.getLogger(__name__)

# Set in the environment of every git command that creates a review commit
# and of the reviewer process, so hooks can recognise our own activity.
ACTIVE_ENV_VAR = "REVIEW_WATCH_ACTIVE"

# Set by git for hooks. They point at the main worktree and its index and
# must not leak into commands that operate on a review worktree.
GIT_LOCAL_ENV_VARS = ("GIT_INDEX_FILE", "GIT_DIR", "GIT_WORK_TREE", "GIT_PREFIX")

REVIEW_BRANCH_PREFIX = "review-watch/"


@dataclass(frozen=True)
class GitSnapshot:
    """State captured before the temporary commit is created."""

    original_head: str
    index_tree: str
    branch: str


class GitRepository:
    """Thin wrapper around the git command line for a single repository."""

    def __init__(
        self,
        root: Path,
        lock_retries: int = 10,
        lock_backoff_seconds: float = 0.5,
    ):
        """
        Args:
            root: Top-level directory of the working tree
            lock_retries: How many times to check for a foreign index lock
            lock_backoff_seconds: Delay between two lock checks
        """
        self.root = Path(root)
        self.lock_retries = lock_retries
        self.lock_backoff_seconds = lock_backoff_seconds
        self._git_paths: Dict[str, Path] = {}

    @classmethod
    def discover(cls, path: Optional[Path] = None, **kwargs) -> "GitRepository":
        """
        Open the repository containing ``path``.

        Raises:
            SetupError: git is not installed or ``path`` is not in a repository
        """
        if shutil.which("git") is None:
            raise SetupError("git is required but was not found on PATH")

        start = Path(path or Path.cwd())
        result = subprocess.run(
            ["git", "-C", str(start), "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise SetupError(f"Not in a git repository: {start}")

        return cls(Path(result.stdout.strip()), **kwargs)

    # Low-level helpers

    def run(
        self,
        *args: str,
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        config: Sequence[Tuple[str, str]] = (),
        unset: Sequence[str] = (),
    ) -> subprocess.CompletedProcess:
        """Run a git command inside the repository."""
        cmd = ["git", "-C", str(self.root)]
        for key, value in config:
            cmd.extend(["-c", f"{key}={value}"])
        cmd.extend(args)

        process_env = None
        if env or unset:
            process_env = os.environ.copy()
            process_env.update(env or {})
            for name in unset:
                process_env.pop(name, None)

        result = subprocess.run(cmd, capture_output=True, text=True, env=process_env)
        if check and result.returncode != 0:
            raise GitCommandError(list(args), result.returncode, result.stderr)
        return result

    def git_path(self, name: str) -> Path:
        """Resolve a path inside the git directory (worktree aware)."""
        if name not in self._git_paths:
            output = self.run("rev-parse", "--git-path", name).stdout.strip()
            path = Path(output)
            if not path.is_absolute():
                path = self.root / path
            self._git_paths[name] = path
        return self._git_paths[name]

    def hooks_dir(self) -> Path:
        """Directory git runs hooks from (honours ``core.hooksPath``)."""
        return self.git_path("hooks")

    def index_lock_path(self) -> Path:
        return self.git_path("index.lock")

    # Queries

    def current_branch(self) -> str:
        """Name of the checked-out branch, or an empty string when detached."""
        return self.run("branch", "--show-current").stdout.strip()

    def head(self) -> Optional[str]:
        """Commit id of HEAD, or None when the branch has no commits yet."""
        result = self.run("rev-parse", "--verify", "--quiet", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def status_lines(self) -> List[str]:
        output = self.run("status", "--porcelain", "--untracked-files=all").stdout
        return [line for line in output.splitlines() if line.strip()]

    def has_changes(self) -> bool:
        """Whether there are uncommitted changes or untracked files."""
        return bool(self.status_lines())

    def has_staged_changes(self) -> bool:
        return self.run("diff", "--cached", "--quiet", check=False).returncode != 0

    def is_protected_branch(self, branch: str, protected: Sequence[str]) -> bool:
        return branch in protected

    def list_branches(self) -> List[str]:
        output = self.run("branch", "--format=%(refname:short)", check=False).stdout
        branches = [b.strip() for b in output.splitlines() if b.strip()]
        return [b for b in branches if not b.startswith(REVIEW_BRANCH_PREFIX)]

    def default_base_branch(self) -> str:
        """
        Guess the branch a review should compare against.

        Order: the remote's default branch, then ``main``/``master``/``develop``,
        then any other local branch, then ``main``.
        """
        current = self.current_branch()

        result = self.run("symbolic-ref", "refs/remotes/origin/HEAD", check=False)
        if result.returncode == 0:
            remote_default = result.stdout.strip().split("/")[-1]
            if remote_default and remote_default != current:
                return remote_default

        branches = self.list_branches()
        for branch in ("main", "master", "develop"):
            if branch != current and branch in branches:
                return branch

        for branch in branches:
            if branch != current:
                return branch

        return "main"

    def head_commit_info(self) -> Tuple[str, str]:
        """Hash and subject of the HEAD commit."""
        output = self.run("log", "-1", "--pretty=format:%H%x00%s").stdout
        commit_hash, _, subject = output.partition("\x00")
        return commit_hash, subject

    def diff_text(self, base: str, head: str = "HEAD", exclude: Sequence[str] = ()) -> str:
        """Unified diff between two revisions."""
        args = ["diff", "--no-color", "--no-ext-diff", base, head]
        if exclude:
            args.append("--")
            args.extend(f":(exclude){pattern}" for pattern in exclude)
        return self.run(*args).stdout

    def staged_diff_text(self) -> str:
        return self.run("diff", "--cached", "--no-color", "--no-ext-diff").stdout

    # Index lock handling

    def wait_for_index_lock(self) -> None:
        """
        Wait for a concurrent git process to release the index lock.

        Polls ``lock_retries`` times with a fixed backoff. A lock that is
        still present afterwards is treated as stale and removed.
        """
        lock = self.index_lock_path()
        for attempt in range(self.lock_retries):
            if not lock.exists():
                return
            logger.debug(
                "Git index lock present (check %d/%d), waiting %.1fs",
                attempt + 1,
                self.lock_retries,
                self.lock_backoff_seconds,
            )
            time.sleep(self.lock_backoff_seconds)

        if lock.exists():
            logger.warning("🔓 Removing stale git index lock: %s", lock)
            try:
                lock.unlink()
            except FileNotFoundError:
                pass

    # Session operations

    def snapshot(self) -> GitSnapshot:
        """
        Record HEAD and the exact index state.

        Raises:
            GitCommandError: the branch has no commits or the index cannot be
                written as a tree (e.g. unresolved merge conflicts)
        """
        head = self.head()
        if head is None:
            raise GitCommandError(["rev-parse", "HEAD"], 128, "branch has no commits yet")

        self.wait_for_index_lock()
        index_tree = self.run("write-tree").stdout.strip()

        return GitSnapshot(
            original_head=head,
            index_tree=index_tree,
            branch=self.current_branch(),
        )

    def commit_for_review(self, message: str) -> str:
        """
        Stage everything and create the temporary review commit.

        The commit bypasses all hooks and never opens an editor or signing
        prompt.

        Returns:
            Id of the temporary commit
        """
        self.wait_for_index_lock()
        self.run("add", "-A")

        config = self._commit_config()
        self.wait_for_index_lock()
        self.run(
            "commit",
            "--no-verify",
            "--no-edit",
            "--quiet",
            "-m",
            message,
            env={ACTIVE_ENV_VAR: "1", "GIT_EDITOR": "true"},
            config=config,
        )
        return self.run("rev-parse", "HEAD").stdout.strip()

    def restore(self, snapshot: GitSnapshot) -> None:
        """
        Put HEAD and the index back to the snapshot.

        Soft-resets the branch to the original HEAD, which drops the temporary
        commit while leaving every file on disk untouched, then reloads the
        saved index tree so staged and unstaged changes are exactly as before.
        """
        self.wait_for_index_lock()
        self.run("reset", "--soft", snapshot.original_head)
        self.wait_for_index_lock()
        self.run("read-tree", snapshot.index_tree)

    # Commit-time reviews

    def index_file(self) -> Path:
        """The index git is working with; inside a commit hook, the one being committed."""
        override = os.environ.get("GIT_INDEX_FILE")
        if override:
            path = Path(override)
            return path if path.is_absolute() else self.root / path
        return self.git_path("index")

    def staged_commit(self, message: str) -> str:
        """
        Create a commit holding exactly the staged content.

        Works on a copy of the index, so it is safe while git holds
        ``index.lock`` during ``pre-commit``. HEAD, the index and the working
        tree are left alone; the commit is reachable from no branch.

        Returns:
            Id of the new commit
        """
        with tempfile.TemporaryDirectory(prefix="review-watch-") as tmp:
            index_copy = Path(tmp) / "index"
            shutil.copyfile(self.index_file(), index_copy)
            tree = self.run(
                "write-tree", env={"GIT_INDEX_FILE": str(index_copy)}
            ).stdout.strip()

        args = ["commit-tree", tree]
        head = self.head()
        if head is not None:
            args.extend(["-p", head])
        args.extend(["-m", message])
        return self.run(*args, config=self._commit_config()).stdout.strip()

    @contextmanager
    def review_worktree(self, commit: str) -> Iterator[Path]:
        """
        Check ``commit`` out on a throwaway branch in a temporary worktree.

        The reviewer sees a clean repository whose HEAD is ``commit``, however
        dirty the main worktree is. The worktree and its branch are removed on
        exit.
        """
        parent = Path(tempfile.mkdtemp(prefix="review-watch-"))
        path = parent / self.root.name
        branch = f"{REVIEW_BRANCH_PREFIX}{commit[:12]}-{os.getpid()}"
        try:
            self.run(
                "worktree", "add", "--quiet", "-b", branch, str(path), commit,
                config=[("core.hooksPath", os.devnull)],
                unset=GIT_LOCAL_ENV_VARS,
            )
            logger.debug("Review worktree for %s at %s", commit[:12], path)
            yield path
        finally:
            removed = self.run(
                "worktree", "remove", "--force", str(path), check=False, unset=GIT_LOCAL_ENV_VARS
            )
            if removed.returncode != 0 and path.exists():
                logger.warning("⚠️  Could not remove review worktree %s: %s", path, removed.stderr.strip())
            self.run("branch", "-D", branch, check=False, unset=GIT_LOCAL_ENV_VARS)
            self.run("worktree", "prune", check=False, unset=GIT_LOCAL_ENV_VARS)
            shutil.rmtree(parent, ignore_errors=True)

    def _commit_config(self) -> List[Tuple[str, str]]:
        """Hook-free, unsigned commits, with a fallback identity."""
        config = [("core.hooksPath", os.devnull), ("commit.gpgSign", "false")]
        if self.run("config", "user.email", check=False).returncode != 0:
            config.append(("user.email", "review-watch@localhost"))
        if self.run("config", "user.name", check=False).returncode != 0:
            config.append(("user.name", "review-watch"))
        return config

"""
Glue between review-watch and the PR-Agent library.

This is what the ``review`` command runs inside the reviewer process: it
checks that a review makes sense, configures PR-Agent for a local repository
and the requested confidence level, runs ``PRReviewer`` and prints the
formatted result. PR-Agent is imported lazily so the rest of the package
works without it.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import yaml

from .config import ReviewWatchConfig
from .git_state import GitRepository
from .reporter import ReviewReporter

logger = logging.getLogger(__name__)

# Paths belonging to the review tooling itself, never part of a review
TOOLING_EXCLUDES = [
    ".cursor-pr-agent/*",
    "__pycache__/*",
    ".pr_agent.toml",
    ".review-watch.yaml",
    "install-pr-agent-complete.sh",
]

BASE_SETTINGS = {
    "git_provider": "local",
    "config.git_provider": "local",
    "pr_reviewer.require_score_review": False,
    "pr_reviewer.require_soc2_review": True,
    "pr_reviewer.require_can_be_split_review": False,
    # Labels need a hosted provider
    "pr_reviewer.enable_review_labels_effort": False,
    "pr_reviewer.enable_review_labels_security": False,
}

CONFIDENCE_SETTINGS = {
    "high": {
        "pr_reviewer.require_focused_review": True,
        "pr_reviewer.require_estimate_effort_to_review": False,
    },
    "medium": {},
    "low": {
        "pr_reviewer.require_focused_review": False,
        "pr_reviewer.require_estimate_effort_to_review": True,
    },
}

INSTALL_HINT = "pip install 'pr-review-watch[agent]'"


def pr_agent_settings(api_key: str, confidence_level: str) -> Dict[str, Any]:
    """All PR-Agent settings for one review."""
    settings = dict(BASE_SETTINGS)
    settings["openai.key"] = api_key
    settings.update(CONFIDENCE_SETTINGS.get(confidence_level, {}))
    return settings


def check_pr_agent_available() -> Tuple[bool, Optional[str]]:
    """Check if PR-Agent is installed and its classes can be imported."""
    try:
        from pr_agent.config_loader import get_settings  # noqa: F401
        from pr_agent.git_providers.local_git_provider import LocalGitProvider  # noqa: F401
        from pr_agent.tools.pr_reviewer import PRReviewer  # noqa: F401
    except ImportError as e:
        return False, str(e)
    return True, None


class ReviewDispatcher:
    """Runs one PR-Agent review of the current branch."""

    def __init__(
        self,
        repo: GitRepository,
        config: ReviewWatchConfig,
        reporter: Optional[ReviewReporter] = None,
    ):
        self.repo = repo
        self.config = config
        self.reporter = reporter or ReviewReporter(config.review.confidence_level)

    def prepare(
        self, base_branch: Optional[str] = None, allow_dirty: bool = False
    ) -> Tuple[Optional[str], Optional[str], int]:
        """
        Check that a review can run.

        Returns:
            Tuple of (base branch, message, exit code). The base branch is
            None when no review should run; the message then says why.
        """
        if not self.config.openai_api_key:
            return None, "❌ OPENAI_API_KEY not found. Add it to your .env file.", 1

        if not allow_dirty and self.repo.has_changes():
            return (
                None,
                "❌ Repository has uncommitted changes. Please commit or stash them first.",
                1,
            )

        current = self.repo.current_branch()
        if not current:
            return None, "❌ Could not determine current branch", 1

        if base_branch is None:
            base_branch = self.repo.default_base_branch()
            print(f"🔍 Auto-detected base branch: {base_branch}")

        if base_branch == current:
            return (
                None,
                f"ℹ️  On the default branch '{current}' - no review needed. "
                "Create a feature branch to get reviews.",
                0,
            )

        if self.repo.run("rev-parse", "--verify", "--quiet", base_branch, check=False).returncode != 0:
            return None, f"❌ Base branch '{base_branch}' does not exist", 1

        diff_text = self.repo.diff_text(base_branch, "HEAD", exclude=TOOLING_EXCLUDES)
        if not diff_text.strip():
            return (
                None,
                f"ℹ️  No changes detected between '{current}' and '{base_branch}'",
                0,
            )

        return base_branch, None, 0

    async def run(self, base_branch: Optional[str] = None, allow_dirty: bool = False) -> Tuple[int, str]:
        """
        Run the review and print the report.

        Returns:
            Tuple of (exit code, final status message)
        """
        confidence_level = self.config.review.confidence_level
        print(f"🎯 **PR-Agent Review** (Confidence: {confidence_level})")
        print("=" * 50)

        base_branch, message, code = self.prepare(base_branch, allow_dirty)
        if base_branch is None:
            return code, message

        try:
            from pr_agent.config_loader import get_settings
            from pr_agent.git_providers.local_git_provider import LocalGitProvider
            from pr_agent.tools.pr_reviewer import PRReviewer
        except ImportError as e:
            return 1, f"❌ PR-Agent is not available ({e}). Install with: {INSTALL_HINT}"

        settings = get_settings()
        for key, value in pr_agent_settings(self.config.openai_api_key, confidence_level).items():
            settings.set(key, value)
        logger.debug("PR-Agent configured for %s confidence", confidence_level)

        print(f"🌿 Current branch: {self.repo.current_branch()}")
        print(f"🎯 Comparing against: {base_branch}")

        try:
            git_provider = LocalGitProvider(target_branch_name=base_branch)
            print(f"🔍 Found {len(git_provider.get_diff_files())} files with changes")

            # LocalGitProvider takes the target branch in place of a PR URL
            pr_reviewer = PRReviewer(base_branch)
            pr_reviewer.git_provider = git_provider

            print("🤖 Running PR-Agent analysis...")
            result = await pr_reviewer.run()
        except Exception as e:
            logger.debug("PR-Agent failure", exc_info=True)
            return 1, f"❌ PR-Agent review failed: {e}"

        print(self.render(result, settings))
        return 0, "✅ Review completed successfully"

    def render(self, result: Any, settings: Any = None) -> str:
        """Turn whatever ``PRReviewer.run()`` produced into report text."""
        prediction = result[0] if isinstance(result, tuple) else result

        if prediction is None and settings is not None:
            # Without a hosted provider PR-Agent stores its markdown here
            data = settings.get("data", {}) or {}
            artifact = data.get("artifact") if isinstance(data, dict) else None
            if artifact:
                return str(artifact)

        prediction = self._as_dict(prediction)
        if prediction is None:
            return self.reporter.format_empty_review()
        return self.reporter.format_review(prediction)

    def _as_dict(self, prediction: Any) -> Optional[Dict[str, Any]]:
        if not prediction:
            return None
        if isinstance(prediction, dict):
            return prediction
        if hasattr(prediction, "dict"):
            return prediction.dict()
        if isinstance(prediction, str):
            try:
                loaded = yaml.safe_load(prediction)
            except yaml.YAMLError:
                return None
            return loaded if isinstance(loaded, dict) else None
        return None

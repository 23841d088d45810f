"""
Command-line interface for review-watch.

This module provides the entry point for watching a repository, running a
single review session, installing the git hooks, and the ``review`` command
that the watcher and hooks call to run PR-Agent.
"""

import argparse
import asyncio
import logging
import shutil
import signal
import sys
from pathlib import Path
from typing import Optional

from review_watch.config import (
    CONFIDENCE_LEVELS,
    ConfigManager,
    default_review_command,
)
from review_watch.dispatcher import ReviewDispatcher, check_pr_agent_available, INSTALL_HINT
from review_watch.errors import ConfigError, ReviewWatchError, SetupError
from review_watch.git_state import GitRepository
from review_watch.guard import ReviewGuard
from review_watch.hooks import HOOK_NAMES, HookInstaller, HookRunner
from review_watch.invoker import SubprocessReviewInvoker
from review_watch.session import ReviewRunner, SessionResult
from review_watch.watcher import ChangeWatcher, PathFilter

SEPARATOR = "━" * 40


class ReviewWatchCLI:
    """Command-line interface for review-watch."""

    def __init__(self):
        """Initialize the CLI."""
        self.config_manager = None
        self.config = None

    def create_parser(self) -> argparse.ArgumentParser:
        """Create the command-line argument parser."""
        common = argparse.ArgumentParser(add_help=False)
        common_group = common.add_argument_group("Configuration")
        common_group.add_argument(
            "--config", help="Path to configuration file (YAML format)"
        )
        common_group.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        common_group.add_argument(
            "--debug", action="store_true", help="Enable debug output"
        )

        session = argparse.ArgumentParser(add_help=False)
        session_group = session.add_argument_group("Review Options")
        session_group.add_argument(
            "--confidence-level",
            "-c",
            choices=CONFIDENCE_LEVELS,
            help="Filter suggestions by confidence level (default: medium)",
        )
        session_group.add_argument(
            "--base-branch",
            "-b",
            help="Base branch to compare against (default: auto-detect)",
        )
        session_group.add_argument(
            "--timeout",
            type=float,
            metavar="SECONDS",
            help="Maximum duration of one review (default: 45)",
        )
        session_group.add_argument(
            "--review-command",
            metavar="CMD",
            help="Command that runs the review (default: review-watch review)",
        )

        parser = argparse.ArgumentParser(
            prog="review-watch",
            description="AI code review on save and on commit, powered by PR-Agent",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Review every time a source file is saved
  review-watch watch

  # Only high confidence issues, compared against develop
  review-watch watch -c high -b develop

  # Review the current working tree once
  review-watch run-once

  # Review on commit
  review-watch install-hooks

  # Run PR-Agent on the current branch
  review-watch review --base-branch main
            """,
        )
        subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

        watch = subparsers.add_parser(
            "watch", parents=[common, session], help="Review on every file save"
        )
        watch_group = watch.add_argument_group("Watch Options")
        watch_group.add_argument(
            "--extensions",
            metavar="LIST",
            help="Comma-separated file extensions to watch",
        )
        watch_group.add_argument(
            "--cooldown",
            type=float,
            metavar="SECONDS",
            help="Delay after each review before reacting to new changes",
        )

        subparsers.add_parser(
            "run-once",
            parents=[common, session],
            help="Run a single review session on the working tree",
        )

        review = subparsers.add_parser(
            "review", parents=[common, session], help="Run PR-Agent on the current branch"
        )
        review.add_argument(
            "--allow-dirty",
            action="store_true",
            help="Review even if the working tree has uncommitted changes",
        )

        subparsers.add_parser(
            "install-hooks", parents=[common], help="Install the pre-commit and post-commit hooks"
        )
        subparsers.add_parser(
            "uninstall-hooks", parents=[common], help="Remove the review-watch git hooks"
        )

        hook = subparsers.add_parser(
            "hook", parents=[common, session], help="Entry point used by the installed git hooks"
        )
        hook.add_argument("hook_name", choices=HOOK_NAMES)

        subparsers.add_parser(
            "validate-config", parents=[common], help="Validate configuration and exit"
        )

        generate = subparsers.add_parser(
            "generate-config", parents=[common], help="Generate sample configuration file and exit"
        )
        generate.add_argument("output", help="File to write")

        return parser

    def run(self, args: Optional[list] = None) -> int:
        """
        Run review-watch.

        Args:
            args: Command-line arguments (defaults to sys.argv)

        Returns:
            Exit code (0 for success, 1 for error)
        """
        parser = self.create_parser()
        parsed_args = parser.parse_args(args)

        if not parsed_args.command:
            parser.print_help()
            return 1

        self._setup_logging(parsed_args.debug)

        try:
            if parsed_args.command == "generate-config":
                return self._generate_config(parsed_args.output)

            # Load configuration
            self.config_manager = ConfigManager(config_file=parsed_args.config, load_env=True)
            self.config = self.config_manager.get_config()
            self.config_manager.update_from_args(vars(parsed_args))
            self._setup_logging(self.config.debug)

            if parsed_args.command == "validate-config":
                return self._validate_config()

            errors = self.config_manager.validate_config()
            if errors:
                raise ConfigError(errors)

            handlers = {
                "watch": self._watch,
                "run-once": self._run_once,
                "review": self._review,
                "install-hooks": self._install_hooks,
                "uninstall-hooks": self._uninstall_hooks,
                "hook": self._hook,
            }
            return handlers[parsed_args.command](parsed_args)

        except ConfigError as e:
            print("Configuration errors:")
            for error in e.errors:
                print(f"  - {error}")
            return 1
        except SetupError as e:
            print(f"❌ {e}")
            return 1
        except KeyboardInterrupt:
            print("\n🛑 Cancelled by user")
            return 1
        except Exception as e:
            if parsed_args.debug or (self.config is not None and self.config.debug):
                import traceback

                traceback.print_exc()
            else:
                print(f"Error: {e}")
            return 1

    # Commands

    def _watch(self, args: argparse.Namespace) -> int:
        """Watch the repository and review each batch of changes."""
        repo = self._open_repo()
        self._preflight_review_command()
        runner = self._create_runner(repo)

        watch_config = self.config.watch
        path_filter = PathFilter(
            repo.root,
            watch_config.extensions,
            list(watch_config.exclude_dirs) + [self.config.install_dir],
        )
        watcher = ChangeWatcher(
            repo.root,
            path_filter,
            runner,
            debounce_seconds=watch_config.debounce_seconds,
            cooldown_seconds=watch_config.cooldown_seconds,
            on_result=self._print_result,
        )

        print("🔍 PR-Agent File Watcher")
        print("=========================")
        print(f"📁 Repository: {repo.root.name}")
        print(f"⚙️  Confidence: {self.config.review.confidence_level}")
        print(f"📝 Extensions: {','.join(watch_config.extensions)}")
        if not self.config.has_credentials:
            print("⚠️  No OPENAI_API_KEY found - reviews will be skipped until .env is configured")
        print("")
        print("👁️  Watching files... (Press Ctrl+C to stop)")
        print("💡 Save any source file to trigger review")

        watcher.start()
        try:
            watcher.run()
        except KeyboardInterrupt:
            print("\n🛑 Watcher stopped")
        finally:
            watcher.stop()
        return 0

    def _run_once(self, args: argparse.Namespace) -> int:
        """Run a single session on the current working tree."""
        repo = self._open_repo()
        self._preflight_review_command()
        result = self._create_runner(repo).run()
        self._print_result(result)
        return 1 if result.status == "error" else 0

    def _review(self, args: argparse.Namespace) -> int:
        """Run PR-Agent against the current branch."""
        repo = self._open_repo()
        dispatcher = ReviewDispatcher(repo, self.config)
        code, message = asyncio.run(
            dispatcher.run(self.config.review.base_branch, allow_dirty=args.allow_dirty)
        )

        print("\n" + "=" * 50)
        print("📋 SUMMARY:")
        print(message)
        return code

    def _install_hooks(self, args: argparse.Namespace) -> int:
        installer = HookInstaller(self._open_repo())
        print("🪝 Setting up PR-Agent Git Hooks")
        print("==================================")
        for path in installer.install():
            print(f"✅ Installed {path}")
        print("")
        print("💡 The hooks will:")
        print("  • Skip on protected branches (" + ", ".join(self.config.git.protected_branches) + ")")
        print("  • Skip if no OPENAI_API_KEY is configured")
        print("  • Run automatically on commits in feature branches")
        return 0

    def _uninstall_hooks(self, args: argparse.Namespace) -> int:
        removed = HookInstaller(self._open_repo()).uninstall()
        if not removed:
            print("ℹ️  No review-watch hooks installed")
        for path in removed:
            print(f"🗑️  Removed {path}")
        return 0

    def _hook(self, args: argparse.Namespace) -> int:
        """Run from a git hook. Always succeeds so commits are never blocked."""
        title = "Pre-Commit" if args.hook_name == "pre-commit" else "Post-Commit"
        try:
            repo = self._open_repo()
            runner = HookRunner(repo, self._create_guard(repo), self._create_invoker(repo), self.config)
            print("")
            print(SEPARATOR)
            print(f"    PR-Agent {title} Review")
            print(SEPARATOR)
            print("")
            result = runner.run(args.hook_name)
        except ReviewWatchError as e:
            print(f"⚠️  PR-Agent {args.hook_name} review skipped: {e}")
            return 0

        self._print_result(result)
        if args.hook_name == "post-commit" and result.outcome is not None:
            if result.outcome.succeeded:
                print("🔍 Review the suggestions above before pushing")
            else:
                print("💡 You can run it manually: review-watch review")
        return 0

    def _validate_config(self) -> int:
        """Validate configuration and print results."""
        errors = self.config_manager.validate_config(require_credentials=True)
        if errors:
            print("❌ Configuration validation failed:")
            for error in errors:
                print(f"  - {error}")
            return 1

        print("Configuration is valid")
        return 0

    def _generate_config(self, output_file: str) -> int:
        """Generate a sample configuration file."""
        try:
            config_manager = ConfigManager(load_env=False)
            config_manager.save_config(output_file)
        except OSError as e:
            print(f"❌ Failed to generate configuration: {e}")
            return 1

        print(f"✅ Sample configuration saved to {output_file}")
        print("Edit the file with your settings; keep API keys in .env.")
        return 0

    # Helpers

    def _open_repo(self) -> GitRepository:
        return GitRepository.discover(
            lock_retries=self.config.git.lock_retries,
            lock_backoff_seconds=self.config.git.lock_backoff_seconds,
        )

    def _create_guard(self, repo: GitRepository) -> ReviewGuard:
        return ReviewGuard(repo.git_path(self.config.marker_name))

    def _create_invoker(self, repo: GitRepository) -> SubprocessReviewInvoker:
        return SubprocessReviewInvoker(
            self.config.review.command,
            timeout_seconds=self.config.review.timeout_seconds,
            cwd=repo.root,
        )

    def _create_runner(self, repo: GitRepository) -> ReviewRunner:
        return ReviewRunner(repo, self._create_guard(repo), self._create_invoker(repo), self.config)

    def _preflight_review_command(self) -> None:
        """Fail early when the reviewer cannot possibly run."""
        command = self.config.review.command
        if command == default_review_command():
            available, error = check_pr_agent_available()
            if not available:
                raise SetupError(f"PR-Agent not installed ({error}). Install with: {INSTALL_HINT}")
            return

        executable = command[0]
        if shutil.which(executable) is None and not Path(executable).is_file():
            raise SetupError(f"Review command not found: {executable}")

    def _print_result(self, result: SessionResult) -> None:
        if result.outcome is not None and result.outcome.output.strip():
            print(result.outcome.output.rstrip())
        print("")
        print(result.message)
        if result.status == "timed_out":
            print(f"   (limit: {self.config.review.timeout_seconds:.0f}s)")
        if self.config.verbose and result.stats is not None:
            print(f"📊 Reviewed changes: {result.stats.summary()}")
        print(SEPARATOR)

    def _setup_logging(self, debug: bool) -> None:
        level = logging.DEBUG if debug else logging.INFO
        logging.basicConfig(level=level, format="%(message)s")
        # basicConfig is a no-op once configured; DEBUG from .env arrives later
        logging.getLogger().setLevel(level)


def _raise_on_sigterm(signum, frame):
    # Unwinds through the session's finally blocks like Ctrl+C does
    raise SystemExit(128 + signum)


def main():
    """Main entry point."""
    signal.signal(signal.SIGTERM, _raise_on_sigterm)
    cli = ReviewWatchCLI()
    exit_code = cli.run()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

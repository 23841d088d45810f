"""
Configuration management for review-watch.

This module handles loading and validating configuration from a YAML file,
the repository's ``.env`` file, environment variables and command-line
arguments, in that order of precedence (later sources win).
"""

import os
import shlex
import sys
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from pathlib import Path
import logging

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = ("high", "medium", "low")

DEFAULT_CONFIG_FILE = ".review-watch.yaml"

DEFAULT_EXTENSIONS = [
    "py", "js", "ts", "tsx", "jsx", "go", "rs", "java",
    "cpp", "c", "h", "hpp", "sh", "yml", "yaml", "json",
]

DEFAULT_EXCLUDE_DIRS = [
    ".git",
    ".cursor-pr-agent",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
    "dist",
    "build",
]


def default_review_command() -> List[str]:
    """Command used to run the review when none is configured."""
    return [sys.executable, "-m", "review_watch.cli", "review"]


def parse_list(value: Any) -> List[str]:
    """Accept either a list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = value
    return [str(item).strip() for item in items if str(item).strip()]


@dataclass
class WatchConfig:
    """Configuration for the file watcher."""

    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS))
    debounce_seconds: float = 0.5
    cooldown_seconds: float = 2.0


@dataclass
class GitConfig:
    """Configuration for the temporary commit workflow."""

    protected_branches: List[str] = field(default_factory=lambda: ["main", "master"])
    commit_message: str = "[TEMP] Auto-review commit - will be reverted"
    lock_retries: int = 10
    lock_backoff_seconds: float = 0.5


@dataclass
class ReviewConfig:
    """Configuration for invoking the reviewer."""

    confidence_level: str = "medium"
    base_branch: Optional[str] = None
    timeout_seconds: float = 45.0
    command: List[str] = field(default_factory=default_review_command)
    max_diff_size: int = 50000


@dataclass
class ReviewWatchConfig:
    """Main configuration for review-watch."""

    watch: WatchConfig = field(default_factory=WatchConfig)
    git: GitConfig = field(default_factory=GitConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)

    # Directory holding the tool's own files inside the watched repository
    install_dir: str = ".cursor-pr-agent"

    # Guard marker file name, created inside the repository's git directory
    marker_name: str = "review-watch.marker"

    # OpenAI API key used by PR-Agent
    openai_api_key: Optional[str] = None

    # Debug settings
    debug: bool = False
    verbose: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.openai_api_key)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: Optional[str] = None, load_env: bool = True):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to YAML config file. When omitted, a
                ``.review-watch.yaml`` in the current directory or one of its
                parents is used if present.
            load_env: Whether to load the ``.env`` file and read environment
                variables
        """
        self.config_file = config_file or self._find_upward(DEFAULT_CONFIG_FILE)
        self.load_env = load_env
        self.env_file = None

        if load_env:
            self.env_file = self._find_upward(".env")
            if self.env_file:
                load_dotenv(self.env_file)
                logger.debug("Loaded environment variables from %s", self.env_file)

        self.config = self._load_config()

    def get_config(self) -> ReviewWatchConfig:
        """Get the loaded configuration."""
        return self.config

    def validate_config(self, require_credentials: bool = False) -> List[str]:
        """
        Validate the configuration and return any errors.

        Args:
            require_credentials: Also report a missing OpenAI API key

        Returns:
            List of validation error messages
        """
        errors = []
        config = self.config

        if require_credentials and not config.openai_api_key:
            errors.append(
                "OpenAI API key is required for reviews. Set OPENAI_API_KEY in your .env file."
            )

        if config.review.confidence_level not in CONFIDENCE_LEVELS:
            errors.append(
                f"Confidence level must be one of {', '.join(CONFIDENCE_LEVELS)} "
                f"(got {config.review.confidence_level!r})"
            )

        if config.review.timeout_seconds <= 0:
            errors.append("Review timeout must be greater than 0 seconds")

        if not config.review.command:
            errors.append("Review command must not be empty")

        if config.review.max_diff_size < 1:
            errors.append("Max diff size must be at least 1")

        if not config.watch.extensions:
            errors.append("At least one watched file extension is required")

        if config.watch.debounce_seconds < 0 or config.watch.cooldown_seconds < 0:
            errors.append("Debounce and cool-down delays must not be negative")

        if config.git.lock_retries < 0:
            errors.append("Git lock retries must not be negative")

        if config.git.lock_backoff_seconds < 0:
            errors.append("Git lock backoff must not be negative")

        if not config.git.commit_message.strip():
            errors.append("Temporary commit message must not be empty")

        return errors

    def update_from_args(self, args: Dict[str, Any]) -> None:
        """
        Update configuration from command-line arguments.

        Args:
            args: Dictionary of command-line arguments
        """
        # Map command-line args to config attributes
        arg_mapping = {
            "debug": "debug",
            "verbose": "verbose",
            "confidence_level": ("review", "confidence_level"),
            "base_branch": ("review", "base_branch"),
            "timeout": ("review", "timeout_seconds", float),
            "review_command": ("review", "command", shlex.split),
            "extensions": ("watch", "extensions", parse_list),
            "cooldown": ("watch", "cooldown_seconds", float),
        }

        for arg_name, config_path in arg_mapping.items():
            if arg_name in args and args[arg_name] is not None:
                if isinstance(config_path, tuple):
                    # Nested config path
                    if len(config_path) == 3:
                        section, key, transform = config_path
                        value = transform(args[arg_name])
                    else:
                        section, key = config_path
                        value = args[arg_name]

                    section_obj = getattr(self.config, section)
                    setattr(section_obj, key, value)
                elif args[arg_name]:
                    # Flags only ever switch settings on
                    setattr(self.config, config_path, args[arg_name])

    def _load_config(self) -> ReviewWatchConfig:
        """Load configuration from various sources."""
        config = ReviewWatchConfig()

        # Load from config file if provided
        if self.config_file and Path(self.config_file).exists():
            config = self._load_from_file(self.config_file)

        # Override with environment variables
        if self.load_env:
            self._load_from_environment(config)

        return config

    def _load_from_file(self, config_file: str) -> ReviewWatchConfig:
        """Load configuration from YAML file."""
        try:
            with open(config_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Failed to load config file %s: %s", config_file, e)
            return ReviewWatchConfig()

        if not isinstance(data, dict):
            logger.warning("Ignoring config file %s: expected a mapping", config_file)
            return ReviewWatchConfig()

        return self._dict_to_config(data)

    def _load_from_environment(self, config: ReviewWatchConfig) -> None:
        """Load configuration from environment variables."""
        config.openai_api_key = os.getenv("OPENAI_API_KEY") or os.getenv("OPENAI_KEY")

        if os.getenv("CONFIDENCE_LEVEL"):
            config.review.confidence_level = os.getenv("CONFIDENCE_LEVEL").lower()

        if os.getenv("REVIEW_BASE_BRANCH"):
            config.review.base_branch = os.getenv("REVIEW_BASE_BRANCH")

        if os.getenv("REVIEW_COMMAND"):
            config.review.command = shlex.split(os.getenv("REVIEW_COMMAND"))

        if os.getenv("WATCH_EXTENSIONS"):
            config.watch.extensions = parse_list(os.getenv("WATCH_EXTENSIONS"))

        if os.getenv("PROTECTED_BRANCHES"):
            config.git.protected_branches = parse_list(os.getenv("PROTECTED_BRANCHES"))

        # Numeric settings
        for env_var, section, key, cast in (
            ("REVIEW_TIMEOUT", config.review, "timeout_seconds", float),
            ("REVIEW_COOLDOWN", config.watch, "cooldown_seconds", float),
            ("MAX_DIFF_SIZE", config.review, "max_diff_size", int),
        ):
            raw = os.getenv(env_var)
            if raw:
                try:
                    setattr(section, key, cast(raw))
                except ValueError:
                    logger.warning("Ignoring invalid %s value: %r", env_var, raw)

        # Debug settings
        if os.getenv("DEBUG"):
            config.debug = os.getenv("DEBUG").lower() == "true"

        if os.getenv("VERBOSE"):
            config.verbose = os.getenv("VERBOSE").lower() == "true"

    def _dict_to_config(self, data: Dict[str, Any]) -> ReviewWatchConfig:
        """Convert dictionary to ReviewWatchConfig dataclass."""
        config = ReviewWatchConfig()

        list_fields = {"extensions", "exclude_dirs", "protected_branches"}

        for section_name in ("watch", "git", "review"):
            section_data = data.get(section_name) or {}
            section = getattr(config, section_name)
            for key, value in section_data.items():
                if not hasattr(section, key):
                    logger.warning("Unknown setting %s.%s ignored", section_name, key)
                    continue
                if key in list_fields:
                    value = parse_list(value)
                elif key == "command" and isinstance(value, str):
                    value = shlex.split(value)
                setattr(section, key, value)

        for key in ("install_dir", "marker_name", "debug", "verbose"):
            if key in data:
                setattr(config, key, data[key])

        return config

    def _find_upward(self, name: str) -> Optional[str]:
        """Find a file in the current directory or parent directories."""
        current = Path.cwd()

        while True:
            candidate = current / name
            if candidate.is_file():
                return str(candidate)
            if current == current.parent:
                return None
            current = current.parent

    def save_config(self, output_file: str) -> None:
        """Save current configuration to a YAML file."""
        config_dict = self._config_to_dict(self.config)

        with open(output_file, "w") as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)

    def _config_to_dict(self, config: ReviewWatchConfig) -> Dict[str, Any]:
        """Convert ReviewWatchConfig to dictionary for serialization."""
        review = {
            "confidence_level": config.review.confidence_level,
            "base_branch": config.review.base_branch,
            "timeout_seconds": config.review.timeout_seconds,
            "max_diff_size": config.review.max_diff_size,
        }
        # The default command names this interpreter, so it is left implicit
        if config.review.command != default_review_command():
            review["command"] = shlex.join(config.review.command)

        return {
            "watch": {
                "extensions": config.watch.extensions,
                "exclude_dirs": config.watch.exclude_dirs,
                "debounce_seconds": config.watch.debounce_seconds,
                "cooldown_seconds": config.watch.cooldown_seconds,
            },
            "git": {
                "protected_branches": config.git.protected_branches,
                "commit_message": config.git.commit_message,
                "lock_retries": config.git.lock_retries,
                "lock_backoff_seconds": config.git.lock_backoff_seconds,
            },
            "review": review,
            "install_dir": config.install_dir,
            "marker_name": config.marker_name,
            "debug": config.debug,
            "verbose": config.verbose,
        }

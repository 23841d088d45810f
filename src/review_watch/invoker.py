"""
Invocation of the external review tool.

The reviewer is an opaque command that accepts ``--confidence-level`` and
``--base-branch`` and prints its report to stdout. Every way it can go wrong
(non-zero exit, timeout, missing executable) is reported as a
``ReviewOutcome`` instead of an exception, so the caller can always restore
the repository afterwards.
"""

import logging
import os
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from .git_state import ACTIVE_ENV_VAR, GIT_LOCAL_ENV_VARS

logger = logging.getLogger(__name__)


@dataclass
class ReviewOutcome:
    """Result of one reviewer run."""

    status: str  # succeeded, failed, timed_out, unavailable
    returncode: Optional[int] = None
    output: str = ""
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class ReviewInvoker(ABC):
    """Interface for anything that can run a review of the current HEAD."""

    @abstractmethod
    def invoke(
        self,
        confidence_level: str,
        base_branch: Optional[str] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> ReviewOutcome:
        """
        Run a review.

        Args:
            confidence_level: One of high, medium, low
            base_branch: Branch to compare against; None lets the reviewer
                auto-detect it
            cwd: Repository to review, when it is not the default one

        Returns:
            ReviewOutcome describing how the run ended
        """
        pass


class SubprocessReviewInvoker(ReviewInvoker):
    """Runs the review command as a child process with a timeout."""

    def __init__(
        self,
        command: List[str],
        timeout_seconds: float = 45.0,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            command: Review command without the confidence/base-branch options
            timeout_seconds: Hard limit for one review
            cwd: Working directory for the reviewer (the repository root)
            env: Extra environment variables for the reviewer
        """
        self.command = list(command)
        self.timeout_seconds = timeout_seconds
        self.cwd = cwd
        self.env = env or {}

    def build_command(self, confidence_level: str, base_branch: Optional[str] = None) -> List[str]:
        cmd = self.command + ["--confidence-level", confidence_level]
        if base_branch:
            cmd.extend(["--base-branch", base_branch])
        return cmd

    def invoke(
        self,
        confidence_level: str,
        base_branch: Optional[str] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> ReviewOutcome:
        cmd = self.build_command(confidence_level, base_branch)
        env = os.environ.copy()
        for name in GIT_LOCAL_ENV_VARS:
            env.pop(name, None)
        env.update(self.env)
        env[ACTIVE_ENV_VAR] = "1"
        cwd = cwd or self.cwd

        logger.debug("Running reviewer: %s", " ".join(cmd))
        started = time.monotonic()

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                cwd=str(cwd) if cwd else None,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            duration = time.monotonic() - started
            logger.warning("⚠️  Review timed out after %.0fs", self.timeout_seconds)
            return ReviewOutcome(
                status="timed_out",
                output=_as_text(e.stdout) + _as_text(e.stderr),
                duration=duration,
            )
        except OSError as e:
            logger.warning("⚠️  Could not start reviewer %s: %s", cmd[0], e)
            return ReviewOutcome(status="unavailable", output=str(e))

        duration = time.monotonic() - started
        output = result.stdout + result.stderr

        if result.returncode != 0:
            logger.warning("⚠️  Reviewer exited with status %d", result.returncode)
            return ReviewOutcome(
                status="failed",
                returncode=result.returncode,
                output=output,
                duration=duration,
            )

        return ReviewOutcome(
            status="succeeded",
            returncode=0,
            output=output,
            duration=duration,
        )


def _as_text(data: Union[bytes, str, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data

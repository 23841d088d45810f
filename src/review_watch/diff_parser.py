"""
Diff statistics for review commits.

Parses the unified diff of a temporary review commit (or of the staged
changes in a pre-commit hook) so the session can report what is about to be
reviewed and refuse diffs that are too large to send to the reviewer.
"""

from typing import List
from dataclasses import dataclass
from unidiff import PatchSet
from unidiff.errors import UnidiffParseError


@dataclass
class DiffStats:
    """Size of a diff."""

    files: int = 0
    additions: int = 0
    deletions: int = 0

    @property
    def changes(self) -> int:
        return self.additions + self.deletions

    def summary(self) -> str:
        noun = "file" if self.files == 1 else "files"
        return f"{self.files} {noun}, +{self.additions} -{self.deletions}"


class DiffParser:
    """Parser for unified diff text."""

    def __init__(self, diff_text: str):
        """
        Initialize the diff parser.

        Args:
            diff_text: Unified diff text to parse
        """
        self.diff_text = diff_text
        self.patch_set = PatchSet(diff_text) if diff_text.strip() else None

    @classmethod
    def safe(cls, diff_text: str) -> "DiffParser":
        """Parse ``diff_text``, falling back to an empty diff if it is malformed."""
        try:
            return cls(diff_text)
        except UnidiffParseError:
            return cls("")

    def get_files(self) -> List[str]:
        """Get list of all files modified in the diff."""
        if not self.patch_set:
            return []

        return [patched_file.path for patched_file in self.patch_set]

    def get_statistics(self) -> DiffStats:
        """Get overall statistics for the diff."""
        if not self.patch_set:
            return DiffStats()

        return DiffStats(
            files=len(self.patch_set),
            additions=sum(patched_file.added for patched_file in self.patch_set),
            deletions=sum(patched_file.removed for patched_file in self.patch_set),
        )

    def is_large_diff(self, threshold: int) -> bool:
        """Check if the diff is larger than ``threshold`` changed lines."""
        return self.get_statistics().changes > threshold

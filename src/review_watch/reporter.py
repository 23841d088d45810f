"""
Console formatting for PR-Agent review results.

PR-Agent returns its review as a nested dict (``{"review": {...}}``). This
module renders the parts a developer needs at save or commit time: key
issues, security concerns, effort estimate, test coverage and a summary.
"""

from typing import Any, Dict, List, Optional

EFFORT_KEY = "estimated_effort_to_review_[1-5]"

NO_TESTS_ANSWERS = ("no", "none", "n/a")


class ReviewReporter:
    """Formats PR-Agent review predictions for the terminal."""

    def __init__(self, confidence_level: str = "medium"):
        """
        Args:
            confidence_level: Confidence level the review ran with
        """
        self.confidence_level = confidence_level

    def format_review(self, prediction: Optional[Dict[str, Any]]) -> str:
        """
        Render a review prediction.

        Args:
            prediction: Dict with a ``review`` section, as produced by PR-Agent

        Returns:
            Formatted report text
        """
        if not prediction or not isinstance(prediction.get("review"), dict):
            return "No review data available"

        review = prediction["review"]
        lines = ["", "🔍 PR-Agent Code Review Results", "=" * 50, ""]

        issues = self._key_issues(review)
        if issues:
            lines.append("🚨 Key Issues Found:")
            lines.append("")
            for index, issue in enumerate(issues, 1):
                lines.extend(self._format_issue(index, issue))

        security = self._security_concerns(review)
        if security:
            lines.append("🔒 Security Concerns:")
            lines.append("")
            for line in security.splitlines():
                line = line.strip()
                if not line:
                    continue
                lines.append(f"   {line}" if line.startswith("- ") else f"   • {line}")
            lines.append("")

        effort = review.get(EFFORT_KEY)
        if effort:
            lines.append(f"⏱️  Estimated Review Effort: {effort}/5")
            lines.append("")

        tests = str(review.get("relevant_tests") or "").strip()
        if tests and tests.lower() not in NO_TESTS_ANSWERS:
            lines.append(f"🧪 Test Coverage: {tests}")
            lines.append("")

        lines.extend(self.format_summary(len(issues), bool(security)))
        return "\n".join(lines)

    def format_empty_review(self) -> str:
        """Report used when PR-Agent ran but produced no prediction."""
        lines = ["", "🔍 PR-Agent Code Review Results", "=" * 50, ""]
        lines.append("📊 Summary:")
        lines.append("   • No specific issues found by PR-Agent")
        lines.append(f"   • Confidence level: {self.confidence_level}")
        lines.append("")
        return "\n".join(lines)

    def format_summary(self, issue_count: int, has_security: bool) -> List[str]:
        lines = ["📊 Summary:"]
        if issue_count > 0:
            plural = "s" if issue_count != 1 else ""
            lines.append(f"   • {issue_count} key issue{plural} found")
        if has_security:
            lines.append("   • Security concerns identified")
        if issue_count == 0 and not has_security:
            lines.append("   • No major issues detected")
        lines.append(f"   • Confidence level: {self.confidence_level}")
        lines.append("")
        return lines

    def _key_issues(self, review: Dict[str, Any]) -> List[Dict[str, Any]]:
        issues = review.get("key_issues_to_review") or []
        if not isinstance(issues, list):
            return []
        return [issue for issue in issues if isinstance(issue, dict)]

    def _security_concerns(self, review: Dict[str, Any]) -> str:
        security = review.get("security_concerns") or ""
        if not isinstance(security, str):
            return ""
        security = security.strip()
        # PR-Agent answers "No" when it found nothing
        if security.lower() in NO_TESTS_ANSWERS:
            return ""
        return security

    def _format_issue(self, index: int, issue: Dict[str, Any]) -> List[str]:
        file_name = issue.get("relevant_file", "Unknown file")
        header = issue.get("issue_header", "Issue")
        content = issue.get("issue_content", "No description")
        start_line = issue.get("start_line")
        end_line = issue.get("end_line")

        location = ""
        if start_line:
            location = f" (Lines {start_line}-{end_line or start_line})"

        return [
            f"{index}. **{header}** - 📁 `{file_name}`{location}",
            f"   {content}",
            "",
        ]

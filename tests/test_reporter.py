"""
Tests for review report formatting.
"""

from review_watch.reporter import ReviewReporter


SAMPLE_PREDICTION = {
    "review": {
        "estimated_effort_to_review_[1-5]": 2,
        "relevant_tests": "No",
        "security_concerns": "- Hardcoded credential in `config.py`",
        "key_issues_to_review": [
            {
                "relevant_file": "app.py",
                "issue_header": "Possible bug",
                "issue_content": "The return value is never used.",
                "start_line": 10,
                "end_line": 12,
            },
            {
                "relevant_file": "util.py",
                "issue_header": "Naming",
                "issue_content": "Unclear name.",
                "start_line": 3,
            },
        ],
    }
}


def test_format_review():
    report = ReviewReporter("high").format_review(SAMPLE_PREDICTION)

    assert "🔍 PR-Agent Code Review Results" in report
    assert "1. **Possible bug** - 📁 `app.py` (Lines 10-12)" in report
    assert "2. **Naming** - 📁 `util.py` (Lines 3-3)" in report
    assert "   - Hardcoded credential in `config.py`" in report
    assert "⏱️  Estimated Review Effort: 2/5" in report
    assert "🧪 Test Coverage" not in report
    assert "   • 2 key issues found" in report
    assert "   • Security concerns identified" in report
    assert "   • Confidence level: high" in report


def test_clean_review():
    prediction = {"review": {"security_concerns": "No", "key_issues_to_review": []}}

    report = ReviewReporter().format_review(prediction)

    assert "🔒 Security Concerns" not in report
    assert "   • No major issues detected" in report


def test_missing_review_section():
    reporter = ReviewReporter()

    assert reporter.format_review(None) == "No review data available"
    assert reporter.format_review({"summary": "x"}) == "No review data available"


def test_empty_review():
    report = ReviewReporter("low").format_empty_review()

    assert "No specific issues found by PR-Agent" in report
    assert "Confidence level: low" in report


def test_summary_singular():
    lines = ReviewReporter().format_summary(1, False)

    assert "   • 1 key issue found" in lines

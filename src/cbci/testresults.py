"""Interpretation of the test results parser and the per-variant summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ParseOutcome(Enum):
    """What the parse script's exit code means."""

    PASSED = "passed"
    FAILURES = "failures"
    MISSING_RESULTS = "missing_results"
    UNEXPECTED = "unexpected"

    @classmethod
    def from_exit_code(cls, code: int) -> ParseOutcome:
        if code == 0:
            return cls.PASSED
        if code == 1:
            return cls.FAILURES
        if code == 2:
            return cls.MISSING_RESULTS
        return cls.UNEXPECTED

    @property
    def aborts(self) -> bool:
        """True if the step must fail. Test failures alone are reported, not fatal."""
        return self in (ParseOutcome.MISSING_RESULTS, ParseOutcome.UNEXPECTED)

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    ParseOutcome.PASSED: "All tests passed successfully",
    ParseOutcome.FAILURES: "Test failures detected but properly parsed",
    ParseOutcome.MISSING_RESULTS: "Could not find or access test results file",
    ParseOutcome.UNEXPECTED: "Unexpected error during test results parsing",
}


def _count(value: str | None) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


@dataclass
class TestSummary:
    """Counts reported by the parse script for one variant."""

    __test__ = False

    status: str
    total: int = 0
    passed: int = 0
    failed: int = 0
    failed_names: list[str] = field(default_factory=list)

    @classmethod
    def from_outputs(cls, outputs: dict[str, str]) -> TestSummary:
        """Build from the parse script's key=value outputs."""
        names = outputs.get("failed_test_names", "")
        return cls(
            status=outputs.get("status", ""),
            total=_count(outputs.get("total_tests")),
            passed=_count(outputs.get("passed_tests")),
            failed=_count(outputs.get("failed_tests")),
            failed_names=[n.strip() for n in names.split(",") if n.strip()],
        )

    @classmethod
    def skipped(cls) -> TestSummary:
        return cls(status="skipped")

    def as_outputs(self) -> dict[str, str]:
        return {
            "status": self.status,
            "total_tests": str(self.total),
            "passed_tests": str(self.passed),
            "failed_tests": str(self.failed),
            "failed_test_names": ",".join(self.failed_names),
        }


def _utc(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


def render_test_summary(variant: str, summary: TestSummary, end_time: datetime) -> list[str]:
    """Markdown closing a test job's summary."""
    if summary.status == "skipped":
        return ["## Test Results - SKIPPED", f"- End Time: {_utc(end_time)}"]

    lines = [
        "## Test Results",
        f"- End Time: {_utc(end_time)}",
        "### Test Execution Summary",
        "| Metric | Count |",
        "|--------|-------|",
        f"| Total Tests | {summary.total} |",
        f"| Passed Tests | {summary.passed} |",
        f"| Failed Tests | {summary.failed} |",
        "### Test Status",
    ]
    if summary.status == "passed":
        lines.append(f"✅ All {summary.total} tests passed successfully")
        return lines

    lines.append(f"⚠️ {summary.failed} of {summary.total} tests failed")
    if summary.failed_names:
        lines.extend(["", "### Failed Tests", "The following tests failed:"])
        lines.extend(f"* `{name}`" for name in summary.failed_names)
    return lines

"""The final pipeline report."""

from __future__ import annotations

from datetime import datetime

from .result import JobStatus


def _utc(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


def pipeline_failed(should_skip: bool, build: JobStatus, test: JobStatus) -> bool:
    """A pipeline that wasn't skipped failed unless both build and test succeeded."""
    if should_skip:
        return False
    return not (build is JobStatus.SUCCESS and test is JobStatus.SUCCESS)


def render_report(should_skip: bool, build: JobStatus, test: JobStatus, completed_at: datetime) -> list[str]:
    """Markdown lines of the report job's summary."""
    lines = ["# Apache Cloudberry Build Pipeline Report"]

    if should_skip:
        lines += [
            "## CI Skip Status",
            "✅ CI checks skipped via skip flag",
            f"- Completion Time: {_utc(completed_at)}",
        ]
        return lines

    lines += [
        "## Job Status",
        f"- Build Job: {build}",
        f"- Test Job: {test}",
        f"- Completion Time: {_utc(completed_at)}",
    ]

    if not pipeline_failed(should_skip, build, test):
        lines.append("✅ Pipeline completed successfully")
        return lines

    lines.append("⚠️ Pipeline completed with failures")
    if build is not JobStatus.SUCCESS:
        lines += ["### Build Job Failure", "Check build logs for details"]
    if test is not JobStatus.SUCCESS:
        lines += ["### Test Job Failure", "Check test logs and regression files for details"]
    return lines


def failure_notice(build: JobStatus, test: JobStatus, at: datetime) -> list[str]:
    """Console lines announcing a failed pipeline. The first one is meant for an error annotation."""
    return [
        "Build/Test pipeline failed! Check job summaries and logs for details",
        f"Timestamp: {_utc(at)}",
        f"Build Result: {build}",
        f"Test Result: {test}",
    ]

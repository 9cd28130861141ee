"""Helpers shared by the pipeline tasks."""

from __future__ import annotations

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from ..context import append_summary, out
from ..subprocess import run


def workspace_dir() -> Path:
    """The checked-out source tree: GITHUB_WORKSPACE on a runner, the current directory locally."""
    return Path(os.environ.get("GITHUB_WORKSPACE") or Path.cwd()).resolve()


def fresh_log_root(workspace: Path, name: str) -> Path:
    """The job's log directory under the workspace, emptied of logs an earlier job left there."""
    log_root = workspace / name
    if log_root.exists():
        shutil.rmtree(log_root)
    return log_root


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_stamp(moment: datetime | None = None) -> str:
    return (moment or utc_now()).strftime("%Y-%m-%d %H:%M:%S UTC")


def skip(message: str) -> None:
    """Record that a job did nothing because of the CI skip flag."""
    out(message)
    append_summary(message)


def log(log_file: Path, message: str) -> None:
    """Print a line and append it to a job log."""
    out(message)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(log_file, "a") as f:
        f.write(message + "\n")


def first_line_of(*args: str) -> str:
    """First line of a command's output, or "unknown" if it can't be run."""
    try:
        result = run(*args, capture=True)
    except FileNotFoundError:
        return "unknown"
    lines = result.stdout.strip().splitlines()
    return lines[0] if result.ok and lines else "unknown"


def os_description() -> str:
    release = Path("/etc/redhat-release")
    return release.read_text().strip() if release.exists() else "unknown"

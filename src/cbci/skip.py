"""Detection of CI skip markers in commit messages and pull request titles."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

from .context import dbg
from .subprocess import run

SKIP_PATTERN = re.compile(r"\[skip[ -]ci\]|\[ci[ -]skip\]|\[no[ -]ci\]")


def should_skip(text: str | None) -> bool:
    """
    True if `text` carries a skip marker anywhere.

    Markers are case-sensitive: "[skip ci]", "[skip-ci]", "[ci skip]",
    "[ci-skip]", "[no ci]" and "[no-ci]".

    Example:
        >>> should_skip("docs: fix typo [skip ci]")
        True
        >>> should_skip("[SKIP CI] release")
        False

    """
    if not text:
        return False
    return SKIP_PATTERN.search(text) is not None


def skip_message_from_event(event_name: str | None, event: dict[str, Any]) -> str:
    """The text to scan for a skip marker: the PR title, or the head commit message."""
    if event_name == "pull_request":
        value = (event.get("pull_request") or {}).get("title")
    else:
        value = (event.get("head_commit") or {}).get("message")
    return value or ""


def load_event_message() -> str:
    """
    Read the triggering event's message.

    Under GitHub Actions the event payload at GITHUB_EVENT_PATH is used. Locally
    the message of the last commit is used instead.
    """
    event_path = os.environ.get("GITHUB_EVENT_PATH")
    if event_path and Path(event_path).exists():
        event = json.loads(Path(event_path).read_text())
        return skip_message_from_event(os.environ.get("GITHUB_EVENT_NAME"), event)

    dbg("No event payload, reading the last commit message")
    result = run("git", "log", "-1", "--pretty=%B", capture=True)
    if result.failed:
        dbg(f"git log failed: {result.stderr.strip()}")
        return ""
    return result.stdout.strip()

"""Console output for cbci.

A single OutputManager formats automation, job and step output:

- Tree-style headers and statuses with rich styling (local mode)
- ``::group::`` markers and ``::error::`` annotations (GitHub Actions)
- Consistent symbols and timing display
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

from rich.console import Console

SYMBOLS = {
    "entry": "▼",  # Top-level entry point (▼)
    "branch": "├─▶",  # Sequential item (├─▶)
    "last": "└─▶",  # Last item (└─▶)
    "pipe": "│",  # Continuation line (│)
    "parallel_start": "⊕─┬─▶",  # Parallel fork (⊕─┬─▶)
    "parallel_branch": "│ ├─▶",  # Parallel item (│ ├─▶)
    "parallel_last": "│ └─▶",  # Last parallel item (│ └─▶)
    "success": "✓",  # Success (✓)
    "failure": "✗",  # Failure (✗)
    "skipped": "⊘",  # Skipped (⊘)
}

COLORS = {
    "name": "bold",
    "success": "green",
    "success_bold": "bold green",
    "failure": "red",
    "failure_bold": "bold red",
    "skipped": "yellow",
    "header": "bold cyan",
    "automation": "bold blue",
    "dim": "dim",
}

# Marker a nested task prints before its name so the parent can restyle the line
SUBTASK_MARKER = "§ "

CONTINUATION_PREFIX = f"{SYMBOLS['pipe']}    "
LAST_PREFIX = "     "
PARALLEL_PREFIX = f"{SYMBOLS['pipe']} "


def prefix_lines(text: str, prefix: str) -> str:
    """Prefix every line of `text`."""
    return "\n".join(f"{prefix}{line}" for line in text.split("\n"))


def prefix_task_output(text: str) -> str:
    """Indent captured task output under its task header."""
    lines = text.rstrip("\n").split("\n")
    result = []
    for line in lines:
        if line.startswith(SUBTASK_MARKER):
            result.append(f"{SYMBOLS['branch']} {line[len(SUBTASK_MARKER) :]}")
        else:
            result.append(f"{CONTINUATION_PREFIX}{line}")
    return "\n".join(result)


def print_task_output_styled(text: str, console: Console) -> None:
    """Print prefixed task output, styling the tree symbols."""
    for line in text.split("\n"):
        if line.startswith(SYMBOLS["branch"]):
            console.print(line, style=COLORS["header"], markup=False, highlight=False)
        else:
            console.print(line, markup=False, highlight=False)


def _make_console() -> Console:
    # Rich ignores NO_COLOR when force_terminal is set, so only force when asked to
    if os.environ.get("NO_COLOR"):
        return Console(no_color=True, highlight=False)
    if os.environ.get("FORCE_COLOR"):
        return Console(force_terminal=True, highlight=False)
    return Console(highlight=False)


@dataclass
class OutputManager:
    """
    Centralized output formatting for cbci.

    Job output is captured by the executor and printed here with the parent's
    prefix, so nesting composes without the children knowing their depth.
    """

    console: Console = field(default_factory=_make_console)
    _is_gha: bool = field(default_factory=lambda: os.environ.get("GITHUB_ACTIONS") == "true")

    @property
    def in_gha(self) -> bool:
        """Whether running in GitHub Actions."""
        return self._is_gha

    @property
    def colors_enabled(self) -> bool:
        return self.console.is_terminal and not self.console.no_color

    def print(self, message: str, style: str | None = None, end: str = "\n") -> None:
        self.console.print(message, style=style, end=end, markup=False, highlight=False)

    def automation_header(self, name: str) -> None:
        if self._is_gha:
            print(f"::group::{name}", flush=True)
            return
        self.print(f"\n{SYMBOLS['entry']} {name}", style=COLORS["automation"])
        self.print(SYMBOLS["pipe"])

    def automation_status(self, name: str, success: bool, elapsed: float, job_count: int) -> None:
        if self._is_gha:
            print("::endgroup::", flush=True)
        if success:
            self.print(
                f"\n{SYMBOLS['success']} {name} completed in {elapsed:.2f}s ({job_count} jobs)",
                style=COLORS["success_bold"],
            )
        else:
            self.print(f"\n{SYMBOLS['failure']} {name} failed in {elapsed:.2f}s", style=COLORS["failure_bold"])

    def parallel_header(self, names: list[str]) -> None:
        self.print(f"{SYMBOLS['parallel_start']} Running in parallel: {', '.join(names)}", style=COLORS["header"])

    def job_header(self, name: str, *, is_last: bool = False, prefix: str = "") -> None:
        symbol = SYMBOLS["last"] if is_last else SYMBOLS["branch"]
        self.print(f"{prefix}{symbol} {name}", style=COLORS["header"])

    def continuation_prefix(self, is_last: bool) -> str:
        return LAST_PREFIX if is_last else CONTINUATION_PREFIX

    def job_output(self, text: str, prefix: str) -> None:
        if text:
            self.print(prefix_lines(text.rstrip("\n"), prefix))

    def job_status(self, status: str, elapsed: float, *, prefix: str = "", detail: str | None = None) -> None:
        """Print a job's terminal status line."""
        if status == "success":
            symbol, style = SYMBOLS["success"], COLORS["success"]
        elif status == "skipped":
            symbol, style = SYMBOLS["skipped"], COLORS["skipped"]
        else:
            symbol, style = SYMBOLS["failure"], COLORS["failure"]
        suffix = f" ({detail})" if detail else ""
        self.print(f"{prefix}{symbol} {status} in {elapsed:.2f}s{suffix}", style=style)

    def job_outputs(self, outputs: dict[str, str], prefix: str) -> None:
        for key, value in outputs.items():
            self.print(f"{prefix}output: {key}={value}", style=COLORS["dim"])

    def error(self, message: str) -> None:
        """Print an error annotation."""
        if self._is_gha:
            print(f"::error::{message}", flush=True)
        else:
            self.print(f"Error: {message}", style=COLORS["failure_bold"])

    def warning(self, message: str) -> None:
        """Print a warning annotation."""
        if self._is_gha:
            print(f"::warning::{message}", flush=True)
        else:
            self.print(f"Warning: {message}", style=COLORS["skipped"])

    def group_start(self, name: str) -> None:
        if self._is_gha:
            print(f"::group::{name}", flush=True)
        else:
            self.print(f"[{name}]", style=COLORS["dim"])

    def group_end(self) -> None:
        if self._is_gha:
            print("::endgroup::", flush=True)


# Global output manager instance
_output_manager: OutputManager | None = None


def get_output_manager() -> OutputManager:
    """Get the global output manager instance."""
    global _output_manager
    if _output_manager is None:
        _output_manager = OutputManager()
    return _output_manager


def reset_output_manager() -> None:
    """Reset the global output manager (for testing)."""
    global _output_manager
    _output_manager = None


def annotate_error(message: str) -> None:
    """Emit a user-visible error line (an ``::error::`` annotation under GitHub Actions)."""
    sys.stdout.flush()
    get_output_manager().error(message)


def annotate_warning(message: str) -> None:
    """Emit a user-visible warning line."""
    sys.stdout.flush()
    get_output_manager().warning(message)

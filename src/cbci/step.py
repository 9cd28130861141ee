"""Steps within a job.

This module provides:

- `step()`, a context manager that groups output (``::group::`` in GitHub
  Actions, a bracketed header locally)
- `StepRunner`, which runs a job's steps with the orchestrator's semantics:
  once a step fails, later steps are skipped unless they are marked
  ``always``; the job result reflects the first failure.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Literal

from .output import annotate_error, get_output_manager
from .result import Err, Ok, Result
from .subprocess import SubprocessError


class StepFailure(Exception):
    """
    A step failed with a user-facing message.

    The message is what ends up in the error annotation, e.g. "Build script failed".
    """


@contextmanager
def step(name: str) -> Generator[None, None, None]:
    """
    Context manager for visual output grouping.

    Example:
        with step("Configure Apache Cloudberry"):
            run_cloudberry_script("configure-cloudberry.sh", ...)

    """
    mgr = get_output_manager()
    mgr.group_start(name)
    try:
        yield
    finally:
        mgr.group_end()


StepOutcome = Literal["success", "failure", "skipped"]


@dataclass
class StepRecord:
    """What happened to one step."""

    name: str
    outcome: StepOutcome
    elapsed_seconds: float = 0.0
    error: str | None = None
    continued: bool = False

    @property
    def conclusion(self) -> StepOutcome:
        """Outcome after continue-on-error is applied."""
        return "success" if self.continued else self.outcome


@dataclass
class StepRunner:
    """
    Runs the steps of one job in order.

    Usage:
        steps = StepRunner()
        steps.run("Configure", configure)
        steps.run("Build", build)
        steps.run("Summary", write_summary, always=True)
        return steps.finish()

    """

    records: list[StepRecord] = field(default_factory=list)
    _failure: StepRecord | None = None

    @property
    def failed(self) -> bool:
        """True once any step has failed (ignoring continue-on-error steps)."""
        return self._failure is not None

    def run(
        self,
        name: str,
        fn: Callable[[], Any],
        *,
        always: bool = False,
        continue_on_error: bool = False,
    ) -> Any:
        """
        Run one step and return its value, or None if it failed or was skipped.

        StepFailure and SubprocessError mark the step failed and emit an error
        annotation. Any other exception is a bug and propagates.
        """
        if self.failed and not always:
            self.records.append(StepRecord(name=name, outcome="skipped"))
            return None

        start = time.perf_counter()
        value: Any = None
        error: str | None = None
        with step(name):
            try:
                value = fn()
            except StepFailure as e:
                error = str(e)
            except SubprocessError as e:
                error = f"{e}"
            if error is not None:
                annotate_error(error)

        record = StepRecord(
            name=name,
            outcome="failure" if error is not None else "success",
            elapsed_seconds=time.perf_counter() - start,
            error=error,
            continued=continue_on_error and error is not None,
        )
        self.records.append(record)
        if record.conclusion == "failure" and self._failure is None:
            self._failure = record
        return value

    def finish(self) -> Result[list[StepRecord]]:
        """Result for the whole job: Ok unless a step failed."""
        if self._failure is not None:
            return Err(f"{self._failure.name} failed: {self._failure.error}")
        return Ok(self.records)

"""Task decorator for cbci."""

from __future__ import annotations

import functools
import inspect
import io
import sys
import time
import traceback
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, ParamSpec, Protocol, TypeVar, cast, overload

from .artifacts import ArtifactDecl, artifact_output_name
from .context import (
    TaskContext,
    decrement_task_depth,
    get_context,
    in_github_actions,
    increment_task_depth,
    set_context,
)
from .result import Err, Ok, Result

P = ParamSpec("P")
T = TypeVar("T")


class TaskWrapper(Protocol[P, T]):
    """
    Protocol describing a task-decorated function.

    Task wrappers are callable and return Result[T] when executed.
    """

    _task_info: TaskInfo

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> Result[T]: ...


@dataclass
class SetupStep:
    """
    A workflow step that prepares the runner before the task runs.

    Exactly one of `uses` (an action) or `run` (a shell command) is set.
    Gated steps carry the job's gate as their `if:`. Steps the ungated
    `cbci` run step depends on must set `gated=False`.
    """

    name: str
    uses: str | None = None
    with_: dict[str, Any] | None = None
    run: str | None = None
    gated: bool = True

    def __post_init__(self) -> None:
        if (self.uses is None) == (self.run is None):
            raise ValueError(f"SetupStep '{self.name}' needs exactly one of uses= or run=")


def setup_uv(version: str = "latest") -> SetupStep:
    """Install uv, which provisions the interpreter `cbci` runs on."""
    return SetupStep(name="Set up uv", uses="astral-sh/setup-uv@v5", with_={"version": version}, gated=False)



@dataclass
class TaskInfo:
    """Metadata about a task."""

    name: str
    module: str
    fn: Callable[..., Any]  # The wrapped function (with context/exception handling)
    original_fn: Callable[..., Any]
    signature: inspect.Signature
    doc: str | None

    outputs: list[str] = field(default_factory=list)
    artifacts: list[ArtifactDecl] = field(default_factory=list)
    setup: list[SetupStep] | None = None

    @property
    def full_name(self) -> str:
        """Full qualified name of the task."""
        return f"{self.module}:{self.name}"

    @property
    def cli_name(self) -> str:
        """Command name on the CLI (kebab-case)."""
        return self.name.replace("_", "-")

    @property
    def artifact_decls(self) -> dict[str, ArtifactDecl]:
        return {a.key: a for a in self.artifacts}

    @property
    def all_outputs(self) -> list[str]:
        """Declared outputs plus the name outputs of every declared artifact."""
        return self.outputs + [artifact_output_name(a.key) for a in self.artifacts]


def _is_method_signature(fn: Callable[..., Any]) -> bool:
    """Check if a function signature indicates it's a method (first param is 'self')."""
    params = list(inspect.signature(fn).parameters.keys())
    return len(params) > 0 and params[0] == "self"


def _normalize_artifacts(artifacts: Sequence[ArtifactDecl | str] | None) -> list[ArtifactDecl]:
    decls = [a if isinstance(a, ArtifactDecl) else ArtifactDecl(key=a) for a in artifacts or []]
    keys = [d.key for d in decls]
    duplicates = {k for k in keys if keys.count(k) > 1}
    if duplicates:
        raise ValueError(f"Duplicate artifact keys: {sorted(duplicates)}")
    return decls


@overload
def task(fn: Callable[P, Result[T]]) -> TaskWrapper[P, T]: ...


@overload
def task(
    *,
    outputs: list[str] | None = None,
    artifacts: Sequence[ArtifactDecl | str] | None = None,
    setup: list[SetupStep] | None = None,
) -> Callable[[Callable[P, Result[T]]], TaskWrapper[P, T]]: ...


def task(
    fn: Callable[P, Result[T]] | None = None,
    *,
    outputs: list[str] | None = None,
    artifacts: Sequence[ArtifactDecl | str] | None = None,
    setup: list[SetupStep] | None = None,
) -> TaskWrapper[P, T] | Callable[[Callable[P, Result[T]]], TaskWrapper[P, T]]:
    """
    Decorator to mark a function as a cbci task.

    The decorated function:
    - Gets automatic context management
    - Has exceptions caught and converted to Err results

    Args:
        outputs: Output names this task can set via set_output().
        artifacts: Artifacts this task can publish via save_artifact().
        setup: Workflow steps to run before the task (overrides app-level defaults).

    Usage:
        @task(outputs=["should_skip"])
        def check_skip(*, message: str | None = None) -> Result[None]:
            cbci.set_output("should_skip", "true")
            return Ok(None)

        result = check_skip(message="[skip ci] docs")  # Returns Result[None]

    """

    def decorator(fn: Callable[P, Result[T]]) -> TaskWrapper[P, T]:
        if _is_method_signature(fn):
            raise TypeError(
                f"@task cannot be used on methods (found 'self' parameter in {fn.__name__}). "
                f"Define tasks as standalone functions instead."
            )

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T]:
            return _run_with_context(info, fn, args, kwargs)

        info = TaskInfo(
            name=fn.__name__,
            module=fn.__module__,
            fn=wrapper,
            original_fn=fn,
            signature=inspect.signature(fn),
            doc=fn.__doc__,
            outputs=outputs or [],
            artifacts=_normalize_artifacts(artifacts),
            setup=setup,
        )

        wrapper._task_info = info  # type: ignore[attr-defined]

        return cast(TaskWrapper[P, T], wrapper)

    if fn is not None:
        return decorator(fn)
    return decorator


def _execute_task(fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Result[Any]:
    """Execute a task function, catching exceptions."""
    try:
        result = fn(*args, **kwargs)
        if not isinstance(result, Result):
            return Ok(result)
        return result
    except Exception as e:
        tb = traceback.format_exc()
        return Err(f"{type(e).__name__}: {e}", traceback=tb)


def _run_with_context(
    task_info: TaskInfo, fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]
) -> Result[Any]:
    """
    Execute a task with context management and tree-style output.

    A top-level task streams its output directly; builds run for a long time
    and annotations must start at the beginning of a line. A task called from
    inside another task has its output captured and indented under its name.
    """
    from rich.console import Console

    from .output import COLORS, SUBTASK_MARKER, SYMBOLS, prefix_task_output, print_task_output_styled

    existing_ctx = get_context()
    task_name = task_info.name
    start_time = time.perf_counter()
    console = Console(highlight=False)

    increment_task_depth()
    is_nested = existing_ctx is not None
    capture = is_nested and not in_github_actions()

    if is_nested:
        print(f"{SUBTASK_MARKER}{task_name}", flush=True)

    ctx = TaskContext(
        task_name=task_name,
        declared_outputs=task_info.outputs,
        declared_artifacts=task_info.artifact_decls,
    )

    # Nested tasks share the outer context so their outputs land on the job
    should_set_context = existing_ctx is None
    if should_set_context:
        set_context(ctx)

    try:
        if capture:
            buffer = io.StringIO()
            old_stdout, old_stderr = sys.stdout, sys.stderr
            sys.stdout = sys.stderr = buffer
            try:
                result = _execute_task(fn, args, kwargs)
            finally:
                sys.stdout, sys.stderr = old_stdout, old_stderr
            captured_output = buffer.getvalue()
            if captured_output:
                print_task_output_styled(prefix_task_output(captured_output), console)
        else:
            result = _execute_task(fn, args, kwargs)

        if not result.ok and result.error and is_nested:
            error_lines = str(result.error).split("\n")[:5]
            print_task_output_styled(prefix_task_output("\n".join(error_lines)), console)

        if is_nested:
            elapsed = time.perf_counter() - start_time
            symbol = SYMBOLS["success"] if result.ok else SYMBOLS["failure"]
            status = "succeeded" if result.ok else "failed"
            style = COLORS["success_bold"] if result.ok else COLORS["failure_bold"]
            console.print(f"{symbol} {task_name} {status} in {elapsed:.2f}s", style=style, markup=False)

        if should_set_context:
            result = _attach_context_to_result(result, ctx)

        return result
    finally:
        decrement_task_depth()
        if should_set_context:
            set_context(None)


def _attach_context_to_result(result: Result[Any], ctx: TaskContext) -> Result[Any]:
    """Attach outputs and artifacts from context to the result."""
    if ctx.task_outputs or ctx.task_artifacts:
        object.__setattr__(result, "_outputs", ctx.task_outputs.copy())
        object.__setattr__(result, "_artifacts", ctx.task_artifacts.copy())
    return result

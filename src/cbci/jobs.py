"""Job-based pipeline declaration.

Each task maps to a workflow job, and an automation wires jobs together:

- Dependencies are inferred from output, result and artifact references
- Conditions map to job-level ``if:`` expressions and evaluate locally
- A matrix fans a job out into independent variants

Example:
    @cbci.automation(trigger=on_push(branches=["main"]))
    def pipeline() -> None:
        check = cbci.job(check_skip, job_id="check-skip")
        build_job = cbci.job(
            build,
            inputs={"should_skip": check.get("should_skip")},
            gate=check.get("should_skip").ne("true"),
        )

"""

from __future__ import annotations

import functools
import inspect
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, overload

if TYPE_CHECKING:
    from .artifacts import ArtifactDecl
    from .task import SetupStep, TaskInfo, TaskWrapper


def _format_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f"'{value}'"
    return str(value)


def _compare(actual: Any, op: str, expected: Any) -> bool:
    # Expression comparisons in workflows are string-typed for outputs
    if isinstance(expected, bool):
        expected = "true" if expected else "false"
    if isinstance(actual, bool):
        actual = "true" if actual else "false"
    if op == "==":
        return actual == expected
    if op == "!=":
        return actual != expected
    raise ValueError(f"Unknown operator: {op}")


# =============================================================================
# Condition Expressions (for job-level and step-level if:)
# =============================================================================


class ConditionExpr:
    """Base class for condition expressions.

    Conditions can be combined with & (and), | (or), and ~ (not).
    They map to `if:` expressions and can be evaluated for local runs against a
    context shaped like the workflow expression contexts::

        {
            "github": {"event_name": "push", ...},
            "needs": {"build": {"result": "success", "outputs": {...}}},
            "job": {"status": "success"},   # success | failure | cancelled
        }

    """

    def __and__(self, other: ConditionExpr) -> AndCondition:
        return AndCondition(self, other)

    def __or__(self, other: ConditionExpr) -> OrCondition:
        return OrCondition(self, other)

    def __invert__(self) -> NotCondition:
        return NotCondition(self)

    def __bool__(self) -> bool:
        """Raise error - expressions can't be used in Python control flow."""
        raise TypeError(
            "Condition expressions cannot be used in Python control flow.\n"
            "Use job(..., condition=expr) to set job conditions."
        )

    def to_gha_expr(self) -> str:
        """Convert to GitHub Actions expression syntax."""
        raise NotImplementedError

    def evaluate(self, context: dict[str, Any]) -> bool:
        """Evaluate the condition given runtime context."""
        raise NotImplementedError

    def has_status_check(self) -> bool:
        """True if the expression calls a status function such as always()."""
        return False

    def referenced_jobs(self) -> set[str]:
        """IDs of jobs whose outputs or results the expression reads."""
        return set()


@dataclass(eq=False)
class GitHubCondition(ConditionExpr):
    """Condition referencing the `github` context."""

    context_path: str  # e.g., "github.ref_name", "github.event_name"
    op: str | None = None
    value: Any = None

    def eq(self, value: Any) -> GitHubCondition:
        return GitHubCondition(self.context_path, "==", value)

    def ne(self, value: Any) -> GitHubCondition:
        return GitHubCondition(self.context_path, "!=", value)

    def to_gha_expr(self) -> str:
        if self.op is None:
            return self.context_path
        return f"{self.context_path} {self.op} {_format_literal(self.value)}"

    def evaluate(self, context: dict[str, Any]) -> bool:
        value: Any = context
        for part in self.context_path.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if self.op is None:
            return bool(value)
        return _compare(value, self.op, self.value)

    def __repr__(self) -> str:
        if self.op:
            return f"({self.context_path} {self.op} {self.value!r})"
        return self.context_path


@dataclass(eq=False)
class OutputCondition(ConditionExpr):
    """Condition comparing another job's output to a literal."""

    job_id: str
    output_name: str
    op: str
    value: Any

    def to_gha_expr(self) -> str:
        return f"needs.{self.job_id}.outputs.{self.output_name} {self.op} {_format_literal(self.value)}"

    def evaluate(self, context: dict[str, Any]) -> bool:
        outputs = context.get("needs", {}).get(self.job_id, {}).get("outputs", {})
        return _compare(outputs.get(self.output_name, ""), self.op, self.value)

    def referenced_jobs(self) -> set[str]:
        return {self.job_id}

    def __repr__(self) -> str:
        return f"({self.job_id}.{self.output_name} {self.op} {self.value!r})"


_STATUS_FUNCTIONS = ("always", "success", "failure", "cancelled")


@dataclass(eq=False)
class StatusCondition(ConditionExpr):
    """A status function: always(), success(), failure() or cancelled()."""

    function: str

    def __post_init__(self) -> None:
        if self.function not in _STATUS_FUNCTIONS:
            raise ValueError(f"Unknown status function '{self.function}'. Expected one of: {_STATUS_FUNCTIONS}")

    def to_gha_expr(self) -> str:
        return f"{self.function}()"

    def evaluate(self, context: dict[str, Any]) -> bool:
        status = context.get("job", {}).get("status", "success")
        if self.function == "always":
            return True
        if self.function == "success":
            return status == "success"
        if self.function == "failure":
            return status == "failure"
        return status == "cancelled"

    def has_status_check(self) -> bool:
        return True

    def __repr__(self) -> str:
        return self.to_gha_expr()


def always() -> StatusCondition:
    """Run regardless of the outcome of the needed jobs (or earlier steps)."""
    return StatusCondition("always")


def success() -> StatusCondition:
    return StatusCondition("success")


def failure() -> StatusCondition:
    return StatusCondition("failure")


def cancelled() -> StatusCondition:
    return StatusCondition("cancelled")


def _wrap(expr: ConditionExpr) -> str:
    text = expr.to_gha_expr()
    if isinstance(expr, (AndCondition, OrCondition)):
        return f"({text})"
    return text


@dataclass(eq=False)
class AndCondition(ConditionExpr):
    """Logical AND of two conditions."""

    left: ConditionExpr
    right: ConditionExpr

    def to_gha_expr(self) -> str:
        return f"{_wrap(self.left)} && {_wrap(self.right)}"

    def evaluate(self, context: dict[str, Any]) -> bool:
        return self.left.evaluate(context) and self.right.evaluate(context)

    def has_status_check(self) -> bool:
        return self.left.has_status_check() or self.right.has_status_check()

    def referenced_jobs(self) -> set[str]:
        return self.left.referenced_jobs() | self.right.referenced_jobs()

    def __repr__(self) -> str:
        return f"({self.left!r} & {self.right!r})"


@dataclass(eq=False)
class OrCondition(ConditionExpr):
    """Logical OR of two conditions."""

    left: ConditionExpr
    right: ConditionExpr

    def to_gha_expr(self) -> str:
        return f"{_wrap(self.left)} || {_wrap(self.right)}"

    def evaluate(self, context: dict[str, Any]) -> bool:
        return self.left.evaluate(context) or self.right.evaluate(context)

    def has_status_check(self) -> bool:
        return self.left.has_status_check() or self.right.has_status_check()

    def referenced_jobs(self) -> set[str]:
        return self.left.referenced_jobs() | self.right.referenced_jobs()

    def __repr__(self) -> str:
        return f"({self.left!r} | {self.right!r})"


@dataclass(eq=False)
class NotCondition(ConditionExpr):
    """Logical NOT of a condition."""

    operand: ConditionExpr

    def to_gha_expr(self) -> str:
        return f"!({self.operand.to_gha_expr()})"

    def evaluate(self, context: dict[str, Any]) -> bool:
        return not self.operand.evaluate(context)

    def has_status_check(self) -> bool:
        return self.operand.has_status_check()

    def referenced_jobs(self) -> set[str]:
        return self.operand.referenced_jobs()

    def __repr__(self) -> str:
        return f"(~{self.operand!r})"


class _GitHubContext:
    """Namespace for `github` context references used in conditions."""

    @property
    def event_name(self) -> GitHubCondition:
        """The event that triggered the workflow (e.g., 'push', 'pull_request')."""
        return GitHubCondition("github.event_name")

    @property
    def ref(self) -> GitHubCondition:
        """The full ref (e.g., 'refs/heads/main')."""
        return GitHubCondition("github.ref")

    @property
    def ref_name(self) -> GitHubCondition:
        """The short ref name (e.g., 'main')."""
        return GitHubCondition("github.ref_name")

    @property
    def repository(self) -> GitHubCondition:
        """The repository name (e.g., 'owner/repo')."""
        return GitHubCondition("github.repository")


github = _GitHubContext()


# =============================================================================
# Reference Types (for dependency tracking)
# =============================================================================


@dataclass(frozen=True)
class JobOutputRef:
    """Reference to a job's output value.

    Created by JobSpec.get(output_name). Used in another job's inputs, it adds
    an implicit dependency and renders as ``${{ needs.<job>.outputs.<name> }}``.
    """

    job_id: str
    output_name: str

    def __repr__(self) -> str:
        return f"JobOutputRef({self.job_id}.{self.output_name})"

    def to_gha_expr(self) -> str:
        return f"${{{{ needs.{self.job_id}.outputs.{self.output_name} }}}}"

    def eq(self, value: Any) -> OutputCondition:
        return OutputCondition(self.job_id, self.output_name, "==", value)

    def ne(self, value: Any) -> OutputCondition:
        return OutputCondition(self.job_id, self.output_name, "!=", value)


@dataclass(frozen=True)
class JobResultRef:
    """Reference to a job's terminal result (success, failure, cancelled or skipped)."""

    job_id: str

    def __repr__(self) -> str:
        return f"JobResultRef({self.job_id})"

    def to_gha_expr(self) -> str:
        return f"${{{{ needs.{self.job_id}.result }}}}"


@dataclass(frozen=True)
class ArtifactRef:
    """Reference to an artifact another job publishes under a fixed name.

    Used in a job's inputs, it adds an implicit dependency, a download step
    into `dest` before the task runs, and passes `dest` as the input value.
    """

    job_id: str
    key: str
    artifact_name: str
    dest: str

    def __repr__(self) -> str:
        return f"ArtifactRef({self.job_id}.{self.key} -> {self.dest})"


@dataclass(frozen=True)
class MatrixRef:
    """Reference to the current matrix combination's value (dotted keys allowed)."""

    key: str

    def __repr__(self) -> str:
        return f"MatrixRef({self.key})"

    def to_gha_expr(self) -> str:
        return f"${{{{ matrix.{self.key} }}}}"

    def resolve(self, combination: dict[str, Any]) -> Any:
        value: Any = combination
        for part in self.key.split("."):
            if not isinstance(value, dict) or part not in value:
                raise KeyError(f"Matrix key '{self.key}' not found in {combination}")
            value = value[part]
        return value


# =============================================================================
# Job configuration
# =============================================================================


@dataclass
class Matrix:
    """
    Matrix strategy for a job.

    `values` holds the varying dimensions, `include` adds keys to matching
    combinations (or new combinations when nothing matches).
    """

    values: dict[str, list[Any]]
    include: list[dict[str, Any]] = field(default_factory=list)
    fail_fast: bool = True

    def to_gha_dict(self) -> dict[str, Any]:
        matrix: dict[str, Any] = dict(self.values)
        if self.include:
            matrix["include"] = self.include
        return {"fail-fast": self.fail_fast, "matrix": matrix}

    def expand(self) -> list[dict[str, Any]]:
        """Concrete combinations, following the workflow `include` rules."""
        keys = list(self.values)
        combos: list[dict[str, Any]] = [
            dict(zip(keys, product, strict=True)) for product in itertools.product(*self.values.values())
        ]
        if not keys:
            combos = []
        base_count = len(combos)

        for entry in self.include:
            matched = False
            for combo in combos[:base_count]:
                if all(combo[k] == v for k, v in entry.items() if k in keys):
                    extra = {k: v for k, v in entry.items() if k not in keys}
                    if all(k not in combo or combo[k] == v for k, v in extra.items()):
                        combo.update(extra)
                        matched = True
            if not matched:
                combos.append(dict(entry))
        return combos


@dataclass(frozen=True)
class Container:
    """Container a job's steps run in."""

    image: str
    options: str | None = None

    def to_gha_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"image": self.image}
        if self.options:
            d["options"] = self.options
        return d


@dataclass(frozen=True)
class Concurrency:
    """Workflow concurrency group."""

    group: str
    cancel_in_progress: bool = False

    def to_gha_dict(self) -> dict[str, Any]:
        return {"group": self.group, "cancel-in-progress": self.cancel_in_progress}


# =============================================================================
# JobSpec - represents a job in an automation
# =============================================================================


@dataclass
class JobSpec:
    """Specification for a job within an automation.

    Created by cbci.job(). Tracks the task, inputs, dependencies and runner
    configuration for workflow generation and local execution.
    """

    job_id: str
    task_info: TaskInfo
    inputs: dict[str, Any] = field(default_factory=dict)
    needs: list[JobSpec] = field(default_factory=list)
    runs_on: str = "ubuntu-latest"
    matrix: Matrix | None = None
    condition: ConditionExpr | None = None
    gate: ConditionExpr | None = None
    """Condition applied to every setup, download and upload step of the job."""
    name: str | None = None
    container: Container | None = None
    timeout_minutes: int | None = None
    env: dict[str, str] = field(default_factory=dict)
    setup: list[SetupStep] | None = None

    _inferred_deps: list[JobSpec] = field(default_factory=list, repr=False)

    @property
    def display_name(self) -> str:
        return self.name or self.job_id

    def get(self, output_name: str) -> JobOutputRef:
        """Reference an output of this job.

        Raises:
            ValueError: If output_name is not among the task's declared outputs

        """
        if output_name not in self.task_info.all_outputs:
            available = ", ".join(self.task_info.all_outputs) or "(none)"
            raise ValueError(
                f"Task '{self.task_info.name}' has no output '{output_name}'. Declared outputs: {available}"
            )
        return JobOutputRef(self.job_id, output_name)

    def result(self) -> JobResultRef:
        """Reference this job's terminal result."""
        return JobResultRef(self.job_id)

    def artifact(self, key: str, dest: str | None = None) -> ArtifactRef:
        """Reference an artifact of this job for download into `dest`.

        Raises:
            ValueError: If the artifact is not declared, or its name is chosen at run time

        """
        decl: ArtifactDecl | None = self.task_info.artifact_decls.get(key)
        if decl is None:
            available = ", ".join(self.task_info.artifact_decls) or "(none)"
            raise ValueError(f"Task '{self.task_info.name}' has no artifact '{key}'. Declared artifacts: {available}")
        if decl.name is None:
            raise ValueError(
                f"Artifact '{key}' of task '{self.task_info.name}' is named at run time and cannot be downloaded "
                f"by another job. Give it a fixed name."
            )
        return ArtifactRef(self.job_id, key, decl.name, dest or key)

    def get_all_dependencies(self) -> list[JobSpec]:
        """All dependencies (explicit + inferred), in declaration order."""
        seen = set()
        all_deps = []
        for dep in self.needs + self._inferred_deps:
            if dep.job_id not in seen:
                seen.add(dep.job_id)
                all_deps.append(dep)
        return all_deps

    def artifact_inputs(self) -> list[ArtifactRef]:
        return [v for v in self.inputs.values() if isinstance(v, ArtifactRef)]

    def __repr__(self) -> str:
        return f"JobSpec({self.job_id})"


# Registry mapping job_id -> JobSpec (for reference resolution)
_job_registry: dict[str, JobSpec] = {}


def _clear_job_registry() -> None:
    _job_registry.clear()


def job(
    task: TaskWrapper[..., Any],
    *,
    inputs: dict[str, Any] | None = None,
    needs: list[JobSpec] | None = None,
    runs_on: str = "ubuntu-latest",
    matrix: Matrix | None = None,
    condition: ConditionExpr | None = None,
    gate: ConditionExpr | None = None,
    job_id: str | None = None,
    name: str | None = None,
    container: Container | None = None,
    timeout_minutes: int | None = None,
    env: dict[str, str] | None = None,
    setup: list[SetupStep] | None = None,
) -> JobSpec:
    """Create a job specification for an automation.

    This function can only be called inside an @automation-decorated function.

    Args:
        task: The task to run (must be @task decorated)
        inputs: Input values for the task (can include refs to other jobs or the matrix)
        needs: Explicit dependencies on other jobs
        runs_on: Runner specification
        matrix: Matrix strategy for fanning the job out
        condition: Condition expression for the job-level if:
        gate: Condition for the job's setup, download and upload steps
        job_id: Custom job ID (default: task name)
        name: Display name of the job
        container: Container the job runs in
        timeout_minutes: Job timeout
        env: Job-level environment variables
        setup: Setup steps (overrides the task's and the app's)

    Raises:
        RuntimeError: If called outside an @automation function
        TypeError: If task is not a @task-decorated function
        ValueError: On duplicate job IDs or references to unknown jobs

    """
    from .context import get_automation_context

    ctx = get_automation_context()
    if ctx is None:
        raise RuntimeError("job() can only be called inside an @automation-decorated function.")

    task_info = getattr(task, "_task_info", None)
    if task_info is None:
        raise TypeError(f"job() requires a @task-decorated function, got {type(task).__name__}")

    actual_job_id = job_id or task_info.name

    if actual_job_id in _job_registry:
        raise ValueError(
            f"Duplicate job_id '{actual_job_id}'. Each job must have a unique ID. "
            f"Use job_id='...' to specify a custom ID."
        )

    unknown = set(inputs or {}) - set(task_info.signature.parameters)
    if unknown:
        raise ValueError(f"Task '{task_info.name}' has no parameter(s): {', '.join(sorted(unknown))}")

    job_spec = JobSpec(
        job_id=actual_job_id,
        task_info=task_info,
        inputs=inputs or {},
        needs=needs or [],
        runs_on=runs_on,
        matrix=matrix,
        condition=condition,
        gate=gate,
        name=name,
        container=container,
        timeout_minutes=timeout_minutes,
        env=env or {},
        setup=setup,
    )

    _infer_dependencies(job_spec)

    _job_registry[job_spec.job_id] = job_spec
    ctx.add_job(job_spec)

    return job_spec


def _infer_dependencies(job_spec: JobSpec) -> None:
    """Infer dependencies from references in inputs, the condition and the gate."""
    referenced: list[str] = []
    for value in job_spec.inputs.values():
        if isinstance(value, (JobOutputRef, JobResultRef, ArtifactRef)):
            referenced.append(value.job_id)
    for expr in (job_spec.condition, job_spec.gate):
        if expr is not None:
            referenced.extend(sorted(expr.referenced_jobs()))

    inferred: list[JobSpec] = []
    for ref_job_id in referenced:
        dep_job = _job_registry.get(ref_job_id)
        if dep_job is None:
            raise ValueError(
                f"Job '{job_spec.job_id}' references unknown job '{ref_job_id}'. "
                f"Make sure the job is created before referencing it."
            )
        if dep_job not in inferred:
            inferred.append(dep_job)

    job_spec._inferred_deps = inferred


def topological_levels(jobs: list[JobSpec]) -> list[list[JobSpec]]:
    """
    Group jobs into dependency levels.

    Every job appears after all of its dependencies; jobs in the same level are
    independent of each other. Declaration order is kept within a level.

    Raises:
        ValueError: If there's a dependency cycle

    """
    job_ids = {j.job_id for j in jobs}
    in_degree: dict[str, int] = {j.job_id: 0 for j in jobs}
    dependents: dict[str, list[str]] = {j.job_id: [] for j in jobs}

    for j in jobs:
        for dep in j.get_all_dependencies():
            if dep.job_id in job_ids:
                in_degree[j.job_id] += 1
                dependents[dep.job_id].append(j.job_id)

    levels: list[list[JobSpec]] = []
    remaining = [j for j in jobs]

    while remaining:
        level = [j for j in remaining if in_degree[j.job_id] == 0]
        if not level:
            raise ValueError(f"Dependency cycle detected involving jobs: {[j.job_id for j in remaining]}")
        levels.append(level)
        for j in level:
            remaining.remove(j)
            for dependent_id in dependents[j.job_id]:
                in_degree[dependent_id] -= 1

    return levels


# =============================================================================
# Trigger Types
# =============================================================================


@dataclass
class Trigger:
    """Base class for workflow triggers."""

    def __or__(self, other: Trigger) -> CombinedTrigger:
        return CombinedTrigger([self, other])

    def to_gha_dict(self) -> dict[str, Any]:
        """Convert to the workflow 'on:' mapping."""
        raise NotImplementedError


@dataclass
class CombinedTrigger(Trigger):
    """Multiple triggers combined with OR."""

    triggers: list[Trigger]

    def __or__(self, other: Trigger) -> CombinedTrigger:
        return CombinedTrigger(self.triggers + [other])

    def to_gha_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for trigger in self.triggers:
            result.update(trigger.to_gha_dict())
        return result


@dataclass
class PushTrigger(Trigger):
    """Trigger on push events."""

    branches: list[str] | None = None
    tags: list[str] | None = None
    paths: list[str] | None = None

    def to_gha_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self.branches:
            config["branches"] = self.branches
        if self.tags:
            config["tags"] = self.tags
        if self.paths:
            config["paths"] = self.paths
        return {"push": config or None}


@dataclass
class PullRequestTrigger(Trigger):
    """Trigger on pull request events."""

    branches: list[str] | None = None
    types: list[str] | None = None
    paths: list[str] | None = None

    def to_gha_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self.branches:
            config["branches"] = self.branches
        if self.types:
            config["types"] = self.types
        if self.paths:
            config["paths"] = self.paths
        return {"pull_request": config or None}


@dataclass
class ScheduleTrigger(Trigger):
    """Trigger on schedule."""

    cron: str

    def to_gha_dict(self) -> dict[str, Any]:
        return {"schedule": [{"cron": self.cron}]}


@dataclass
class WorkflowDispatchTrigger(Trigger):
    """Trigger on manual workflow dispatch."""

    def to_gha_dict(self) -> dict[str, Any]:
        return {"workflow_dispatch": None}


def on_push(
    branches: list[str] | None = None,
    tags: list[str] | None = None,
    paths: list[str] | None = None,
) -> PushTrigger:
    """Create a push trigger."""
    return PushTrigger(branches=branches, tags=tags, paths=paths)


def on_pull_request(
    branches: list[str] | None = None,
    types: list[str] | None = None,
    paths: list[str] | None = None,
) -> PullRequestTrigger:
    """Create a pull request trigger."""
    return PullRequestTrigger(branches=branches, types=types, paths=paths)


def on_schedule(cron: str) -> ScheduleTrigger:
    """Create a schedule trigger."""
    return ScheduleTrigger(cron=cron)


def on_workflow_dispatch() -> WorkflowDispatchTrigger:
    """Create a workflow dispatch trigger."""
    return WorkflowDispatchTrigger()


# =============================================================================
# AutomationInfo and @automation decorator
# =============================================================================


@dataclass
class AutomationInfo:
    """Metadata about an automation."""

    name: str
    module: str
    fn: Callable[..., Any]
    original_fn: Callable[..., None]
    doc: str | None
    trigger: Trigger | None = None
    workflow_name: str | None = None
    """Display name of the generated workflow (default: the function name)."""
    concurrency: Concurrency | None = None
    permissions: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    wrapper: Any = None

    @property
    def full_name(self) -> str:
        return f"{self.module}:{self.name}"

    @property
    def display_name(self) -> str:
        return self.workflow_name or self.name


class AutomationWrapper:
    """Wrapper for @automation-decorated functions."""

    def __init__(self, info: AutomationInfo, original_fn: Callable[..., None]):
        self._automation_info = info
        self._original_fn = original_fn
        functools.update_wrapper(self, original_fn)

    def __call__(self) -> list[JobSpec]:
        """Build the automation and return its jobs."""
        from .context import AutomationContext, set_automation_context

        ctx = AutomationContext(automation_name=self._automation_info.name)

        _clear_job_registry()
        set_automation_context(ctx)

        try:
            self._original_fn()
            return ctx.jobs
        finally:
            set_automation_context(None)
            _clear_job_registry()

    def plan(self) -> list[JobSpec]:
        """Build the automation plan without side effects (alias for __call__)."""
        return self()

    @property
    def info(self) -> AutomationInfo:
        return self._automation_info


@overload
def automation(fn: Callable[..., None]) -> AutomationWrapper: ...


@overload
def automation(
    *,
    trigger: Trigger | None = None,
    name: str | None = None,
    concurrency: Concurrency | None = None,
    permissions: dict[str, str] | None = None,
    env: dict[str, str] | None = None,
) -> Callable[[Callable[..., None]], AutomationWrapper]: ...


def automation(
    fn: Callable[..., None] | None = None,
    *,
    trigger: Trigger | None = None,
    name: str | None = None,
    concurrency: Concurrency | None = None,
    permissions: dict[str, str] | None = None,
    env: dict[str, str] | None = None,
) -> AutomationWrapper | Callable[[Callable[..., None]], AutomationWrapper]:
    """
    Decorator to mark a function as a cbci automation.

    Inside an automation, use cbci.job() to define jobs.

    Args:
        trigger: Workflow trigger configuration (on_push, on_pull_request, etc.)
        name: Workflow display name
        concurrency: Workflow concurrency group
        permissions: Token permissions, e.g. {"contents": "read"}
        env: Workflow-level environment variables

    Example:
        @cbci.automation(trigger=on_push(branches=["main"]) | on_workflow_dispatch())
        def ci() -> None:
            '''CI pipeline.'''
            check = cbci.job(check_skip, job_id="check-skip")
            cbci.job(build, inputs={"should_skip": check.get("should_skip")})

    """

    def decorator(func: Callable[..., None]) -> AutomationWrapper:
        if inspect.signature(func).parameters:
            raise TypeError(f"@automation function '{func.__name__}' must not take parameters")

        info = AutomationInfo(
            name=func.__name__,
            module=func.__module__,
            fn=func,
            original_fn=func,
            doc=func.__doc__,
            trigger=trigger,
            workflow_name=name,
            concurrency=concurrency,
            permissions=permissions or {},
            env=env or {},
        )

        wrapper = AutomationWrapper(info, func)
        info.fn = wrapper
        info.wrapper = wrapper
        return wrapper

    if fn is not None:
        return decorator(fn)
    return decorator

"""Execution context for cbci tasks."""

from __future__ import annotations

import os
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from .artifacts import artifact_output_name

if TYPE_CHECKING:
    from .artifacts import ArtifactDecl
    from .jobs import AutomationInfo, JobSpec
    from .task import SetupStep, TaskInfo

# Debug mode flag
_debug_mode: bool = False

# CLI command used in generated workflows and for local job subprocesses
_cli_command: str = "cbci"

# Working directory for generated workflows (relative to repo root)
_working_directory: str | None = None

# Nesting depth of running tasks
_task_depth: int = 0


@dataclass
class OutputLine:
    """A captured line of output."""

    level: Literal["out", "dbg"]
    message: str


@dataclass
class ArtifactInfo:
    """An artifact published by a task for upload."""

    key: str
    name: str
    paths: list[str] = field(default_factory=list)


@dataclass
class TaskContext:
    """
    Execution context for a single task.

    Tracks output and the outputs/artifacts the task publishes.
    """

    task_name: str
    output: list[OutputLine] = field(default_factory=list)

    declared_outputs: list[str] = field(default_factory=list)
    declared_artifacts: dict[str, ArtifactDecl] = field(default_factory=dict)

    task_outputs: dict[str, str] = field(default_factory=dict)
    task_artifacts: dict[str, ArtifactInfo] = field(default_factory=dict)

    def capture_out(self, message: str) -> None:
        """Capture an output line."""
        self.output.append(OutputLine(level="out", message=message))

    def capture_dbg(self, message: str) -> None:
        """Capture a debug line."""
        self.output.append(OutputLine(level="dbg", message=message))

    def set_output(self, name: str, value: str) -> None:
        """
        Set a task output value.

        Validates the name against declared outputs and writes to GITHUB_OUTPUT if set.
        """
        if self.declared_outputs and name not in self.declared_outputs:
            raise ValueError(
                f"Output '{name}' not declared in @task(outputs=[...]). Declared outputs: {self.declared_outputs}"
            )
        self.task_outputs[name] = value
        write_github_output(name, value)

    def save_artifact(self, key: str, name: str) -> None:
        """
        Publish a declared artifact under the given name.

        The name is exposed as the `<key>_artifact` output, which gates the upload step.
        """
        decl = self.declared_artifacts.get(key)
        if decl is None:
            raise ValueError(
                f"Artifact '{key}' not declared in @task(artifacts=[...]). "
                f"Declared artifacts: {list(self.declared_artifacts)}"
            )
        if decl.name is not None and decl.name != name:
            raise ValueError(f"Artifact '{key}' has the fixed name '{decl.name}', got '{name}'")
        if not name:
            raise ValueError(f"Artifact '{key}' needs a non-empty name")

        self.task_artifacts[key] = ArtifactInfo(key=key, name=name, paths=list(decl.paths))
        output_name = artifact_output_name(key)
        self.task_outputs[output_name] = name
        write_github_output(output_name, name)


@dataclass
class AutomationContext:
    """
    Context for building an automation plan.

    Tracks jobs created via cbci.job() calls during @automation execution.
    """

    automation_name: str
    jobs: list[JobSpec] = field(default_factory=list)

    def add_job(self, job_spec: JobSpec) -> None:
        """Add a job to this automation."""
        self.jobs.append(job_spec)


@dataclass
class CbciContext:
    """
    Global registry of the tasks and automations an App exposes.
    """

    tasks: dict[str, TaskInfo] = field(default_factory=dict)
    automations: dict[str, AutomationInfo] = field(default_factory=dict)
    default_setup: list[SetupStep] = field(default_factory=list)
    """Setup steps for jobs whose task and job declare none."""


_current_task_context: ContextVar[TaskContext | None] = ContextVar("cbci_task_context", default=None)
_current_automation_context: ContextVar[AutomationContext | None] = ContextVar(
    "cbci_automation_context", default=None
)
_cbci_context: ContextVar[CbciContext | None] = ContextVar("cbci_context", default=None)


def get_context() -> TaskContext | None:
    """Get the current task context, or None if not in a task."""
    return _current_task_context.get()


def set_context(ctx: TaskContext | None) -> None:
    """Set the current task context."""
    _current_task_context.set(ctx)


def get_automation_context() -> AutomationContext | None:
    """Get the current automation context, or None if not in an automation."""
    return _current_automation_context.get()


def set_automation_context(ctx: AutomationContext | None) -> None:
    """Set the current automation context."""
    _current_automation_context.set(ctx)


def get_cbci_context() -> CbciContext | None:
    """Get the global registry context, or None if no App has set one up."""
    return _cbci_context.get()


def set_cbci_context(ctx: CbciContext | None) -> None:
    """Set the global registry context."""
    _cbci_context.set(ctx)


def get_task_registry() -> dict[str, TaskInfo]:
    """Registered tasks, keyed by full name. Empty outside an App."""
    ctx = _cbci_context.get()
    if ctx is None:
        return {}
    return ctx.tasks


def get_automation_registry() -> dict[str, AutomationInfo]:
    """Registered automations, keyed by full name. Empty outside an App."""
    ctx = _cbci_context.get()
    if ctx is None:
        return {}
    return ctx.automations


def get_default_setup() -> list[SetupStep]:
    """App-level setup steps for generated jobs. Empty outside an App."""
    ctx = _cbci_context.get()
    if ctx is None:
        return []
    return ctx.default_setup


def get_task(name: str) -> TaskInfo | None:
    """Look up a task by full name, short name or CLI name."""
    registry = get_task_registry()
    if name in registry:
        return registry[name]
    for info in registry.values():
        if name in (info.name, info.cli_name):
            return info
    return None


def get_automation(name: str) -> AutomationInfo | None:
    """Look up an automation by full name, short name or CLI name."""
    registry = get_automation_registry()
    if name in registry:
        return registry[name]
    for info in registry.values():
        if name in (info.name, info.name.replace("_", "-")):
            return info
    return None


def set_debug(enabled: bool) -> None:
    """Enable or disable debug output."""
    global _debug_mode
    _debug_mode = enabled


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode


def set_cli_command(cmd: str) -> None:
    """Set the CLI command used by generated workflows and local job subprocesses."""
    global _cli_command
    _cli_command = cmd


def get_cli_command() -> str:
    """Get the CLI command (default: "cbci")."""
    return _cli_command


def set_working_directory(directory: str | None) -> None:
    """Set the working directory for generated workflows."""
    global _working_directory
    _working_directory = directory


def get_working_directory() -> str | None:
    """Get the working directory for generated workflows, or None for the repo root."""
    return _working_directory


def increment_task_depth() -> int:
    """Enter a task and return the new nesting depth."""
    global _task_depth
    _task_depth += 1
    return _task_depth


def decrement_task_depth() -> None:
    """Leave a task."""
    global _task_depth
    _task_depth = max(0, _task_depth - 1)


def in_github_actions() -> bool:
    """True when running inside a GitHub Actions runner."""
    return os.environ.get("GITHUB_ACTIONS") == "true"


def _append_to_env_file(variable: str, text: str) -> bool:
    path = os.environ.get(variable)
    if not path:
        return False
    with open(path, "a") as f:
        f.write(text)
    return True


def _key_value_block(name: str, value: str) -> str:
    # Multi-line values need the heredoc-style delimiter syntax
    if "\n" in value:
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"
    return f"{name}={value}\n"


def write_github_output(name: str, value: str) -> None:
    """Append a step output to $GITHUB_OUTPUT, if set."""
    _append_to_env_file("GITHUB_OUTPUT", _key_value_block(name, value))


def parse_github_output(output_file: Path) -> dict[str, str]:
    """Parse a GITHUB_OUTPUT-format file and return the key-value pairs."""
    outputs: dict[str, str] = {}
    if not output_file.exists():
        return outputs

    lines = output_file.read_text().split("\n")

    i = 0
    while i < len(lines):
        line = lines[i]
        if "<<" in line and ("=" not in line or line.index("<<") < line.index("=")):
            key, delimiter = line.split("<<", 1)
            delimiter = delimiter.strip()
            i += 1
            value_lines = []
            while i < len(lines) and lines[i].strip() != delimiter:
                value_lines.append(lines[i])
                i += 1
            outputs[key.strip()] = "\n".join(value_lines)
            i += 1
        elif "=" in line:
            key, value = line.split("=", 1)
            outputs[key.strip()] = value
            i += 1
        else:
            i += 1

    return outputs


def out(message: str) -> None:
    """
    Output a message.

    When running inside a task context, the message is also captured.
    """
    ctx = _current_task_context.get()
    if ctx is not None:
        ctx.capture_out(message)
    print(message, flush=True)


def dbg(message: str) -> None:
    """
    Output a debug message.

    Captured inside a task context; printed only in debug mode.
    """
    ctx = _current_task_context.get()
    if ctx is not None:
        ctx.capture_dbg(message)
    if _debug_mode:
        print(f"[debug] {message}", flush=True)


def set_output(name: str, value: Any) -> None:
    """
    Set a task output value.

    Must be called from within a task that declared the output in @task(outputs=[...]).
    Under GitHub Actions the value is also appended to $GITHUB_OUTPUT.

    Raises:
        RuntimeError: If not called from within a task context
        ValueError: If name is not in declared outputs

    Example:
        @task(outputs=["should_skip"])
        def check_skip() -> Result[None]:
            cbci.set_output("should_skip", "true")
            return Ok(None)

    """
    ctx = _current_task_context.get()
    if ctx is None:
        raise RuntimeError("set_output() must be called from within a task context")
    ctx.set_output(name, str(value))


def save_artifact(key: str, name: str) -> None:
    """
    Publish a declared artifact for upload under `name`.

    The files uploaded are the paths declared on the artifact. Under GitHub Actions
    this enables the generated upload-artifact step; locally the executor copies
    the files into its artifact store.

    Raises:
        RuntimeError: If not called from within a task context
        ValueError: If key is not a declared artifact

    """
    ctx = _current_task_context.get()
    if ctx is None:
        raise RuntimeError("save_artifact() must be called from within a task context")
    ctx.save_artifact(key, name)


def export_env(name: str, value: str) -> None:
    """Set an environment variable for this process and for later workflow steps."""
    os.environ[name] = value
    _append_to_env_file("GITHUB_ENV", _key_value_block(name, value))


def append_summary(*lines: str) -> None:
    """Append markdown lines to the job summary ($GITHUB_STEP_SUMMARY)."""
    text = "".join(f"{line}\n" for line in lines)
    if not _append_to_env_file("GITHUB_STEP_SUMMARY", text):
        for line in lines:
            dbg(f"summary: {line}")

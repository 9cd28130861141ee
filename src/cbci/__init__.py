"""
cbci - the Apache Cloudberry CI pipeline as typed Python.

Pipeline jobs are plain tasks:

    import cbci

    @cbci.task(outputs=["should_skip"])
    def check_skip(*, message: str | None = None) -> cbci.Result[bool]:
        skip = cbci.should_skip(message)
        cbci.set_output("should_skip", "true" if skip else "false")
        return cbci.Ok(skip)

and an automation wires them into jobs, which render to a GitHub Actions
workflow or run locally:

    cbci generate-gha
    cbci build-cloudberry --verbose
"""

from .artifacts import ArtifactDecl, ArtifactError, LocalArtifactStore
from .builtin_tasks import builtin_commands, generate_gha, inspect
from .command_group import App, CommandGroup
from .config import ConfigError, PipelineConfig, load_config
from .context import (
    ArtifactInfo,
    append_summary,
    dbg,
    export_env,
    get_automation,
    get_automation_registry,
    get_context,
    get_task,
    get_task_registry,
    is_debug,
    out,
    save_artifact,
    set_debug,
    set_output,
)
from .gha import render_automation_jobs, validate_workflow
from .jobs import (
    AndCondition,
    ArtifactRef,
    AutomationInfo,
    AutomationWrapper,
    Concurrency,
    ConditionExpr,
    Container,
    GitHubCondition,
    JobOutputRef,
    JobResultRef,
    JobSpec,
    Matrix,
    MatrixRef,
    NotCondition,
    OrCondition,
    OutputCondition,
    StatusCondition,
    always,
    automation,
    cancelled,
    failure,
    github,
    job,
    on_pull_request,
    on_push,
    on_schedule,
    on_workflow_dispatch,
    success,
    topological_levels,
)
from .local_executor import AutomationResult, JobResult, LocalExecutor, execute_automation
from .result import Err, JobStatus, Ok, Result
from .skip import should_skip
from .step import StepFailure, StepRecord, StepRunner
from .subprocess import RunResult, SubprocessError, run
from .task import SetupStep, TaskInfo, TaskWrapper, setup_uv, task

__all__ = [
    # Results
    "Result",
    "Ok",
    "Err",
    "JobStatus",
    # Tasks and steps
    "task",
    "TaskInfo",
    "TaskWrapper",
    "SetupStep",
    "setup_uv",
    "StepRunner",
    "StepRecord",
    "StepFailure",
    # Context helpers
    "ArtifactInfo",
    "get_context",
    "out",
    "dbg",
    "set_output",
    "save_artifact",
    "export_env",
    "append_summary",
    "set_debug",
    "is_debug",
    "get_task",
    "get_task_registry",
    "get_automation",
    "get_automation_registry",
    # Subprocess
    "run",
    "RunResult",
    "SubprocessError",
    # Configuration
    "PipelineConfig",
    "ConfigError",
    "load_config",
    # Artifacts
    "ArtifactDecl",
    "ArtifactError",
    "LocalArtifactStore",
    # Jobs and automations
    "job",
    "JobSpec",
    "JobOutputRef",
    "JobResultRef",
    "ArtifactRef",
    "MatrixRef",
    "Matrix",
    "Container",
    "Concurrency",
    "ConditionExpr",
    "GitHubCondition",
    "OutputCondition",
    "StatusCondition",
    "AndCondition",
    "OrCondition",
    "NotCondition",
    "github",
    "always",
    "success",
    "failure",
    "cancelled",
    "on_push",
    "on_pull_request",
    "on_schedule",
    "on_workflow_dispatch",
    "automation",
    "AutomationInfo",
    "AutomationWrapper",
    "topological_levels",
    # Rendering and execution
    "render_automation_jobs",
    "validate_workflow",
    "LocalExecutor",
    "JobResult",
    "AutomationResult",
    "execute_automation",
    # CLI
    "App",
    "CommandGroup",
    "builtin_commands",
    "generate_gha",
    "inspect",
    # Pipeline predicates
    "should_skip",
]

"""GitHub Actions workflow generation for cbci automations.

This module provides:
- Dataclasses for representing GHA workflow structure
- Rendering of an automation's jobs into a workflow
- Validation via actionlint
"""

from __future__ import annotations

import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap
from ruamel.yaml.scalarstring import LiteralScalarString

from .artifacts import ArtifactDecl, artifact_output_name
from .jobs import (
    AndCondition,
    ArtifactRef,
    ConditionExpr,
    JobOutputRef,
    JobResultRef,
    MatrixRef,
    OrCondition,
)

if TYPE_CHECKING:
    from .jobs import AutomationWrapper, JobSpec
    from .task import SetupStep

UPLOAD_ACTION = "actions/upload-artifact@v4"
DOWNLOAD_ACTION = "actions/download-artifact@v4"

RUN_STEP_ID = "run"

DEFAULT_RETENTION_EXPR = "${{ env.LOG_RETENTION_DAYS }}"


# =============================================================================
# Workflow Spec Dataclasses
# =============================================================================


@dataclass
class StepSpec:
    """A step within a GHA job."""

    name: str
    run: str | None = None
    uses: str | None = None
    with_: dict[str, Any] | None = None
    env: dict[str, str] | None = None
    id: str | None = None
    if_condition: str | None = None  # GHA `if:` expression
    comment: str | None = None  # Comment to add above the step's run/uses key

    def to_dict(self) -> CommentedMap:
        """Convert to dict for YAML serialization."""
        d: CommentedMap = CommentedMap()
        d["name"] = self.name
        if self.id:
            d["id"] = self.id
        if self.if_condition:
            d["if"] = self.if_condition
        if self.uses:
            d["uses"] = self.uses
        if self.with_:
            d["with"] = self.with_
        if self.run:
            d["run"] = LiteralScalarString(self.run + "\n") if "\n" in self.run else self.run
        if self.env:
            d["env"] = self.env

        if self.comment:
            # indent=6 aligns with step keys when nested under jobs.<name>.steps list
            d.yaml_set_comment_before_after_key("uses" if self.uses else "run", before=self.comment, indent=6)

        return d


@dataclass
class GHAJobSpec:
    """A job within a GHA workflow."""

    job_id: str
    runs_on: str = "ubuntu-latest"
    name: str | None = None
    needs: list[str] = field(default_factory=list)
    if_condition: str | None = None
    container: dict[str, Any] | None = None
    strategy: dict[str, Any] | None = None
    timeout_minutes: int | None = None
    env: dict[str, str] | None = None
    outputs: dict[str, str] | None = None
    working_directory: str | None = None
    steps: list[StepSpec] = field(default_factory=list)

    def to_dict(self) -> CommentedMap:
        """Convert to dict for YAML serialization."""
        d: CommentedMap = CommentedMap()
        if self.name:
            d["name"] = self.name
        if self.needs:
            d["needs"] = self.needs
        if self.if_condition:
            d["if"] = self.if_condition
        d["runs-on"] = self.runs_on
        if self.timeout_minutes:
            d["timeout-minutes"] = self.timeout_minutes
        if self.strategy:
            d["strategy"] = self.strategy
        if self.container:
            d["container"] = self.container
        if self.outputs:
            d["outputs"] = self.outputs
        if self.working_directory:
            d["defaults"] = {"run": {"working-directory": self.working_directory}}
        if self.env:
            d["env"] = self.env
        d["steps"] = [s.to_dict() for s in self.steps]
        return d


def generate_workflow_header(source: str | None = None) -> str:
    """
    Generate a header comment for generated workflow files.

    Args:
        source: Optional description of what generated this workflow
                (e.g., "automation: build_cloudberry")

    Returns:
        Header comment string to prepend to YAML content.

    """
    lines = [
        "# ============================================================================",
        "# GENERATED FILE - DO NOT EDIT MANUALLY",
        "#",
        "# This workflow is generated by cbci. To modify:",
        "#   1. Edit the automation definition",
        "#   2. Run: cbci generate-gha",
        "#   3. Commit the regenerated file",
        "#",
    ]
    if source:
        lines.append(f"# Source: {source}")
    lines.extend(
        [
            "# ============================================================================",
            "",
        ]
    )
    return "\n".join(lines)


@dataclass
class WorkflowSpec:
    """A complete GHA workflow."""

    name: str
    on: dict[str, Any]
    jobs: dict[str, GHAJobSpec]
    concurrency: dict[str, Any] | None = None
    permissions: dict[str, str] | None = None
    env: dict[str, str] | None = None
    path: Path | None = None  # Output file path, if known

    def __str__(self) -> str:
        """User-friendly string representation."""
        num_jobs = len(self.jobs)
        total_steps = sum(len(job.steps) for job in self.jobs.values())
        triggers = ", ".join(self.on.keys())
        path_str = f" -> {self.path}" if self.path else ""
        return f"WorkflowSpec({self.name}) - {num_jobs} job(s), {total_steps} step(s), on: {triggers}{path_str}"

    __repr__ = __str__

    def to_dict(self) -> CommentedMap:
        """Convert to dict for YAML serialization."""
        d: CommentedMap = CommentedMap()
        d["name"] = self.name
        d["on"] = self.on
        if self.concurrency:
            d["concurrency"] = self.concurrency
        if self.permissions:
            d["permissions"] = self.permissions
        if self.env:
            d["env"] = self.env
        d["jobs"] = {job_id: job.to_dict() for job_id, job in self.jobs.items()}
        return d

    def to_yaml(self, *, include_header: bool = False, source: str | None = None) -> str:
        """
        Render as YAML string.

        Args:
            include_header: If True, prepend generated-file header comment.
            source: Source description for header (e.g., "automation: ci").
                    If not provided and include_header=True, uses workflow name.

        Returns:
            YAML string, optionally with header.

        """
        yaml = YAML()
        yaml.default_flow_style = False
        yaml.width = 4096
        yaml.indent(mapping=2, sequence=4, offset=2)

        stream = StringIO()
        yaml.dump(self.to_dict(), stream)
        yaml_content = stream.getvalue()

        if include_header:
            header_source = source if source else f"workflow: {self.name}"
            return generate_workflow_header(header_source) + yaml_content

        return yaml_content


# =============================================================================
# Rendering
# =============================================================================


def _expr_text(expr: ConditionExpr) -> str:
    text = expr.to_gha_expr()
    if isinstance(expr, (AndCondition, OrCondition)):
        return f"({text})"
    return text


def _input_value(value: Any) -> str:
    """Render a job input as a command-line value."""
    if isinstance(value, (JobOutputRef, JobResultRef, MatrixRef)):
        return f'"{value.to_gha_expr()}"'
    if isinstance(value, ArtifactRef):
        return shlex.quote(value.dest)
    if isinstance(value, bool):
        return "true" if value else "false"
    return shlex.quote(str(value))


def build_run_command(job: JobSpec, entry_point: str) -> str:
    """The shell command of a job's run step: `<entry_point> <task> --opt=value ...`."""
    parts = [entry_point, job.task_info.cli_name]
    for name, value in job.inputs.items():
        parts.append(f"--{name.replace('_', '-')}={_input_value(value)}")
    return " ".join(parts)


def _setup_steps(job: JobSpec, default_setup: list[SetupStep], gate: str | None) -> list[StepSpec]:
    if job.setup is not None:
        setup = job.setup
    elif job.task_info.setup is not None:
        setup = job.task_info.setup
    else:
        setup = default_setup
    return [
        StepSpec(
            name=s.name,
            uses=s.uses,
            with_=dict(s.with_) if s.with_ else None,
            run=s.run,
            if_condition=gate if s.gated else None,
        )
        for s in setup
    ]


def _download_step(ref: ArtifactRef, gate: str | None) -> StepSpec:
    return StepSpec(
        name=f"Download {ref.artifact_name}",
        uses=DOWNLOAD_ACTION,
        with_={"name": ref.artifact_name, "path": ref.dest},
        if_condition=gate,
    )


def upload_condition(decl: ArtifactDecl, gate: str | None) -> str:
    """
    The `if:` of an artifact's upload step.

    The step runs only when the task published the artifact. Artifacts declared
    with when="always" are uploaded even after an earlier step failed.
    """
    parts = [f"steps.{RUN_STEP_ID}.outputs.{artifact_output_name(decl.key)} != ''"]
    if gate:
        parts.insert(0, gate)
    if decl.when == "always":
        parts.insert(0, "always()")
    return " && ".join(parts)


def _upload_step(decl: ArtifactDecl, gate: str | None) -> StepSpec:
    paths: str = "\n".join(decl.paths)
    with_: dict[str, Any] = {
        "name": f"${{{{ steps.{RUN_STEP_ID}.outputs.{artifact_output_name(decl.key)} }}}}",
        "path": LiteralScalarString(paths + "\n") if len(decl.paths) > 1 else paths,
        "retention-days": decl.retention_days if decl.retention_days is not None else DEFAULT_RETENTION_EXPR,
        "if-no-files-found": decl.if_no_files_found,
    }
    return StepSpec(
        name=f"Upload {decl.key.replace('_', ' ')}",
        uses=UPLOAD_ACTION,
        with_=with_,
        if_condition=upload_condition(decl, gate),
    )


def render_job(
    job: JobSpec,
    *,
    entry_point: str = "cbci",
    working_directory: str | None = None,
    default_setup: list[SetupStep] | None = None,
) -> GHAJobSpec:
    """Render one JobSpec as a GHA job."""
    gate = _expr_text(job.gate) if job.gate is not None else None

    steps = _setup_steps(job, default_setup or [], gate)
    steps.extend(_download_step(ref, gate) for ref in job.artifact_inputs())
    steps.append(
        StepSpec(
            name=job.task_info.name.replace("_", " ").capitalize(),
            id=RUN_STEP_ID,
            run=build_run_command(job, entry_point),
        )
    )
    steps.extend(_upload_step(decl, gate) for decl in job.task_info.artifacts)

    # Matrix jobs have one value per variant, so they expose no job outputs
    outputs = None
    if job.matrix is None and job.task_info.all_outputs:
        outputs = {name: f"${{{{ steps.{RUN_STEP_ID}.outputs.{name} }}}}" for name in job.task_info.all_outputs}

    return GHAJobSpec(
        job_id=job.job_id,
        runs_on=job.runs_on,
        name=job.name,
        needs=[dep.job_id for dep in job.get_all_dependencies()],
        if_condition=job.condition.to_gha_expr() if job.condition is not None else None,
        container=job.container.to_gha_dict() if job.container else None,
        strategy=job.matrix.to_gha_dict() if job.matrix else None,
        timeout_minutes=job.timeout_minutes,
        env=job.env or None,
        outputs=outputs,
        working_directory=working_directory,
        steps=steps,
    )


def render_automation_jobs(
    automation: AutomationWrapper,
    *,
    entry_point: str = "cbci",
    working_directory: str | None = None,
    default_setup: list[SetupStep] | None = None,
) -> WorkflowSpec:
    """
    Generate a WorkflowSpec from an automation.

    Every job becomes a GHA job whose single `run` step invokes the job's task
    through the CLI; references between jobs become `needs` and expressions.

    Args:
        automation: The automation to render.
        entry_point: Command that runs the cbci CLI on the runner.
        working_directory: Working directory for run steps (relative to repo root).
        default_setup: Setup steps for jobs that declare none.

    Returns:
        A WorkflowSpec that can be rendered to YAML.

    """
    info = automation.info
    jobs = automation.plan()

    rendered = {
        job.job_id: render_job(
            job,
            entry_point=entry_point,
            working_directory=working_directory,
            default_setup=default_setup,
        )
        for job in jobs
    }

    return WorkflowSpec(
        name=info.display_name,
        on=info.trigger.to_gha_dict() if info.trigger else {"workflow_dispatch": None},
        jobs=rendered,
        concurrency=info.concurrency.to_gha_dict() if info.concurrency else None,
        permissions=info.permissions or None,
        env=info.env or None,
    )


def validate_workflow(yaml_content: str, filepath: Path | None = None) -> tuple[bool, str]:
    """
    Validate workflow YAML using actionlint.

    Args:
        yaml_content: The YAML content to validate.
        filepath: Optional filepath for error messages.

    Returns:
        Tuple of (success, message). If success is False, message contains errors.

    """
    actionlint_path = shutil.which("actionlint")
    if actionlint_path is None:
        return False, (
            "actionlint not found. Install with:\n"
            "  brew install actionlint\n"
            "  # or\n"
            "  go install github.com/rhysd/actionlint/cmd/actionlint@latest"
        )

    if filepath is None or not filepath.exists():
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yml", delete=False) as f:
            f.write(yaml_content)
            temp_path = Path(f.name)
        try:
            result = subprocess.run(
                [actionlint_path, str(temp_path)],
                capture_output=True,
                text=True,
            )
        finally:
            temp_path.unlink()
    else:
        result = subprocess.run(
            [actionlint_path, str(filepath)],
            capture_output=True,
            text=True,
        )

    if result.returncode == 0:
        return True, "Validation passed"
    return False, result.stdout + result.stderr

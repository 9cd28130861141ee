"""Local execution of automations.

This module allows running automations locally, executing each job as a subprocess
with proper dependency ordering and output passing.

Execution follows the hosted runner's rules:
1. A job runs when all of its needs succeeded, unless its condition uses a
   status function such as always(); otherwise it is skipped
2. Matrix jobs fan out into one subprocess per combination. Jobs of one level
   and matrix combinations run in parallel, at most `max_parallel` at a time
   (one by default), as they all share the workspace and the host
3. Artifacts a job publishes are copied into a local artifact store and
   downloaded into the workspace of the jobs that reference them
4. A job that outlives its timeout is cancelled

The output model is recursive:
1. Parent prints child's header
2. Parent executes child, capturing ALL output
3. Parent prefixes ALL captured output with continuation prefix
4. Parent prints status with SAME prefix
5. Move to next child
"""

from __future__ import annotations

import os
import shlex
import subprocess
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .artifacts import ArtifactError, LocalArtifactStore, artifact_output_name
from .context import parse_github_output
from .jobs import ArtifactRef, JobOutputRef, JobResultRef, JobSpec, MatrixRef, topological_levels
from .output import PARALLEL_PREFIX, get_output_manager
from .result import JobStatus

if TYPE_CHECKING:
    from .jobs import AutomationWrapper

DEFAULT_ARTIFACTS_DIR = ".cbci/artifacts"
DEFAULT_RETENTION_DAYS = 7


@dataclass
class JobResult:
    """Result of executing a single job (or one variant of a matrix job)."""

    job_id: str
    status: JobStatus
    elapsed_seconds: float
    outputs: dict[str, str] = field(default_factory=dict)
    output_text: str = ""  # Captured output from the job
    summary: str = ""  # What the job wrote to its step summary
    error: str | None = None
    artifacts: list[str] = field(default_factory=list)
    variants: list[JobResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status is JobStatus.SUCCESS


@dataclass
class AutomationResult:
    """Result of executing an automation."""

    automation_name: str
    success: bool
    elapsed_seconds: float
    job_results: list[JobResult] = field(default_factory=list)

    @property
    def failed_jobs(self) -> list[JobResult]:
        """Jobs that failed or were cancelled."""
        return [j for j in self.job_results if j.status in (JobStatus.FAILURE, JobStatus.CANCELLED)]

    def get(self, job_id: str) -> JobResult | None:
        for result in self.job_results:
            if result.job_id == job_id:
                return result
        return None


def aggregate_status(statuses: list[JobStatus]) -> JobStatus:
    """Combined result of matrix variants: failure wins, then cancelled."""
    if JobStatus.FAILURE in statuses:
        return JobStatus.FAILURE
    if JobStatus.CANCELLED in statuses:
        return JobStatus.CANCELLED
    if statuses and all(s is JobStatus.SKIPPED for s in statuses):
        return JobStatus.SKIPPED
    return JobStatus.SUCCESS


def _needs_status(job_spec: JobSpec, results: dict[str, JobResult]) -> str:
    """What status functions see: failure if any need failed, cancelled if any was cancelled."""
    statuses = [results[dep.job_id].status for dep in job_spec.get_all_dependencies() if dep.job_id in results]
    if JobStatus.FAILURE in statuses:
        return "failure"
    if JobStatus.CANCELLED in statuses:
        return "cancelled"
    return "success"


def build_condition_context(
    job_spec: JobSpec,
    results: dict[str, JobResult],
    github: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Expression context for a job's condition, from the results of the jobs before it."""
    needs = {
        dep.job_id: {"outputs": dict(results[dep.job_id].outputs), "result": str(results[dep.job_id].status)}
        for dep in job_spec.get_all_dependencies()
        if dep.job_id in results
    }
    return {
        "github": github or {},
        "needs": needs,
        "job": {"status": _needs_status(job_spec, results)},
    }


def should_run(job_spec: JobSpec, results: dict[str, JobResult], github: dict[str, Any] | None = None) -> bool:
    """
    Decide whether a job runs.

    Without a status function in its condition, a job needs all of its
    dependencies to have succeeded (an implicit success()).
    """
    deps_ok = all(
        results[dep.job_id].status is JobStatus.SUCCESS
        for dep in job_spec.get_all_dependencies()
        if dep.job_id in results
    )
    condition = job_spec.condition
    if condition is None:
        return deps_ok
    context = build_condition_context(job_spec, results, github)
    if condition.has_status_check():
        return condition.evaluate(context)
    return deps_ok and condition.evaluate(context)


def _resolve_input_value(
    value: Any,
    results: dict[str, JobResult],
    combination: dict[str, Any] | None,
) -> Any:
    """Resolve an input value, replacing refs with actual values."""
    if isinstance(value, JobOutputRef):
        # Like the hosted runner, a missing output is an empty string
        dep = results.get(value.job_id)
        return dep.outputs.get(value.output_name, "") if dep else ""
    if isinstance(value, JobResultRef):
        dep = results.get(value.job_id)
        return str(dep.status) if dep else str(JobStatus.SKIPPED)
    if isinstance(value, MatrixRef):
        if combination is None:
            raise ValueError(f"{value!r} used in a job without a matrix")
        return value.resolve(combination)
    if isinstance(value, ArtifactRef):
        return value.dest
    return value


def _build_cli_args(
    inputs: dict[str, Any],
    results: dict[str, JobResult],
    combination: dict[str, Any] | None = None,
) -> list[str]:
    """Build CLI arguments from job inputs."""
    args: list[str] = []
    for name, value in inputs.items():
        resolved = _resolve_input_value(value, results, combination)
        cli_name = name.replace("_", "-")
        if isinstance(resolved, bool):
            resolved = "true" if resolved else "false"
        args.append(f"--{cli_name}={resolved}")
    return args


def _variant_label(job_spec: JobSpec, combination: dict[str, Any]) -> str:
    scalars = [str(v) for v in combination.values() if not isinstance(v, (dict, list))]
    return f"{job_spec.job_id} ({', '.join(scalars[:1] or ['?'])})"


class LocalExecutor:
    """
    Executes automations locally by running jobs as subprocesses.

    Uses a recursive output model where each level captures child output
    and prefixes it uniformly.
    """

    def __init__(
        self,
        *,
        cli_command: str = "cbci",
        workspace: Path | str | None = None,
        artifacts_dir: Path | str | None = None,
        dry_run: bool = False,
        verbose: bool = False,
        max_parallel: int = 1,
        timeout_scale: float = 1.0,
        github: dict[str, Any] | None = None,
    ):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        self.cli_command = cli_command
        self.workspace = Path(workspace).resolve() if workspace else Path.cwd()
        artifacts_root = Path(artifacts_dir) if artifacts_dir else self.workspace / DEFAULT_ARTIFACTS_DIR
        self.store = LocalArtifactStore(root=artifacts_root)
        self.dry_run = dry_run
        self.verbose = verbose
        self.timeout_scale = timeout_scale
        self.github = github or {"event_name": "workflow_dispatch", "workspace": str(self.workspace)}
        self.retention_days = DEFAULT_RETENTION_DAYS
        self.automation_env: dict[str, str] = {}
        self.max_parallel = max_parallel
        self._slots = threading.BoundedSemaphore(max_parallel)

    def execute(self, automation: AutomationWrapper) -> AutomationResult:
        """Execute an automation locally."""
        start_time = time.perf_counter()
        output_mgr = get_output_manager()

        info = automation.info
        output_mgr.automation_header(info.display_name)

        self.automation_env = dict(info.env)
        self.retention_days = int(info.env.get("LOG_RETENTION_DAYS", DEFAULT_RETENTION_DAYS))
        self.github.setdefault("workflow", info.display_name)

        jobs = automation()
        if not jobs:
            output_mgr.print("No jobs to execute", style="yellow")
            return AutomationResult(
                automation_name=info.name,
                success=True,
                elapsed_seconds=time.perf_counter() - start_time,
            )

        try:
            levels = topological_levels(jobs)
        except ValueError as e:
            output_mgr.error(str(e))
            return AutomationResult(
                automation_name=info.name,
                success=False,
                elapsed_seconds=time.perf_counter() - start_time,
            )

        if not self.dry_run:
            pruned = self.store.prune()
            if pruned:
                output_mgr.print(f"Pruned expired artifacts: {', '.join(pruned)}", style="dim")

        results: dict[str, JobResult] = {}
        job_results: list[JobResult] = []

        for level_idx, level in enumerate(levels):
            is_last_level = level_idx == len(levels) - 1

            runnable = [j for j in level if should_run(j, results, self.github)]
            runnable_ids = {j.job_id for j in runnable}
            for job_spec in level:
                if job_spec.job_id not in runnable_ids:
                    skipped = JobResult(job_id=job_spec.job_id, status=JobStatus.SKIPPED, elapsed_seconds=0)
                    results[job_spec.job_id] = skipped

            if len(runnable) == 1 and len(level) == 1:
                job_spec = runnable[0]
                result = self._execute_job(job_spec, results)
                self._print_job_result(result, is_last=is_last_level)
                results[job_spec.job_id] = result
            elif level:
                # Parallel group is a recursive execution level
                output_mgr.parallel_header([j.job_id for j in level])
                with ThreadPoolExecutor(max_workers=max(1, len(runnable))) as pool:
                    futures = {pool.submit(self._execute_job, j, dict(results)): j for j in runnable}
                    for future, job_spec in futures.items():
                        results[job_spec.job_id] = future.result()
                for idx, job_spec in enumerate(level):
                    self._print_job_result(
                        results[job_spec.job_id],
                        is_last=idx == len(level) - 1,
                        prefix=PARALLEL_PREFIX,
                    )

            job_results.extend(results[j.job_id] for j in level)

        elapsed = time.perf_counter() - start_time
        success = not any(r.status in (JobStatus.FAILURE, JobStatus.CANCELLED) for r in job_results)

        output_mgr.automation_status(info.display_name, success, elapsed, len(job_results))

        return AutomationResult(
            automation_name=info.name,
            success=success,
            elapsed_seconds=elapsed,
            job_results=job_results,
        )

    def _execute_job(self, job_spec: JobSpec, results: dict[str, JobResult]) -> JobResult:
        """Execute a job; a matrix job runs all its combinations in parallel."""
        if job_spec.matrix is None:
            return self._execute_invocation(job_spec, job_spec.job_id, results, None)

        start_time = time.perf_counter()
        combinations = job_spec.matrix.expand()
        with ThreadPoolExecutor(max_workers=max(1, len(combinations))) as pool:
            futures = [
                pool.submit(self._execute_invocation, job_spec, _variant_label(job_spec, combo), results, combo)
                for combo in combinations
            ]
            variants = [f.result() for f in futures]

        status = aggregate_status([v.status for v in variants])
        failed = [v.job_id for v in variants if v.status in (JobStatus.FAILURE, JobStatus.CANCELLED)]
        return JobResult(
            job_id=job_spec.job_id,
            status=status,
            elapsed_seconds=time.perf_counter() - start_time,
            error=f"Failed variants: {', '.join(failed)}" if failed else None,
            artifacts=[name for v in variants for name in v.artifacts],
            variants=variants,
        )

    def _gate_open(self, job_spec: JobSpec, results: dict[str, JobResult]) -> bool:
        if job_spec.gate is None:
            return True
        return job_spec.gate.evaluate(build_condition_context(job_spec, results, self.github))

    def _execute_invocation(
        self,
        job_spec: JobSpec,
        label: str,
        results: dict[str, JobResult],
        combination: dict[str, Any] | None,
    ) -> JobResult:
        # Every invocation shares the workspace, the install prefix and the host's rpm database
        with self._slots:
            return self._run_invocation(job_spec, label, results, combination)

    def _run_invocation(

        self,
        job_spec: JobSpec,
        label: str,
        results: dict[str, JobResult],
        combination: dict[str, Any] | None,
    ) -> JobResult:
        """Run one subprocess for a job (or one matrix combination), capturing all output."""
        start_time = time.perf_counter()
        cli_args = _build_cli_args(job_spec.inputs, results, combination)
        cmd = [*shlex.split(self.cli_command), job_spec.task_info.cli_name, *cli_args]

        if self.dry_run:
            return JobResult(
                job_id=label,
                status=JobStatus.SUCCESS,
                elapsed_seconds=0,
                output_text=f"Would run: {shlex.join(cmd)}",
            )

        gate_open = self._gate_open(job_spec, results)
        if gate_open:
            for ref in job_spec.artifact_inputs():
                try:
                    self.store.download(ref.artifact_name, self.workspace / ref.dest)
                except ArtifactError as e:
                    return JobResult(
                        job_id=label,
                        status=JobStatus.FAILURE,
                        elapsed_seconds=time.perf_counter() - start_time,
                        error=str(e),
                        output_text=f"Download {ref.artifact_name} failed: {e}",
                    )

        with tempfile.TemporaryDirectory(prefix="cbci-job-") as tmp:
            tmp_dir = Path(tmp)
            output_file = tmp_dir / "output"
            summary_file = tmp_dir / "summary"
            env_file = tmp_dir / "env"
            for f in (output_file, summary_file, env_file):
                f.touch()

            env = os.environ.copy()
            env.update(self.automation_env)
            env.update(job_spec.env)
            env["GITHUB_OUTPUT"] = str(output_file)
            env["GITHUB_STEP_SUMMARY"] = str(summary_file)
            env["GITHUB_ENV"] = str(env_file)
            env["GITHUB_WORKSPACE"] = str(self.workspace)
            env["CBCI_SUBPROCESS"] = "1"

            # Propagate color settings to subprocess:
            # - NO_COLOR takes precedence (already in env if set)
            # - FORCE_COLOR is propagated if set
            # - Otherwise, set FORCE_COLOR if terminal supports color
            if "NO_COLOR" not in env:
                if "FORCE_COLOR" not in env and get_output_manager().colors_enabled:
                    env["FORCE_COLOR"] = "1"

            timeout = None
            if job_spec.timeout_minutes:
                timeout = job_spec.timeout_minutes * 60 * self.timeout_scale

            process = subprocess.Popen(
                cmd,
                cwd=self.workspace,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
            try:
                output_text, _ = process.communicate(timeout=timeout)
                status = JobStatus.SUCCESS if process.returncode == 0 else JobStatus.FAILURE
                error = None
            except subprocess.TimeoutExpired:
                process.kill()
                output_text, _ = process.communicate()
                status = JobStatus.CANCELLED
                error = f"Timed out after {job_spec.timeout_minutes} minutes"

            outputs = parse_github_output(output_file)
            summary = summary_file.read_text()

        output_text = (output_text or "").rstrip("\n")
        if status is JobStatus.FAILURE and error is None:
            error = "\n".join(output_text.split("\n")[-10:]) or f"exit code {process.returncode}"

        uploaded: list[str] = []
        if gate_open:
            try:
                uploaded = self._upload_artifacts(job_spec, outputs, status)
            except ArtifactError as e:
                status = JobStatus.FAILURE
                error = str(e)

        return JobResult(
            job_id=label,
            status=status,
            elapsed_seconds=time.perf_counter() - start_time,
            outputs=outputs,
            output_text=output_text,
            summary=summary,
            error=error,
            artifacts=uploaded,
        )

    def _upload_artifacts(self, job_spec: JobSpec, outputs: dict[str, str], status: JobStatus) -> list[str]:
        """Store the artifacts the job published, honouring each declaration's `when`."""
        uploaded = []
        for decl in job_spec.task_info.artifacts:
            name = outputs.get(artifact_output_name(decl.key))
            if not name:
                continue
            if status is not JobStatus.SUCCESS and decl.when != "always":
                continue
            retention = decl.retention_days if decl.retention_days is not None else self.retention_days
            stored = self.store.upload(
                name,
                self.workspace,
                decl.paths,
                retention_days=retention,
                if_no_files_found=decl.if_no_files_found,
            )
            if stored:
                uploaded.append(name)
        return uploaded

    def _print_job_result(self, result: JobResult, *, is_last: bool = False, prefix: str = "") -> None:
        """Print job result using recursive output model."""
        output_mgr = get_output_manager()

        # 1. Print header
        output_mgr.job_header(result.job_id, is_last=is_last, prefix=prefix)

        # 2. Get continuation prefix based on is_last
        child_prefix = prefix + output_mgr.continuation_prefix(is_last)

        # 3. Matrix variants are children of the job
        for idx, variant in enumerate(result.variants):
            self._print_job_result(variant, is_last=idx == len(result.variants) - 1, prefix=child_prefix)

        # 4. Print captured output with prefix (if verbose or failed)
        if self.verbose and result.output_text:
            output_mgr.job_output(result.output_text, child_prefix)
        elif result.status is not JobStatus.SUCCESS and result.output_text:
            output_mgr.job_output("\n".join(result.output_text.split("\n")[-10:]), child_prefix)

        # 5. Print status with SAME prefix (styled)
        detail = None
        if result.status is JobStatus.CANCELLED:
            detail = result.error
        elif result.artifacts:
            detail = f"artifacts: {', '.join(result.artifacts)}"
        output_mgr.job_status(str(result.status), result.elapsed_seconds, prefix=child_prefix, detail=detail)

        # 6. Print outputs if verbose (after status, dimmed)
        if self.verbose and result.outputs:
            output_mgr.job_outputs(result.outputs, child_prefix)


def execute_automation(
    automation: AutomationWrapper,
    *,
    cli_command: str = "cbci",
    workspace: Path | str | None = None,
    artifacts_dir: Path | str | None = None,
    dry_run: bool = False,
    verbose: bool = False,
    max_parallel: int = 1,
) -> AutomationResult:
    """Execute an automation locally."""
    executor = LocalExecutor(
        cli_command=cli_command,
        workspace=workspace,
        artifacts_dir=artifacts_dir,
        dry_run=dry_run,
        verbose=verbose,
        max_parallel=max_parallel,
    )
    return executor.execute(automation)

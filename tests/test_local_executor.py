"""Tests for local execution of automations."""

from __future__ import annotations

import subprocess
import threading
import time
from pathlib import Path
from typing import Callable

import pytest

import cbci
from cbci import ArtifactDecl, JobStatus, MatrixRef, job
from cbci import local_executor
from cbci.jobs import Matrix, always
from cbci.local_executor import (
    JobResult,
    LocalExecutor,
    _build_cli_args,
    aggregate_status,
    should_run,
)

# A behaviour receives the command and the subprocess environment and returns
# (returncode, captured output). Returning None for the code simulates a hang.
Behaviour = Callable[[list[str], dict[str, str]], "tuple[int | None, str]"]


class FakePopen:
    """Stands in for the `cbci <task>` subprocess of each job."""

    behaviours: dict[str, Behaviour] = {}
    calls: list[tuple[list[str], dict[str, str]]] = []

    def __init__(self, cmd, *, cwd, env, stdout, stderr, text):
        self.cmd = cmd
        self.env = env
        self.returncode: int | None = None
        self.calls.append((cmd, env))
        behaviour = self.behaviours.get(cmd[1], lambda cmd, env: (0, ""))
        self._code, self._text = behaviour(cmd, env)

    def communicate(self, timeout=None):
        if self._code is None and self.returncode is None:
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        self.returncode = self._code if self._code is not None else -9
        return self._text, None

    def kill(self):
        self.returncode = -9


@pytest.fixture
def fake_popen(monkeypatch):
    FakePopen.behaviours = {}
    FakePopen.calls = []
    monkeypatch.setattr(local_executor.subprocess, "Popen", FakePopen)
    return FakePopen


def write_outputs(env: dict[str, str], **outputs: str) -> None:
    with open(env["GITHUB_OUTPUT"], "a") as f:
        for key, value in outputs.items():
            f.write(f"{key}={value}\n")


def commands(fake: type[FakePopen]) -> list[str]:
    return [" ".join(cmd[1:]) for cmd, _ in fake.calls]


@cbci.task(outputs=["should_skip"])
def check_task() -> cbci.Result[None]:
    return cbci.Ok(None)


@cbci.task(
    outputs=["build_timestamp"],
    artifacts=[
        ArtifactDecl(key="package", paths=("*.rpm",), name="fixed-package", if_no_files_found="error"),
        ArtifactDecl(key="logs", paths=("build-logs/",), when="always"),
    ],
)
def build_task(*, should_skip: bool = False) -> cbci.Result[None]:
    return cbci.Ok(None)


@cbci.task
def install_task(*, should_skip: bool = False, stamp: str = "", rpm_dir: str = "") -> cbci.Result[None]:
    return cbci.Ok(None)


@cbci.task
def report_task(*, should_skip: bool = False, build_result: str = "", install_result: str = "") -> cbci.Result[None]:
    return cbci.Ok(None)


@cbci.task
def variant_task(*, variant: str) -> cbci.Result[None]:
    return cbci.Ok(None)


@cbci.automation(env={"LOG_RETENTION_DAYS": "3"})
def pipeline() -> None:
    check = job(check_task, job_id="check")
    should_skip = check.get("should_skip")
    built = job(
        build_task,
        job_id="build",
        inputs={"should_skip": should_skip},
        gate=should_skip.ne("true"),
        timeout_minutes=1,
    )
    installed = job(
        install_task,
        job_id="install",
        inputs={
            "should_skip": should_skip,
            "stamp": built.get("build_timestamp"),
            "rpm_dir": built.artifact("package", dest="rpms"),
        },
        gate=should_skip.ne("true"),
    )
    job(
        report_task,
        job_id="report",
        inputs={"should_skip": should_skip, "build_result": built.result(), "install_result": installed.result()},
        needs=[check, built, installed],
        condition=always(),
    )


def check_says(value: str) -> Behaviour:
    def behaviour(cmd, env):
        write_outputs(env, should_skip=value)
        return 0, f"should_skip={value}"

    return behaviour


def successful_build(cmd, env):
    workspace = Path(env["GITHUB_WORKSPACE"])
    (workspace / "apache-cloudberry.rpm").write_text("rpm")
    (workspace / "build-logs").mkdir(exist_ok=True)
    (workspace / "build-logs" / "build.log").write_text("ok")
    write_outputs(
        env,
        build_timestamp="20250101_000000",
        package_artifact="fixed-package",
        logs_artifact="build-logs-20250101_000000",
    )
    return 0, "built"


def failed_build(cmd, env):
    workspace = Path(env["GITHUB_WORKSPACE"])
    (workspace / "build-logs").mkdir(exist_ok=True)
    (workspace / "build-logs" / "build.log").write_text("error: compiler exploded")
    write_outputs(env, logs_artifact="build-logs-20250101_000000")
    return 1, "compiler exploded"


@pytest.fixture
def executor(tmp_path) -> LocalExecutor:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return LocalExecutor(workspace=workspace, artifacts_dir=tmp_path / "artifacts")


class TestPipelineExecution:
    def test_successful_run(self, fake_popen, executor) -> None:
        seen_rpm = []

        def install(cmd, env):
            seen_rpm.append((Path(env["GITHUB_WORKSPACE"]) / "rpms" / "apache-cloudberry.rpm").exists())
            return 0, "installed"

        fake_popen.behaviours = {"check-task": check_says("false"), "build-task": successful_build, "install-task": install}

        result = executor.execute(pipeline)

        assert result.success
        assert [r.status for r in result.job_results] == [JobStatus.SUCCESS] * 4
        assert seen_rpm == [True]
        assert commands(fake_popen) == [
            "check-task",
            "build-task --should-skip=false",
            "install-task --should-skip=false --stamp=20250101_000000 --rpm-dir=rpms",
            "report-task --should-skip=false --build-result=success --install-result=success",
        ]
        assert result.get("build").artifacts == ["fixed-package", "build-logs-20250101_000000"]
        assert executor.store.exists("fixed-package")

    def test_subprocess_environment(self, fake_popen, executor) -> None:
        fake_popen.behaviours = {"check-task": check_says("true")}

        executor.execute(pipeline)

        _, env = fake_popen.calls[0]
        assert env["CBCI_SUBPROCESS"] == "1"
        assert env["GITHUB_WORKSPACE"] == str(executor.workspace)
        assert env["LOG_RETENTION_DAYS"] == "3"
        assert executor.retention_days == 3

    def test_failed_build_skips_dependents_but_reports(self, fake_popen, executor) -> None:
        fake_popen.behaviours = {"check-task": check_says("false"), "build-task": failed_build}

        result = executor.execute(pipeline)

        assert not result.success
        assert result.get("build").status is JobStatus.FAILURE
        assert result.get("build").error == "compiler exploded"
        assert result.get("install").status is JobStatus.SKIPPED
        assert result.get("report").status is JobStatus.SUCCESS
        assert commands(fake_popen)[-1] == (
            "report-task --should-skip=false --build-result=failure --install-result=skipped"
        )
        assert [r.job_id for r in result.failed_jobs] == ["build"]
        # Logs declared with when="always" are kept even though the build failed
        assert result.get("build").artifacts == ["build-logs-20250101_000000"]
        assert not executor.store.exists("fixed-package")

    def test_skip_gate_closes_every_job(self, fake_popen, executor) -> None:
        fake_popen.behaviours = {"check-task": check_says("true")}

        result = executor.execute(pipeline)

        # Gated jobs still run their task, which exits early, so the run succeeds
        assert result.success
        assert [r.status for r in result.job_results] == [JobStatus.SUCCESS] * 4
        assert "install-task --should-skip=true --stamp= --rpm-dir=rpms" in commands(fake_popen)
        assert executor.store.uploaded == []

    def test_missing_artifact_fails_job(self, fake_popen, executor) -> None:
        def build_without_package(cmd, env):
            write_outputs(env, build_timestamp="20250101_000000")
            return 0, ""

        fake_popen.behaviours = {"check-task": check_says("false"), "build-task": build_without_package}

        result = executor.execute(pipeline)

        install = result.get("install")
        assert install.status is JobStatus.FAILURE
        assert "Artifact 'fixed-package' not found" in (install.error or "")
        assert not any(cmd.startswith("install-task") for cmd in commands(fake_popen))

    def test_timeout_cancels_job(self, fake_popen, executor) -> None:
        fake_popen.behaviours = {"check-task": check_says("false"), "build-task": lambda cmd, env: (None, "")}

        result = executor.execute(pipeline)

        build = result.get("build")
        assert build.status is JobStatus.CANCELLED
        assert build.error == "Timed out after 1 minutes"
        assert result.get("install").status is JobStatus.SKIPPED
        assert commands(fake_popen)[-1].endswith("--build-result=cancelled --install-result=skipped")
        assert not result.success

    def test_dry_run(self, fake_popen, tmp_path) -> None:
        executor = LocalExecutor(workspace=tmp_path, dry_run=True)

        result = executor.execute(pipeline)

        assert fake_popen.calls == []
        assert result.success
        assert result.get("build").output_text == "Would run: cbci build-task --should-skip="

    def test_verbose_output(self, fake_popen, tmp_path, capsys) -> None:
        fake_popen.behaviours = {"check-task": check_says("true")}
        executor = LocalExecutor(workspace=tmp_path, artifacts_dir=tmp_path / "store", verbose=True)

        executor.execute(pipeline)

        out = capsys.readouterr().out
        assert "should_skip=true" in out
        assert "install" in out and "report" in out


class TestMatrixExecution:
    def test_variants_aggregate(self, fake_popen, executor) -> None:
        @cbci.automation
        def matrix_run() -> None:
            job(
                variant_task,
                job_id="test",
                inputs={"variant": MatrixRef("variant")},
                matrix=Matrix(values={"variant": ["good", "bad"]}, fail_fast=False),
            )

        fake_popen.behaviours = {"variant-task": lambda cmd, env: (1 if "--variant=bad" in cmd else 0, "done")}

        result = executor.execute(matrix_run)

        test = result.get("test")
        assert test.status is JobStatus.FAILURE
        assert [(v.job_id, v.status) for v in test.variants] == [
            ("test (good)", JobStatus.SUCCESS),
            ("test (bad)", JobStatus.FAILURE),
        ]
        assert test.error == "Failed variants: test (bad)"
        assert sorted(commands(fake_popen)) == ["variant-task --variant=bad", "variant-task --variant=good"]

    def test_matrix_ref_requires_matrix(self) -> None:
        with pytest.raises(ValueError, match="without a matrix"):
            _build_cli_args({"variant": MatrixRef("variant")}, {})


class TestConcurrency:
    @staticmethod
    def overlap_tracker(hold: float = 0.2) -> tuple[Behaviour, dict[str, int]]:
        """A behaviour recording how many jobs were inside a subprocess at once."""
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def behaviour(cmd, env):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(hold)
            with lock:
                state["active"] -= 1
            return 0, ""

        return behaviour, state

    @pytest.fixture
    def fan_out(self):
        @cbci.automation
        def fan_out() -> None:
            check = job(check_task, job_id="check")
            job(install_task, job_id="install", needs=[check])
            job(
                variant_task,
                job_id="test",
                inputs={"variant": MatrixRef("variant")},
                needs=[check],
                matrix=Matrix(values={"variant": ["a", "b", "c"]}, fail_fast=False),
            )

        return fan_out

    def test_jobs_sharing_a_workspace_run_one_at_a_time(self, fake_popen, executor, fan_out) -> None:
        behaviour, state = self.overlap_tracker()
        fake_popen.behaviours = {"install-task": behaviour, "variant-task": behaviour}

        result = executor.execute(fan_out)

        assert result.success
        assert len(fake_popen.calls) == 5
        assert state["peak"] == 1

    def test_max_parallel(self, fake_popen, tmp_path, fan_out) -> None:
        behaviour, state = self.overlap_tracker()
        fake_popen.behaviours = {"install-task": behaviour, "variant-task": behaviour}
        executor = LocalExecutor(workspace=tmp_path, artifacts_dir=tmp_path / "store", max_parallel=2)

        result = executor.execute(fan_out)

        assert result.success
        assert state["peak"] == 2

    def test_max_parallel_must_be_positive(self, tmp_path) -> None:
        with pytest.raises(ValueError, match="max_parallel must be at least 1"):
            LocalExecutor(workspace=tmp_path, max_parallel=0)



class TestRunDecision:
    def _jobs(self) -> dict[str, cbci.JobSpec]:
        @cbci.automation
        def auto() -> None:
            first = job(check_task, job_id="first")
            job(install_task, job_id="plain", needs=[first])
            job(report_task, job_id="final", needs=[first], condition=always())

        return {j.job_id: j for j in auto()}

    @pytest.mark.parametrize(
        ("status", "plain_runs"),
        [
            (JobStatus.SUCCESS, True),
            (JobStatus.FAILURE, False),
            (JobStatus.CANCELLED, False),
            (JobStatus.SKIPPED, False),
        ],
    )
    def test_implicit_success(self, status: JobStatus, plain_runs: bool) -> None:
        jobs = self._jobs()
        results = {"first": JobResult(job_id="first", status=status, elapsed_seconds=0)}

        assert should_run(jobs["plain"], results) is plain_runs
        assert should_run(jobs["final"], results)

    def test_cli_args(self) -> None:
        results = {
            "build": JobResult(
                job_id="build",
                status=JobStatus.SUCCESS,
                elapsed_seconds=0,
                outputs={"build_timestamp": "20250101_000000"},
            )
        }
        inputs = {
            "flag": True,
            "stamp": cbci.JobOutputRef("build", "build_timestamp"),
            "missing": cbci.JobOutputRef("build", "nope"),
            "build_result": cbci.JobResultRef("build"),
            "never_ran": cbci.JobResultRef("other"),
        }

        assert _build_cli_args(inputs, results) == [
            "--flag=true",
            "--stamp=20250101_000000",
            "--missing=",
            "--build-result=success",
            "--never-ran=skipped",
        ]


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ([JobStatus.SUCCESS, JobStatus.FAILURE, JobStatus.CANCELLED], JobStatus.FAILURE),
        ([JobStatus.SUCCESS, JobStatus.CANCELLED], JobStatus.CANCELLED),
        ([JobStatus.SKIPPED, JobStatus.SKIPPED], JobStatus.SKIPPED),
        ([JobStatus.SUCCESS, JobStatus.SKIPPED], JobStatus.SUCCESS),
    ],
)
def test_aggregate_status(statuses: list[JobStatus], expected: JobStatus) -> None:
    assert aggregate_status(statuses) == expected

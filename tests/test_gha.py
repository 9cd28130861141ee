"""Tests for GitHub Actions workflow rendering."""

import pytest
from ruamel.yaml import YAML

import cbci
from cbci import ArtifactDecl, MatrixRef, job
from cbci.gha import (
    DEFAULT_RETENTION_EXPR,
    GHAJobSpec,
    StepSpec,
    WorkflowSpec,
    build_run_command,
    render_automation_jobs,
    render_job,
    upload_condition,
)
from cbci.pipeline import app, build_cloudberry, workflow_env

GATE = "needs.check-skip.outputs.should_skip != 'true'"
UNGATED = {"Checkout Apache Cloudberry", "Set up uv", "Install cbci"}


@pytest.fixture
def workflow() -> WorkflowSpec:
    return render_automation_jobs(build_cloudberry, entry_point="cbci", default_setup=app.default_setup)


def _steps(workflow: WorkflowSpec, job_id: str) -> list[StepSpec]:
    return workflow.jobs[job_id].steps


class TestPipelineWorkflow:
    def test_workflow_settings(self, workflow) -> None:
        assert workflow.name == "Apache Cloudberry Build"
        assert workflow.on == {
            "push": {"branches": ["main"]},
            "pull_request": {"branches": ["main"], "types": ["opened", "synchronize", "reopened"]},
            "workflow_dispatch": None,
        }
        assert workflow.concurrency == {"group": "${{ github.workflow }}-${{ github.ref }}", "cancel-in-progress": False}
        assert workflow.permissions == {"contents": "read", "packages": "read", "actions": "write"}
        assert workflow.env is not None and "LOG_RETENTION_DAYS" in workflow.env

    def test_job_graph(self, workflow) -> None:
        assert list(workflow.jobs) == ["check-skip", "build", "rpm-install-test", "test", "report"]
        assert workflow.jobs["check-skip"].needs == []
        assert workflow.jobs["build"].needs == ["check-skip"]
        assert workflow.jobs["rpm-install-test"].needs == ["check-skip", "build"]
        assert workflow.jobs["test"].needs == ["check-skip", "build"]
        assert workflow.jobs["report"].needs == ["check-skip", "build", "rpm-install-test", "test"]

    def test_report_always_runs(self, workflow) -> None:
        report = workflow.jobs["report"]
        assert report.if_condition == "always()"
        assert report.steps[-1].run == (
            'cbci report --should-skip="${{ needs.check-skip.outputs.should_skip }}" '
            '--build-result="${{ needs.build.result }}" --test-result="${{ needs.test.result }}"'
        )

    @pytest.mark.parametrize("job_id", ["build", "rpm-install-test", "test"])
    def test_gate_covers_job_work_not_cbci(self, workflow, job_id: str) -> None:
        steps = _steps(workflow, job_id)
        run_index = next(i for i, s in enumerate(steps) if s.id == "run")

        assert steps[run_index].if_condition is None
        assert {s.name for s in steps[:run_index]} >= UNGATED
        for step in steps:
            if step.name in UNGATED:
                assert step.if_condition is None, step.name
            elif step.id != "run":
                assert step.if_condition is not None
                assert GATE in step.if_condition, step.name

    def test_no_job_runs_cbci_after_a_gated_install(self, workflow) -> None:
        for job_id, gha_job in workflow.jobs.items():
            run_index = next(i for i, s in enumerate(gha_job.steps) if s.id == "run")
            installs = [s for s in gha_job.steps[:run_index] if s.name in ("Set up uv", "Install cbci")]

            assert len(installs) == 2, job_id
            if gha_job.steps[run_index].if_condition is None:
                assert [s.if_condition for s in installs] == [None, None], job_id

    @pytest.mark.parametrize("job_id", ["check-skip", "report"])
    def test_cbci_installed_from_checkout(self, workflow, job_id: str) -> None:
        steps = _steps(workflow, job_id)

        assert [s.name for s in steps[:3]] == ["Checkout Apache Cloudberry", "Set up uv", "Install cbci"]
        assert steps[1].uses == "astral-sh/setup-uv@v5"
        install = (steps[2].run or "").splitlines()
        assert install == [
            'uv venv --python 3.11 "$RUNNER_TEMP/cbci-venv"',
            'uv pip install --python "$RUNNER_TEMP/cbci-venv" .',
            'echo "$RUNNER_TEMP/cbci-venv/bin" >> "$GITHUB_PATH"',
        ]

    def test_workflow_env_ignores_the_shell(self, monkeypatch, tmp_path) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("LOG_RETENTION_DAYS", "30")

        assert workflow_env() == {"LOG_RETENTION_DAYS": "7"}
        (tmp_path / "cbci.toml").write_text("[tool.cbci]\nlog_retention_days = 14\n")
        assert workflow_env() == {"LOG_RETENTION_DAYS": "14"}

    def test_containers_and_timeouts(self, workflow) -> None:
        build = workflow.jobs["build"]
        assert build.container == {
            "image": "apache/incubator-cloudberry:cbdb-build-rocky9-latest",
            "options": "--user root -h cdw",
        }
        assert build.timeout_minutes == 120
        assert workflow.jobs["rpm-install-test"].container["image"].endswith("cbdb-test-rocky9-latest")
        assert workflow.jobs["test"].container["image"].endswith("cbdb-build-rocky9-latest")
        assert workflow.jobs["check-skip"].container is None

    def test_build_steps(self, workflow) -> None:
        steps = _steps(workflow, "build")
        names = [s.name for s in steps]

        assert names[:4] == [
            "Checkout Apache Cloudberry",
            "Checkout CI Build/Test Scripts",
            "Set up uv",
            "Install cbci",
        ]
        assert steps[1].with_ == {
            "repository": "apache/cloudberry-devops-release",
            "path": "cloudberry-devops-release",
            "ref": "main",
        }
        run = steps[4]
        assert run.id == "run"
        assert run.run == 'cbci build --should-skip="${{ needs.check-skip.outputs.should_skip }}"'
        assert names[5:] == ["Upload build logs", "Upload rpm package", "Upload source tarball"]

    def test_build_outputs(self, workflow) -> None:
        outputs = workflow.jobs["build"].outputs
        assert outputs is not None
        assert outputs["build_timestamp"] == "${{ steps.run.outputs.build_timestamp }}"
        assert outputs["rpm_package_artifact"] == "${{ steps.run.outputs.rpm_package_artifact }}"

    def test_rpm_upload(self, workflow) -> None:
        upload = next(s for s in _steps(workflow, "build") if s.name == "Upload rpm package")

        assert upload.uses == "actions/upload-artifact@v4"
        assert upload.if_condition == f"{GATE} && steps.run.outputs.rpm_package_artifact != ''"
        assert upload.with_ == {
            "name": "${{ steps.run.outputs.rpm_package_artifact }}",
            "path": "*.rpm",
            "retention-days": DEFAULT_RETENTION_EXPR,
            "if-no-files-found": "error",
        }

    def test_install_test_downloads_rpm(self, workflow) -> None:
        steps = _steps(workflow, "rpm-install-test")
        download = next(s for s in steps if s.uses == "actions/download-artifact@v4")

        assert download.with_ == {"name": "apache-cloudberry-db-incubating-rpm-build-artifacts", "path": "rpm_build_artifacts"}
        run = next(s for s in steps if s.id == "run")
        assert "--rpm-dir=rpm_build_artifacts" in (run.run or "")
        assert '--build-timestamp="${{ needs.build.outputs.build_timestamp }}"' in (run.run or "")

    def test_matrix_job(self, workflow) -> None:
        test = workflow.jobs["test"]

        assert test.name == "${{ matrix.test }}"
        assert test.outputs is None
        assert test.strategy is not None and test.strategy["fail-fast"] is False
        assert test.strategy["matrix"]["test"] == ["ic-good-opt-off", "ic-expandshrink"]

        run = next(s for s in test.steps if s.id == "run").run or ""
        assert '--test="${{ matrix.test }}"' in run
        assert '--make-target="${{ matrix.make_target }}"' in run
        assert '--optimizer="${{ matrix.pg_settings.optimizer }}"' in run
        assert "--source-dir=source_build_artifacts" in run

        downloads = [s.with_["name"] for s in test.steps if s.uses == "actions/download-artifact@v4"]
        assert downloads == [
            "apache-cloudberry-db-incubating-rpm-build-artifacts",
            "apache-cloudberry-db-incubating-source-build-artifacts",
        ]

    def test_test_logs_always_uploaded(self, workflow) -> None:
        uploads = {s.name: s for s in _steps(workflow, "test") if s.uses == "actions/upload-artifact@v4"}

        assert uploads["Upload test logs"].if_condition == (
            f"always() && {GATE} && steps.run.outputs.test_logs_artifact != ''"
        )
        assert uploads["Upload regression logs"].if_condition == (
            f"always() && {GATE} && steps.run.outputs.regression_logs_artifact != ''"
        )
        assert isinstance(uploads["Upload regression logs"].with_["path"], str)
        assert "src/test/regress/regression.diffs" in uploads["Upload regression logs"].with_["path"]

    def test_yaml(self, workflow) -> None:
        text = workflow.to_yaml(include_header=True, source="automation: build_cloudberry")

        assert text.startswith("# ====")
        assert "# GENERATED FILE - DO NOT EDIT MANUALLY" in text
        assert "# Source: automation: build_cloudberry" in text

        data = YAML(typ="safe").load(text)
        assert list(data) == ["name", "on", "concurrency", "permissions", "env", "jobs"]
        build = data["jobs"]["build"]
        assert list(build)[:4] == ["name", "needs", "runs-on", "timeout-minutes"]
        upload = build["steps"][-3]
        assert upload["with"]["path"] == "build-logs/"
        regression = data["jobs"]["test"]["steps"][-1]
        assert regression["with"]["path"].endswith("demoDataDir2/log/\n")
        install = data["jobs"]["check-skip"]["steps"][2]
        assert install["run"].endswith('>> "$GITHUB_PATH"\n')
        assert "run: |" in text


@cbci.task(
    outputs=["value"],
    artifacts=[ArtifactDecl(key="report", paths=("a.txt", "b.txt"), retention_days=3, when="always")],
)
def literal_task(*, text: str = "", flag: bool = False, count: int = 0) -> cbci.Result[None]:
    return cbci.Ok(None)


class TestRendering:
    def test_literal_inputs_are_quoted(self) -> None:
        @cbci.automation
        def auto() -> None:
            job(literal_task, inputs={"text": "two words", "flag": True, "count": 3})

        (spec,) = auto()
        assert build_run_command(spec, "python -m cbci") == (
            "python -m cbci literal-task --text='two words' --flag=true --count=3"
        )

    def test_default_setup_and_precedence(self) -> None:
        default = [cbci.SetupStep(name="Default", run="echo default")]
        own = [cbci.SetupStep(name="Own", run="echo own")]

        @cbci.automation
        def auto() -> None:
            job(literal_task, job_id="uses-default")
            job(literal_task, job_id="uses-own", setup=own)

        first, second = auto()
        assert render_job(first, default_setup=default).steps[0].name == "Default"
        assert render_job(second, default_setup=default).steps[0].name == "Own"

    def test_upload_without_gate(self) -> None:
        decl = ArtifactDecl(key="report", paths=("a.txt",), when="always")
        assert upload_condition(decl, None) == "always() && steps.run.outputs.report_artifact != ''"
        assert upload_condition(ArtifactDecl(key="x"), None) == "steps.run.outputs.x_artifact != ''"

    def test_fixed_retention_and_multiline_paths(self) -> None:
        @cbci.automation
        def auto() -> None:
            job(literal_task)

        (spec,) = auto()
        upload = render_job(spec).steps[-1]
        assert upload.with_["retention-days"] == 3
        assert upload.with_["path"] == "a.txt\nb.txt\n"

    def test_matrix_ref_in_name_and_inputs(self) -> None:
        @cbci.automation
        def auto() -> None:
            job(
                literal_task,
                name="${{ matrix.text }}",
                inputs={"text": MatrixRef("text")},
                matrix=cbci.Matrix(values={"text": ["a", "b"]}),
            )

        gha_job = render_job(auto()[0])
        assert gha_job.strategy == {"fail-fast": True, "matrix": {"text": ["a", "b"]}}
        assert gha_job.outputs is None

    def test_working_directory(self) -> None:
        @cbci.automation
        def auto() -> None:
            job(literal_task)

        gha_job = render_job(auto()[0], working_directory="ci")
        assert gha_job.to_dict()["defaults"] == {"run": {"working-directory": "ci"}}


def test_job_spec_key_order() -> None:
    spec = GHAJobSpec(
        job_id="j",
        name="J",
        needs=["a"],
        if_condition="always()",
        timeout_minutes=5,
        container={"image": "img"},
        steps=[StepSpec(name="s", run="true")],
    )
    assert list(spec.to_dict()) == ["name", "needs", "if", "runs-on", "timeout-minutes", "container", "steps"]

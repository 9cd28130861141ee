"""
The Apache Cloudberry build pipeline and the `cbci` application.

    cbci generate-gha            # write .github/workflows/build-cloudberry.yml
    cbci build-cloudberry -v     # run the whole pipeline on this host
    cbci build --should-skip=false
"""

from __future__ import annotations

from .builtin_tasks import builtin_commands
from .command_group import App, CommandGroup
from .config import PipelineConfig, load_config
from .jobs import (
    ArtifactRef,
    Concurrency,
    Container,
    MatrixRef,
    always,
    automation,
    job,
    on_pull_request,
    on_push,
    on_workflow_dispatch,
)
from .matrix import variants_matrix
from .task import SetupStep
from .tasks import build, check_skip, report, rpm_install_test, run_tests

RPM_DIR = "rpm_build_artifacts"
SOURCE_DIR = "source_build_artifacts"

PULL_REQUEST_TYPES = ["opened", "synchronize", "reopened"]


def workflow_config() -> PipelineConfig:
    """The config file alone. The committed workflow must not depend on the generating shell."""
    return load_config(environ={})


def workflow_env() -> dict[str, str]:
    return {"LOG_RETENTION_DAYS": str(workflow_config().log_retention_days)}


def checkout_steps(*, scripts: bool) -> list[SetupStep]:
    """
    Checkout of this repository, optionally followed by the CI scripts repository.

    The repository checkout is ungated since `cbci` is installed from it.
    """
    config = workflow_config()
    steps = [
        SetupStep(
            name="Checkout Apache Cloudberry",
            uses="actions/checkout@v4",
            with_={"fetch-depth": 1},
            gated=False,
        )
    ]

    if scripts:
        steps.append(
            SetupStep(
                name="Checkout CI Build/Test Scripts",
                uses="actions/checkout@v4",
                with_={
                    "repository": config.scripts_repository,
                    "path": config.scripts_dir,
                    "ref": config.scripts_ref,
                },
            )
        )
    return steps


def install_steps() -> list[SetupStep]:
    return list(app.default_setup)


@automation(
    trigger=(
        on_push(branches=["main"])
        | on_pull_request(branches=["main"], types=PULL_REQUEST_TYPES)
        | on_workflow_dispatch()
    ),
    name="Apache Cloudberry Build",
    concurrency=Concurrency(group="${{ github.workflow }}-${{ github.ref }}", cancel_in_progress=False),
    permissions={"contents": "read", "packages": "read", "actions": "write"},
    env=workflow_env(),
)
def build_cloudberry() -> None:
    """Build, package and test Apache Cloudberry, then report."""
    config = workflow_config()
    build_container = Container(image=config.build_image, options=config.container_options)
    test_container = Container(image=config.test_image, options=config.container_options)

    check = job(
        check_skip,
        job_id="check-skip",
        setup=[*checkout_steps(scripts=False), *install_steps()],
    )
    should_skip = check.get("should_skip")
    not_skipped = should_skip.ne("true")

    compiled = job(
        build,
        job_id="build",
        name="Build Apache Cloudberry",
        inputs={"should_skip": should_skip},
        gate=not_skipped,
        container=build_container,
        timeout_minutes=config.timeout_minutes,
        setup=[*checkout_steps(scripts=True), *install_steps()],
    )
    rpm_package: ArtifactRef = compiled.artifact("rpm_package", dest=RPM_DIR)
    source_tarball: ArtifactRef = compiled.artifact("source_tarball", dest=SOURCE_DIR)

    installed = job(
        rpm_install_test,
        job_id="rpm-install-test",
        name="RPM Install Test Apache Cloudberry",
        inputs={
            "should_skip": should_skip,
            "build_timestamp": compiled.get("build_timestamp"),
            "rpm_dir": rpm_package,
        },
        gate=not_skipped,
        container=test_container,
        timeout_minutes=config.timeout_minutes,
        setup=[*checkout_steps(scripts=False), *install_steps()],
    )

    tested = job(
        run_tests,
        job_id="test",
        name="${{ matrix.test }}",
        inputs={
            "should_skip": should_skip,
            "build_timestamp": compiled.get("build_timestamp"),
            "test": MatrixRef("test"),
            "make_target": MatrixRef("make_target"),
            "make_directory": MatrixRef("make_directory"),
            "optimizer": MatrixRef("pg_settings.optimizer"),
            "rpm_dir": rpm_package,
            "source_dir": source_tarball,
        },
        matrix=variants_matrix(),
        gate=not_skipped,
        container=build_container,
        timeout_minutes=config.timeout_minutes,
        setup=[*checkout_steps(scripts=True), *install_steps()],
    )

    job(
        report,
        job_id="report",
        name="Generate Apache Cloudberry Build Report",
        inputs={
            "should_skip": should_skip,
            "build_result": compiled.result(),
            "test_result": tested.result(),
        },
        needs=[check, compiled, installed, tested],
        condition=always(),
        setup=[*checkout_steps(scripts=False), *install_steps()],
    )


app = App(
    commands=[
        CommandGroup("Pipeline", [check_skip, build, rpm_install_test, run_tests, report]),
        builtin_commands(),
    ],
    automations=[build_cloudberry],
)


def main() -> None:
    app.main()

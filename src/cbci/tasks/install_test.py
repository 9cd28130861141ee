"""The rpm-install-test job: install the built package on a clean test image."""

from __future__ import annotations

from pathlib import Path

from ..artifacts import ArtifactDecl, install_logs_name
from ..artifacts import build_timestamp as new_build_timestamp
from ..config import PipelineConfig, load_config
from ..context import append_summary, save_artifact, set_output
from ..environment import setup_environment
from ..result import Ok, Result
from ..rpm import (
    find_rpm,
    install_rpm,
    package_info,
    query_rpm,
    sha256sum,
    verify_installed_binaries,
    verify_rpm_contents,
)
from ..step import StepRecord, StepRunner
from ..subprocess import run
from ..task import task
from .common import fresh_log_root, log, skip, utc_stamp, workspace_dir


def verify_downloaded_rpm(rpm_dir: Path, config: PipelineConfig, log_file: Path) -> tuple[Path, str, str]:
    """
    Find the downloaded package and check it holds the critical binaries.

    Returns the package path, its version and its release.
    """
    rpm_file = find_rpm(rpm_dir, config.package_name)
    log(log_file, "=== RPM Verification Summary ===")
    log(log_file, f"Timestamp: {utc_stamp()}")
    log(log_file, f"RPM File: {rpm_file}")
    package_info(rpm_file, log_file)

    version = query_rpm(rpm_file, "VERSION")
    release = query_rpm(rpm_file, "RELEASE")
    verify_rpm_contents(rpm_file, config.critical_binaries)

    log(log_file, "RPM Details:")
    log(log_file, f"- Version: {version}")
    log(log_file, f"- Release: {release}")
    log(log_file, "Checksum:")
    log(log_file, sha256sum(rpm_file))
    return rpm_file, version, release


def install_downloaded_rpm(rpm_file: Path, config: PipelineConfig, log_file: Path, *, list_files: bool) -> None:
    log(log_file, "=== RPM Installation Log ===")
    log(log_file, f"Timestamp: {utc_stamp()}")
    log(log_file, f"RPM File: {rpm_file}")
    install_rpm(rpm_file, Path(config.install_prefix), log_file=log_file)
    run("rpm", "-qi", config.package_name, log_file=log_file)
    if list_files:
        log(log_file, "Installed files:")
        run("rpm", "-ql", config.package_name, log_file=log_file)


@task(
    outputs=["rpm_file", "version", "release"],
    artifacts=[ArtifactDecl(key="install_logs", paths=("install-logs/",))],
)
def rpm_install_test(
    *,
    should_skip: bool = False,
    build_timestamp: str = "",
    rpm_dir: str = "rpm_build_artifacts",
) -> Result[list[StepRecord]]:
    """
    Install the RPM from the build job on the test image and check the installed binaries.

    Args:
        should_skip: Skip everything (CI skip flag)
        build_timestamp: The build job's timestamp, used to name the install logs
        rpm_dir: Directory the RPM artifact was downloaded to, relative to the workspace

    """
    if should_skip:
        skip("RPM install test skipped via CI skip flag")
        return Ok([])

    config = load_config()
    workspace = workspace_dir()
    log_root = fresh_log_root(workspace, "install-logs")
    details = log_root / "details"
    verified: dict[str, Path] = {}
    steps = StepRunner()

    def verify() -> None:
        rpm_file, version, release = verify_downloaded_rpm(
            workspace / rpm_dir, config, details / "rpm-verification.log"
        )
        verified["rpm_file"] = rpm_file
        set_output("rpm_file", str(rpm_file))
        set_output("version", version)
        set_output("release", release)

    def installed_summary() -> None:
        try:
            info = run("rpm", "-qi", config.package_name, capture=True).stdout.rstrip()
        except FileNotFoundError:
            info = "rpm is not available"
        append_summary("# Installed Package Summary", "```", info, "```")

    save_artifact("install_logs", install_logs_name(build_timestamp or new_build_timestamp()))

    steps.run("Setup Apache Cloudberry build environment", lambda: setup_environment(workspace, log_root, config))
    steps.run("Verify RPM artifacts", verify)
    steps.run(
        "Install Cloudberry RPM",
        lambda: install_downloaded_rpm(verified["rpm_file"], config, details / "rpm-installation.log", list_files=True),
    )
    steps.run(
        "Verify installed binaries",
        lambda: verify_installed_binaries(Path(config.install_prefix), config.critical_binaries),
    )
    steps.run("Generate Install Test Job Summary End", installed_summary, always=True)

    return steps.finish()

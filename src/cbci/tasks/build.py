"""The build job: compile, package and unit test Apache Cloudberry."""

from __future__ import annotations

import shutil
import tarfile
from pathlib import Path

from ..artifacts import (
    RPM_ARTIFACT,
    SOURCE_ARTIFACT,
    SOURCE_TARBALL,
    ArtifactDecl,
    build_logs_name,
    build_timestamp,
)
from ..config import PipelineConfig, load_config
from ..context import append_summary, export_env, out, save_artifact, set_output
from ..environment import relocate_scripts_checkout, run_cloudberry_script, setup_environment
from ..result import Ok, Result
from ..rpm import (
    os_major_version,
    package_info,
    rpm_file_name,
    sha256sum,
    verify_installed_binaries,
    verify_rpm_contents,
)
from ..step import StepFailure, StepRecord, StepRunner
from ..subprocess import run
from ..task import task
from .common import first_line_of, fresh_log_root, log, os_description, skip, utc_stamp, workspace_dir


def verify_build_artifacts(prefix: Path, binaries: tuple[str, ...], log_file: Path) -> None:
    """Check the installation tree the build produced, then run each binary's --version."""
    log(log_file, "=== Build Artifacts Verification ===")
    log(log_file, f"Timestamp: {utc_stamp()}")
    if not prefix.is_dir():
        raise StepFailure("Build artifacts directory not found")

    log(log_file, "Checking critical binaries...")
    verify_installed_binaries(prefix, binaries)

    log(log_file, "Testing binary execution...")
    for binary in binaries:
        if run(prefix / binary, "--version", log_file=log_file).failed:
            raise StepFailure(f"{Path(binary).name} binary verification failed")
    log(log_file, "All build artifacts verified successfully")


def create_source_tarball(workspace: Path, tarball: Path) -> Path:
    """
    Archive the source tree as a gzipped tarball.

    Members are rooted at the tree's directory name, matching
    ``tar czf <tarball> -C <parent> ./<name>``.
    """
    staging = workspace.parent / tarball.name

    def exclude_previous(info: tarfile.TarInfo) -> tarfile.TarInfo | None:
        return None if info.name.endswith(tarball.name) else info

    with tarfile.open(staging, "w:gz") as archive:
        archive.add(workspace, arcname=workspace.name, filter=exclude_previous)
    shutil.move(str(staging), str(tarball))
    return tarball


def verify_source_tarball(tarball: Path) -> int:
    """Read the whole tarball; returns the member count."""
    try:
        with tarfile.open(tarball, "r:gz") as archive:
            return len(archive.getmembers())
    except (OSError, tarfile.TarError) as e:
        raise StepFailure("Source tarball verification failed") from e


def build_rpm(workspace: Path, config: PipelineConfig, log_file: Path) -> None:
    """Lay out the rpmbuild tree and run the RPM build script."""
    if run("rpmdev-setuptree", log_file=log_file).failed:
        raise StepFailure("rpmdev-setuptree failed")

    spec_link = Path.home() / "rpmbuild" / "SPECS" / f"{config.package_name}.spec"
    spec_link.unlink(missing_ok=True)
    spec_link.symlink_to(config.rpm_spec_file(workspace))
    shutil.copy2(workspace / "LICENSE", config.install_prefix)

    result = run(
        config.rpm_build_script(workspace),
        "--version",
        config.cbdb_version,
        "--release",
        str(config.build_number),
        log_file=log_file,
    )
    if result.failed:
        raise StepFailure("RPM build failed")


@task(
    outputs=["build_timestamp", "rpm_file", "version", "build_number"],
    artifacts=[
        ArtifactDecl(key="build_logs", paths=("build-logs/",)),
        ArtifactDecl(key="rpm_package", paths=("*.rpm",), name=RPM_ARTIFACT, if_no_files_found="error"),
        ArtifactDecl(
            key="source_tarball",
            paths=(SOURCE_TARBALL,),
            name=SOURCE_ARTIFACT,
            if_no_files_found="error",
        ),
    ],
)
def build(*, should_skip: bool = False) -> Result[list[StepRecord]]:
    """
    Build Apache Cloudberry from source, package it as an RPM and run the unit tests.

    Publishes the build logs, the RPM and the source tarball as artifacts.
    """
    if should_skip:
        skip("Build skipped via CI skip flag")
        return Ok([])

    config = load_config()
    workspace = workspace_dir()
    log_root = fresh_log_root(workspace, "build-logs")
    details = log_root / "details"
    prefix = Path(config.install_prefix)
    tarball = workspace / config.source_tarball
    steps = StepRunner()

    def set_timestamp() -> None:
        timestamp = build_timestamp()
        set_output("build_timestamp", timestamp)
        export_env("BUILD_TIMESTAMP", timestamp)
        save_artifact("build_logs", build_logs_name(timestamp))

    def summary_start() -> None:
        append_summary(
            "# Build Job Summary",
            "## Environment",
            f"- Start Time: {utc_stamp()}",
            f"- OS Version: {os_description()}",
            f"- GCC Version: {first_line_of('gcc', '--version')}",
        )

    def source_tarball() -> None:
        artifact_log = details / "artifact-creation.log"
        log(artifact_log, "=== Artifact Creation Log ===")
        log(artifact_log, f"Timestamp: {utc_stamp()}")
        log(artifact_log, "Creating source tarball...")
        create_source_tarball(workspace, tarball)
        log(artifact_log, "Verifying source tarball contents...")
        count = verify_source_tarball(tarball)
        log(artifact_log, f"Source tarball holds {count} entries")
        save_artifact("source_tarball", SOURCE_ARTIFACT)

    def rpm_package() -> None:
        log(details / "artifact-creation.log", "Creating RPM package...")
        build_rpm(workspace, config, details / "artifact-creation.log")

    def verify_rpm() -> None:
        artifact_log = details / "artifact-creation.log"
        try:
            os_major = os_major_version(Path("/etc/os-release").read_text())
        except (OSError, ValueError) as e:
            raise StepFailure(f"Cannot determine OS version: {e}") from e
        rpm_file = (
            Path.home()
            / "rpmbuild"
            / "RPMS"
            / "x86_64"
            / rpm_file_name(config.package_name, config.cbdb_version, config.build_number, os_major)
        )
        if not rpm_file.is_file():
            raise StepFailure("RPM file not found")
        shutil.copy2(rpm_file, workspace)

        package_info(rpm_file, artifact_log)
        verify_rpm_contents(rpm_file, config.critical_binaries)

        log(artifact_log, "Calculating checksums...")
        for path in (rpm_file, tarball):
            log(details / "checksums.log", sha256sum(path))
        log(artifact_log, "Artifacts created and verified successfully")

        set_output("rpm_file", str(rpm_file))
        set_output("version", config.cbdb_version)
        set_output("build_number", str(config.build_number))
        save_artifact("rpm_package", RPM_ARTIFACT)

    def summary_end() -> None:
        append_summary("## Build Results", f"- End Time: {utc_stamp()}")

    steps.run("Set build timestamp", set_timestamp)
    steps.run("Move cloudberry-devops-release directory", lambda: relocate_scripts_checkout(workspace, config))
    steps.run(
        "Setup Apache Cloudberry build environment",
        lambda: setup_environment(workspace, log_root, config, include_compiler=True),
    )
    steps.run("Generate Build Job Summary Start", summary_start)
    steps.run(
        "Run Apache Cloudberry configure script",
        lambda: run_cloudberry_script("configure-cloudberry.sh", workspace, config, failure="Configure script failed"),
    )
    steps.run(
        "Run Apache Cloudberry build script",
        lambda: run_cloudberry_script("build-cloudberry.sh", workspace, config, failure="Build script failed"),
    )
    steps.run(
        "Verify build artifacts",
        lambda: verify_build_artifacts(prefix, config.critical_binaries, details / "build-verification.log"),
    )
    steps.run("Create source tarball", source_tarball)
    steps.run("Create RPM package", rpm_package)
    steps.run("Verify RPM package", verify_rpm)
    steps.run(
        "Run Apache Cloudberry unittest script",
        lambda: run_cloudberry_script("unittest-cloudberry.sh", workspace, config, failure="Unittest script failed"),
    )
    steps.run("Generate Build Job Summary End", summary_end, always=True)

    out(f"Build finished with {sum(r.outcome == 'success' for r in steps.records)} of {len(steps.records)} steps done")
    return steps.finish()

"""Container preparation and the build automation scripts."""

from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path

from .config import PipelineConfig
from .context import export_env, out
from .step import StepFailure
from .subprocess import run

TOOL_CACHE = Path("/__t")


def relocate_scripts_checkout(workspace: Path, config: PipelineConfig) -> Path:
    """
    Move the script repository checkout from inside the workspace to beside it.

    The scripts resolve their paths relative to SRC_DIR/.., so they must live
    next to the source tree. Returns the new location.
    """
    source = workspace / config.scripts_dir
    target = config.scripts_root(workspace)
    if not source.is_dir():
        if target.is_dir():
            return target
        raise StepFailure("Container initialization failed")
    if target.exists():
        shutil.rmtree(target)
    shutil.move(str(source), str(target))
    return target


def _chmod_tree(root: Path, mode: int) -> None:
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = Path(dirpath) / name
            if not path.is_symlink():
                path.chmod(mode)
    root.chmod(mode)


def _clear_directory(directory: Path) -> None:
    if not directory.is_dir():
        return
    for entry in directory.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry, ignore_errors=True)
        else:
            entry.unlink(missing_ok=True)


def setup_environment(
    workspace: Path,
    log_root: Path,
    config: PipelineConfig,
    *,
    include_compiler: bool = False,
) -> Path:
    """
    Prepare the container for building or testing.

    Runs the init script as the build user, creates ``<log_root>/details``,
    hands the workspace to the build user, frees the runner tool cache and
    records disk, memory and environment information. Exports SRC_DIR.
    Returns the details directory.
    """
    if run(config.init_script, as_user=config.build_user).failed:
        raise StepFailure("Container initialization failed")

    details = log_root / "details"
    details.mkdir(parents=True, exist_ok=True)
    run("chown", "-R", f"{config.build_user}:{config.build_user}", workspace, check=True)
    _chmod_tree(workspace, 0o755)
    log_root.chmod(0o777)

    run("df", "-kh", "/")
    _clear_directory(TOOL_CACHE)
    run("df", "-kh", "/")

    run("df", "-h", log_file=details / "disk-usage.log")
    run("free", "-h", log_file=details / "memory-usage.log")

    env_log = details / "environment.log"
    with open(env_log, "a") as f:
        f.write("=== Environment Information ===\n")
    run("uname", "-a", log_file=env_log)
    if include_compiler:
        run("gcc", "--version", log_file=env_log)
    run("df", "-h", log_file=env_log)
    run("free", "-h", log_file=env_log)
    run("env", log_file=env_log)

    export_env("SRC_DIR", str(workspace))
    return details


def run_cloudberry_script(
    name: str,
    workspace: Path,
    config: PipelineConfig,
    *,
    failure: str,
    env: dict[str, str] | None = None,
    log_file: Path | None = None,
) -> None:
    """
    Run one of the build automation scripts as the build user.

    The script gets SRC_DIR plus `env`, runs from the workspace, and a non-zero
    exit raises StepFailure(failure).
    """
    script = config.script_path(workspace, name)
    if not script.is_file():
        raise StepFailure(f"{failure}: {script} not found")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    script_env = {**(env or {}), "SRC_DIR": str(workspace)}
    out(f"Running {name}")
    result = run(script, cwd=workspace, env=script_env, as_user=config.build_user, log_file=log_file)
    if result.failed:
        raise StepFailure(failure)

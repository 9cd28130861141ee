"""
Built-in utility tasks that ship with cbci.

These tasks are always available next to the pipeline tasks.
"""

from __future__ import annotations

import inspect as py_inspect
from pathlib import Path
from typing import TYPE_CHECKING

from .context import (
    dbg,
    get_automation,
    get_automation_registry,
    get_cli_command,
    get_default_setup,
    get_task,
    get_task_registry,
    get_working_directory,
    out,
)
from .gha import render_automation_jobs, validate_workflow
from .result import Err, Ok, Result
from .subprocess import run
from .task import task

if TYPE_CHECKING:
    from .command_group import CommandGroup
    from .jobs import AutomationInfo
    from .task import TaskInfo


def find_git_root() -> Path | None:
    """Find the git repository root directory."""
    try:
        result = run("git", "rev-parse", "--show-toplevel", capture=True)
    except FileNotFoundError:
        return None
    if result.returncode != 0:
        return None
    return Path(result.stdout.strip())


def _get_default_workflows_dir() -> Path | None:
    """Get the default .github/workflows directory."""
    git_root = find_git_root()
    if git_root:
        return git_root / ".github" / "workflows"
    return None


def workflow_filename(name: str) -> str:
    """Workflow file for an automation, e.g. build-cloudberry.yml."""
    return f"{name.replace('_', '-')}.yml"


def _first_doc_line(doc: str | None) -> str | None:
    if doc:
        return doc.strip().split("\n")[0]
    return None


@task
def generate_gha(
    *,
    target: str | None = None,
    output_dir: str | None = None,
    check_only: bool = False,
) -> Result[list[Path]]:
    """
    Generate GitHub Actions workflow YAML for automations.

    By default, generates workflows for ALL registered automations
    to .github/workflows/ in the git repository root.

    Args:
        target: Specific automation to generate. If not provided, generates all.
        output_dir: Output directory for workflow files. Default: .github/workflows/
        check_only: If True, only check if files are up-to-date (don't write).
                   Returns Err if any files would change.

    Returns:
        List of Path objects for files that were updated/created.
        Empty list means no files were changed.

    Examples:
        # Generate all workflows
        cbci generate-gha

        # Check if workflows are up-to-date (for CI)
        cbci generate-gha --check-only=true

    """
    if output_dir:
        workflows_dir = Path(output_dir)
    else:
        maybe_workflows_dir = _get_default_workflows_dir()
        if maybe_workflows_dir is None:
            return Err("Could not find git root. Specify --output-dir explicitly.")
        workflows_dir = maybe_workflows_dir

    working_directory = get_working_directory()
    entry_point = get_cli_command()
    default_setup = get_default_setup()

    targets: list[AutomationInfo] = []
    if target:
        automation_info = get_automation(target)
        if automation_info is None:
            auto_names = [info.name for info in get_automation_registry().values()]
            msg = f"'{target}' not found.\n"
            if auto_names:
                msg += f"Automations: {', '.join(auto_names)}"
            return Err(msg)
        targets.append(automation_info)
    else:
        targets.extend(get_automation_registry().values())

    if not targets:
        out("No automations registered.")
        return Ok([])

    changed_paths: list[Path] = []
    errors: list[str] = []

    mode = "Checking" if check_only else "Generating"
    out(f"{mode} {len(targets)} workflow(s) to {workflows_dir}")

    for info in targets:
        filename = workflow_filename(info.name)
        output_file = workflows_dir / filename

        try:
            spec = render_automation_jobs(
                info.wrapper,
                entry_point=entry_point,
                working_directory=working_directory,
                default_setup=default_setup,
            )
        except (ValueError, TypeError) as e:
            errors.append(f"{info.name}: {e}")
            out(f"  [!] {filename} - ERROR: {e}")
            continue

        spec.path = output_file
        yaml_content = spec.to_yaml(include_header=True, source=f"automation: {info.name}")

        if output_file.exists():
            if output_file.read_text() != yaml_content:
                status = "would change" if check_only else "updated"
                changed_paths.append(output_file)
            else:
                status = "unchanged"
        else:
            status = "would create" if check_only else "created"
            changed_paths.append(output_file)

        if not check_only and status in ("created", "updated"):
            workflows_dir.mkdir(parents=True, exist_ok=True)
            output_file.write_text(yaml_content)

        # Validate with actionlint if available
        valid, validation_msg = validate_workflow(yaml_content, output_file)
        if valid:
            dbg(f"actionlint: {filename} passed validation")
        elif "not found" in validation_msg:
            dbg("actionlint: not available, skipping validation")
        else:
            errors.append(f"{info.name}: actionlint: {validation_msg}")

        icon = {"created": "+", "updated": "~", "unchanged": "=", "would change": "~", "would create": "+"}[status]
        description = _first_doc_line(info.doc)
        desc = f" - {description}" if description else ""
        out(f"  [{icon}] {filename}{desc}")

    if errors:
        return Err("Errors generating workflows:\n" + "\n".join(errors))

    if check_only and changed_paths:
        return Err(
            f"Workflows out of sync ({len(changed_paths)} file(s) would change).\n"
            "Run without --check-only to update."
        )

    if check_only:
        out("All workflows up-to-date!")
    else:
        out(f"Generated {len(targets)} workflow(s)")

    return Ok(changed_paths)


@task
def inspect(*, target: str) -> Result[None]:
    """
    Inspect a task or automation without executing it.

    Shows signature, documentation, and for automations, the job list.

    Args:
        target: Name of the task or automation to inspect.

    Examples:
        cbci inspect --target=build
        cbci inspect --target=build_cloudberry

    """
    task_info = get_task(target)
    if task_info is not None:
        _print_task_info(task_info)
        return Ok(None)

    automation_info = get_automation(target)
    if automation_info is not None:
        _print_automation_info(automation_info)
        return Ok(None)

    task_names = [info.name for info in get_task_registry().values()]
    auto_names = [info.name for info in get_automation_registry().values()]

    msg = f"'{target}' not found.\n"
    if task_names:
        msg += f"Tasks: {', '.join(task_names)}\n"
    if auto_names:
        msg += f"Automations: {', '.join(auto_names)}"
    return Err(msg)


def _print_task_info(task_info: TaskInfo) -> None:
    out(f"\nTask: {task_info.name}")
    out(f"Module: {task_info.module}")

    description = _first_doc_line(task_info.doc)
    if description:
        out(f"\nDescription: {description}")

    out("\nParameters:")
    params = task_info.signature.parameters
    for param_name, param in params.items():
        annotation = param.annotation
        type_str = annotation.__name__ if hasattr(annotation, "__name__") else str(annotation)
        if param.default is not py_inspect.Parameter.empty:
            out(f"  --{param_name}: {type_str} = {param.default!r}")
        else:
            out(f"  --{param_name}: {type_str} [required]")
    if not params:
        out("  (none)")

    if task_info.outputs:
        out(f"\nOutputs: {', '.join(task_info.outputs)}")
    if task_info.artifacts:
        out(f"Artifacts: {', '.join(a.key for a in task_info.artifacts)}")


def _print_automation_info(automation_info: AutomationInfo) -> None:
    out(f"\nAutomation: {automation_info.name}")
    out(f"Module: {automation_info.module}")

    description = _first_doc_line(automation_info.doc)
    if description:
        out(f"\nDescription: {description}")

    if automation_info.trigger:
        out(f"\nTrigger: {', '.join(automation_info.trigger.to_gha_dict())}")

    jobs = automation_info.wrapper.plan()
    out(f"\nJobs ({len(jobs)}):")
    for job in jobs:
        needs_str = ""
        deps = job.get_all_dependencies()
        if deps:
            needs_str = f" (needs: {', '.join(d.job_id for d in deps)})"
        matrix_str = ""
        if job.matrix is not None:
            matrix_str = f" [matrix: {len(job.matrix.expand())} variants]"
        condition_str = ""
        if job.condition is not None:
            condition_str = f" [if: {job.condition.to_gha_expr()}]"
        out(f"  - {job.job_id}{needs_str}{matrix_str}{condition_str}")


def builtin_commands() -> CommandGroup:
    """
    Returns a CommandGroup containing all built-in cbci commands.

    Built-in commands:
        - generate_gha: Generate GitHub Actions workflow YAML
        - inspect: Inspect tasks or automations

    """
    from .command_group import CommandGroup

    return CommandGroup("Built-in", [generate_gha, inspect])

"""CLI generation for cbci tasks."""

from __future__ import annotations

import inspect
import os
import sys
import time
import typing
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast, get_args, get_origin

import click

from .command_group import CommandGroup
from .context import (
    CbciContext,
    is_debug,
    set_cbci_context,
    set_cli_command,
    set_debug,
    set_working_directory,
)
from .output import get_output_manager
from .result import Result
from .task import SetupStep, TaskInfo, TaskWrapper

if TYPE_CHECKING:
    from .jobs import AutomationInfo, AutomationWrapper


def _get_console():
    """Get console from OutputManager to respect NO_COLOR settings."""
    return get_output_manager().console


def _to_kebab_case(name: str) -> str:
    """Convert a snake_case name to kebab-case for CLI."""
    return name.replace("_", "-")


class ExplicitBool(click.ParamType):
    """
    Boolean option that takes an explicit value, as in ``--should-skip=true``.

    An empty value is false: an output of a job that failed before setting it
    reaches the next job as an empty string.
    """

    name = "boolean"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> bool:
        if isinstance(value, bool):
            return value
        if str(value).strip() == "":
            return False
        return click.BOOL.convert(value, param, ctx)


EXPLICIT_BOOL = ExplicitBool()


def _get_click_type(annotation: Any) -> tuple[click.ParamType, bool]:
    """
    Convert a Python type annotation to a Click type.

    Returns (click_type, is_required).
    """
    # Check for Optional (Union[X, None])
    origin = get_origin(annotation)
    if origin is not None:
        args = get_args(annotation)
        if type(None) in args:
            non_none_types = [a for a in args if a is not type(None)]
            if len(non_none_types) == 1:
                inner_type, _ = _get_click_type(non_none_types[0])
                return inner_type, False

    if annotation is str:
        return click.STRING, True
    elif annotation is int:
        return click.INT, True
    elif annotation is float:
        return click.FLOAT, True
    elif annotation is bool:
        return EXPLICIT_BOOL, True
    elif annotation is Path:
        return click.Path(), True
    else:
        return click.STRING, True


def _build_command(task_info: TaskInfo) -> click.Command:
    """Build a Click command from a task."""
    sig = task_info.signature
    params: list[click.Parameter] = []

    # Resolve string annotations from `from __future__ import annotations`
    try:
        type_hints = typing.get_type_hints(task_info.original_fn)
    except (NameError, TypeError):
        type_hints = {}

    for param_name, param in sig.parameters.items():
        annotation = type_hints.get(param_name, param.annotation)
        if annotation is inspect.Parameter.empty:
            annotation = str

        click_type, type_required = _get_click_type(annotation)

        has_default = param.default is not inspect.Parameter.empty
        default_value = param.default if has_default else None
        required = not has_default and type_required

        cli_name = _to_kebab_case(param_name)

        help_text = None
        if has_default and default_value is not None:
            help_text = f"(default: {str(default_value).lower() if isinstance(default_value, bool) else default_value})"

        # Only pass default if there is one - otherwise Click won't enforce required
        option_kwargs: dict[str, Any] = {
            "type": click_type,
            "required": required,
            "help": help_text,
        }
        if has_default:
            option_kwargs["default"] = default_value
        if click_type is EXPLICIT_BOOL:
            # A bare `--flag` still means true
            option_kwargs["is_flag"] = False
            option_kwargs["flag_value"] = "true"

        params.append(click.Option([f"--{cli_name}"], **option_kwargs))

    def callback(**kwargs: Any) -> None:
        """Execute the task and display results."""
        task_name = task_info.name

        # Running as a job of a local automation run: the executor prints headers.
        # Clear it immediately so it doesn't propagate to grandchild processes
        quiet_mode = os.environ.pop("CBCI_SUBPROCESS", None) == "1"

        start_time = time.perf_counter()

        if not quiet_mode:
            _get_console().print(f"\n[bold blue]▶[/bold blue] [bold]{task_name}[/bold]")
            _get_console().print()

        result: Result[Any] = task_info.fn(**kwargs)

        elapsed = time.perf_counter() - start_time

        if not result.ok:
            _get_console().print(f"Error: {result.error}", style="red", markup=False, highlight=False)
            if result.traceback and is_debug():
                _get_console().print(result.traceback, style="dim", markup=False)

        if not quiet_mode:
            _get_console().print()
            if result.ok:
                _get_console().print(f"[bold green]✓[/bold green] [bold]{task_name}[/bold] succeeded in {elapsed:.2f}s")
            else:
                _get_console().print(f"[bold red]✗[/bold red] [bold]{task_name}[/bold] failed in {elapsed:.2f}s")
            _get_console().print()

        # Exit with non-zero code if task failed
        if not result.ok:
            sys.exit(1)

    return click.Command(
        name=task_info.cli_name,
        callback=callback,
        params=params,
        help=task_info.doc,
    )


def _build_automation_command(automation_wrapper: AutomationWrapper, cli_command: str) -> click.Command:
    """Build a Click command that runs an automation locally."""
    info = automation_wrapper.info

    params: list[click.Parameter] = [
        click.Option(
            ["--dry-run"],
            is_flag=True,
            default=False,
            help="Show what would be run without executing",
        ),
        click.Option(
            ["--verbose", "-v"],
            is_flag=True,
            default=False,
            help="Show job output and outputs",
        ),
        click.Option(
            ["--workspace"],
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Directory the jobs run in (default: current directory)",
        ),
        click.Option(
            ["--artifacts-dir"],
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Local artifact store (default: <workspace>/.cbci/artifacts)",
        ),
        click.Option(
            ["--max-parallel"],
            type=click.IntRange(min=1),
            default=1,
            show_default=True,
            help="Jobs and matrix variants that may run at once; they share the workspace",
        ),
    ]

    def callback(
        dry_run: bool, verbose: bool, workspace: Path | None, artifacts_dir: Path | None, max_parallel: int
    ) -> None:
        """Execute the automation locally."""
        from .local_executor import LocalExecutor

        executor = LocalExecutor(
            cli_command=cli_command,
            workspace=workspace,
            artifacts_dir=artifacts_dir,
            dry_run=dry_run,
            verbose=verbose,
            max_parallel=max_parallel,
        )
        result = executor.execute(automation_wrapper)

        if not result.success:
            sys.exit(1)

    return click.Command(
        name=_to_kebab_case(info.name),
        callback=callback,
        params=params,
        help=info.doc or f"Run the {info.display_name} automation locally",
    )


class GroupedClickGroup(click.Group):
    """Click group that displays commands organized by groups in help."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.command_groups: dict[str, str] = {}  # command_name -> group_name
        self.hidden_groups: set[str] = set()
        self.show_hidden: bool = False
        super().__init__(*args, **kwargs)

    def list_commands(self, ctx: click.Context) -> list[str]:
        # Registration order, so the pipeline reads top to bottom
        return list(self.commands)

    def format_commands(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Format commands grouped by category."""
        groups: dict[str, list[tuple[str, click.Command]]] = {}
        for name in self.list_commands(ctx):
            cmd = self.get_command(ctx, name)
            if cmd is None:
                continue
            if cmd.hidden and not self.show_hidden:
                continue

            group_name = self.command_groups.get(name, "Other")
            if group_name in self.hidden_groups and not self.show_hidden:
                continue

            groups.setdefault(group_name, []).append((name, cmd))

        for group_name, cmds in groups.items():
            with formatter.section(group_name):
                formatter.write_dl([(name, cmd.get_short_help_str(limit=45)) for name, cmd in cmds])


def _build_grouped_cli(
    name: str | None,
    commands: Sequence[CommandGroup | TaskWrapper[Any, Any]],
    automations: Sequence[AutomationWrapper] | None = None,
    cli_command: str = "cbci",
) -> GroupedClickGroup:
    """Build a Click CLI with grouped commands."""
    seen_names: dict[str, str] = {}  # name -> group_name

    @click.group(name=name, cls=GroupedClickGroup)
    @click.option("--debug/--no-debug", default=False, help="Enable debug output")
    @click.option("--show-hidden", is_flag=True, default=False, help="Show hidden commands")
    @click.pass_context
    def cli(ctx: click.Context, debug: bool, show_hidden: bool) -> None:
        """Apache Cloudberry CI pipeline."""
        ctx.ensure_object(dict)
        set_debug(debug)
        ctx.command.show_hidden = show_hidden  # type: ignore[attr-defined]

    grouped = cast(GroupedClickGroup, cli)

    for item in commands:
        if isinstance(item, CommandGroup):
            if item.hidden:
                grouped.hidden_groups.add(item.name)
            for cmd_wrapper in item.commands:
                _add_command_to_cli(grouped, cmd_wrapper, item.name, seen_names)
        else:
            _add_command_to_cli(grouped, item, "Other", seen_names)

    for auto in automations or []:
        _add_automation_to_cli(grouped, auto, "Automations", seen_names, cli_command)

    return grouped


def _task_info_of(cmd_wrapper: TaskWrapper[Any, Any]) -> TaskInfo:
    info = getattr(cmd_wrapper, "_task_info", None)
    if info is None:
        raise TypeError(f"Expected a task, got {type(cmd_wrapper).__name__}. Make sure to use @task decorator.")
    return cast(TaskInfo, info)


def _claim_name(cmd_name: str, group_name: str, seen_names: dict[str, str]) -> None:
    if cmd_name in seen_names:
        raise ValueError(
            f"Duplicate command name '{cmd_name}': found in both '{seen_names[cmd_name]}' and '{group_name}'"
        )
    seen_names[cmd_name] = group_name


def _add_command_to_cli(
    cli: GroupedClickGroup,
    cmd_wrapper: TaskWrapper[Any, Any],
    group_name: str,
    seen_names: dict[str, str],
) -> None:
    """Add a task to the CLI, checking for duplicates."""
    info = _task_info_of(cmd_wrapper)
    _claim_name(info.cli_name, group_name, seen_names)
    cli.add_command(_build_command(info))
    cli.command_groups[info.cli_name] = group_name


def _add_automation_to_cli(
    cli: GroupedClickGroup,
    automation_wrapper: AutomationWrapper,
    group_name: str,
    seen_names: dict[str, str],
    cli_command: str,
) -> None:
    """Add an automation to the CLI, checking for duplicates."""
    cmd_name = _to_kebab_case(automation_wrapper.info.name)
    _claim_name(cmd_name, group_name, seen_names)
    cli.add_command(_build_automation_command(automation_wrapper, cli_command))
    cli.command_groups[cmd_name] = group_name


def build_cli(
    name: str | None = None,
    *,
    cli_command: str = "cbci",
    working_directory: str | None = None,
    commands: Sequence[CommandGroup | TaskWrapper[Any, Any]],
    automations: Sequence[AutomationWrapper] | None = None,
    default_setup: list[SetupStep] | None = None,
) -> GroupedClickGroup:
    """Register everything in the global context and build the click group."""
    set_cli_command(cli_command)
    set_working_directory(working_directory)
    set_cbci_context(_build_registry(commands, automations or [], default_setup or []))
    return _build_grouped_cli(name, commands, automations=automations, cli_command=cli_command)


def main(
    name: str | None = None,
    *,
    cli_command: str = "cbci",
    working_directory: str | None = None,
    commands: Sequence[CommandGroup | TaskWrapper[Any, Any]],
    automations: Sequence[AutomationWrapper] | None = None,
    default_setup: list[SetupStep] | None = None,
    args: Sequence[str] | None = None,
) -> None:
    """
    Build and run the CLI with explicit command registration.

    Args:
        name: Optional name for the CLI group.
        cli_command: CLI entry point for generated workflows and local job subprocesses.
        working_directory: Working directory for GHA workflows (relative to repo root).
        commands: List of CommandGroups or tasks to expose as CLI commands.
        automations: List of automations to register for GHA workflow generation.
        default_setup: Setup steps for generated jobs that declare none.
        args: Command line arguments (default: sys.argv[1:]).

    """
    cli = build_cli(
        name,
        cli_command=cli_command,
        working_directory=working_directory,
        commands=commands,
        automations=automations,
        default_setup=default_setup,
    )
    cli(args=list(args) if args is not None else None)


def _build_registry(
    commands: Sequence[CommandGroup | TaskWrapper[Any, Any]],
    automations: Sequence[AutomationWrapper],
    default_setup: list[SetupStep] | None = None,
) -> CbciContext:
    """
    Build a CbciContext from the commands and automations lists.

    Extracts TaskInfo from the wrappers and populates the registries.
    """
    tasks: dict[str, TaskInfo] = {}
    automation_registry: dict[str, AutomationInfo] = {}

    for item in commands:
        wrappers = item.commands if isinstance(item, CommandGroup) else [item]
        for cmd_wrapper in wrappers:
            info = _task_info_of(cmd_wrapper)
            tasks[info.full_name] = info

    for auto in automations:
        automation_registry[auto.info.full_name] = auto.info

    return CbciContext(
        tasks=tasks,
        automations=automation_registry,
        default_setup=list(default_setup or []),
    )

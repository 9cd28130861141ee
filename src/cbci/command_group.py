"""Command group and App for explicit CLI registration."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .task import SetupStep, setup_uv

if TYPE_CHECKING:
    from .jobs import AutomationWrapper
    from .task import TaskWrapper

# The environment lives outside the workspace so the source tarball never picks it up.
DEFAULT_INSTALL_COMMAND = (
    'uv venv --python 3.11 "$RUNNER_TEMP/cbci-venv"\n'
    'uv pip install --python "$RUNNER_TEMP/cbci-venv" .\n'
    'echo "$RUNNER_TEMP/cbci-venv/bin" >> "$GITHUB_PATH"'
)


@dataclass
class CommandGroup:
    """
    Groups commands under a heading in help output.

    Commands remain in a flat namespace - groups only affect the visual
    organization in `--help` output.

    Args:
        name: Heading name displayed in help (e.g., "Pipeline", "Built-in").
        commands: List of tasks to include in this group.
        hidden: If True, commands in this group are hidden from default help.
               Use --show-hidden to see them.

    Example
    -------
        commands = [
            cbci.CommandGroup("Pipeline", [check_skip, build, report]),
            cbci.CommandGroup("Internal", [debug_task], hidden=True),
        ]

    """

    name: str
    commands: list[TaskWrapper[Any, Any]] = field(default_factory=list)
    hidden: bool = False

    def __post_init__(self) -> None:
        """Validate that commands list is not empty."""
        if not self.commands:
            raise ValueError(f"CommandGroup '{self.name}' must have at least one command")


class App:
    """
    cbci application that holds configuration and command registration.

    Create an App instance at module level so that the console script and
    the jobs it spawns see the same registered commands.

    Args:
        entry_point: Command that invokes the CLI, both in generated workflows
                     and for the subprocesses of local runs.
        working_directory: Working directory for GHA workflows (relative to repo root).
        commands: List of CommandGroups or tasks to expose as CLI commands.
        automations: List of automations to register for GHA workflow generation.
        install_command: Shell command that installs the CLI from the checkout on a runner.
        default_setup: Setup steps for jobs whose task and job declare none.
                       Defaults to setting up uv, then running `install_command`.
                       Both steps are ungated.
        name: Optional name for the CLI group.

    Example
    -------
        app = cbci.App(
            commands=[cbci.CommandGroup("Pipeline", [check_skip, build])],
            automations=[build_cloudberry],
        )

        def main() -> None:
            app.main()

    """

    def __init__(
        self,
        *,
        entry_point: str = "cbci",
        working_directory: str | None = None,
        commands: Sequence[CommandGroup | TaskWrapper[Any, Any]] | None = None,
        automations: Sequence[AutomationWrapper] | None = None,
        install_command: str = DEFAULT_INSTALL_COMMAND,
        default_setup: list[SetupStep] | None = None,
        name: str | None = None,
    ) -> None:
        self.entry_point = entry_point
        self.working_directory = working_directory
        self.commands: Sequence[CommandGroup | TaskWrapper[Any, Any]] = commands or []
        self.automations: Sequence[AutomationWrapper] = automations or []
        self.install_command = install_command
        if default_setup is None:
            default_setup = [setup_uv(), SetupStep(name="Install cbci", run=install_command, gated=False)]
        self.default_setup = default_setup
        self.name = name

    def main(self, args: Sequence[str] | None = None) -> None:
        """Build and run the CLI."""
        from .cli import main as cli_main

        cli_main(
            name=self.name,
            cli_command=self.entry_point,
            working_directory=self.working_directory,
            commands=self.commands,
            automations=self.automations,
            default_setup=self.default_setup,
            args=args,
        )

    def setup_context(self) -> None:
        """
        Set up the global context from this app's configuration.

        This ensures that tasks like generate_gha have access to the correct
        configuration (working_directory, entry point, etc.) even when not
        running through main().
        """
        from .cli import _build_registry
        from .context import set_cbci_context, set_cli_command, set_working_directory

        set_cli_command(self.entry_point)
        set_working_directory(self.working_directory)

        cbci_ctx = _build_registry(self.commands, self.automations, self.default_setup)
        set_cbci_context(cbci_ctx)

"""Subprocess helpers for cbci tasks."""

from __future__ import annotations

import os
import shlex
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO


@dataclass
class RunResult:
    """
    Result from running a subprocess.

    Attributes:
        returncode: The exit code of the process.
        stdout: Captured stdout (also filled when streaming).
        stderr: Captured stderr (also filled when streaming).
        command: The command that was executed.

    """

    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True if the command succeeded (exit code 0)."""
        return self.returncode == 0

    @property
    def failed(self) -> bool:
        """True if the command failed (non-zero exit code)."""
        return self.returncode != 0


class SubprocessError(Exception):
    """Raised when a subprocess fails and check=True."""

    def __init__(self, result: RunResult):
        self.result = result
        cmd_str = " ".join(result.command)
        super().__init__(f"Command '{cmd_str}' failed with exit code {result.returncode}")


def as_user_command(
    user: str,
    cmd: list[str],
    *,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
) -> list[str]:
    """
    Wrap a command so it runs in a login shell of `user`.

    `su -` starts from a clean environment, so the working directory and the
    extra variables are applied inside the shell command.
    """
    parts: list[str] = []
    if cwd:
        parts.append(f"cd {shlex.quote(str(cwd))} &&")
    for key, value in (env or {}).items():
        parts.append(f"{key}={shlex.quote(value)}")
    parts.append(shlex.join(cmd))
    return ["su", "-", user, "-c", " ".join(parts)]


def run(
    *args: str | Path,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    capture: bool = False,
    check: bool = False,
    log_file: str | Path | None = None,
    as_user: str | None = None,
) -> RunResult:
    """
    Run a subprocess command.

    By default, output is streamed to the console in real-time.
    Use `capture=True` to capture output for parsing instead.

    Args:
        *args: Command and arguments to run (e.g., "rpm", "-qip", path)
        cwd: Working directory for the command
        env: Additional environment variables (merged with current environment)
        capture: If True, capture stdout/stderr instead of streaming
        check: If True, raise SubprocessError on non-zero exit code
        log_file: If set, every output line is also appended to this file
        as_user: If set, run the command as this user via `su - <user> -c`

    Returns:
        RunResult with exit code and output

    Raises:
        SubprocessError: If check=True and the command fails
        FileNotFoundError: If the command is not found

    Example:
        >>> result = run("echo", "hello")
        hello
        >>> result.ok
        True

        >>> run("./configure-cloudberry.sh", as_user="gpadmin", env={"SRC_DIR": "/src"}, check=True)

    """
    cmd = [str(arg) for arg in args]

    run_env = os.environ.copy()
    if as_user:
        cmd = as_user_command(as_user, cmd, cwd=cwd, env=env)
        cwd_str = None
    else:
        if env:
            run_env.update(env)
        cwd_str = str(cwd) if cwd else None

    log: IO[str] | None = None
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        log = open(log_file, "a")

    try:
        if capture:
            completed = subprocess.run(
                cmd,
                cwd=cwd_str,
                env=run_env,
                capture_output=True,
                text=True,
            )
            if log is not None:
                log.write(completed.stdout)
                log.write(completed.stderr)
            result = RunResult(
                returncode=completed.returncode,
                stdout=completed.stdout,
                stderr=completed.stderr,
                command=cmd,
            )
        else:
            result = _run_streaming(cmd, cwd_str, run_env, log)
    finally:
        if log is not None:
            log.close()

    if check and result.failed:
        raise SubprocessError(result)

    return result


def _run_streaming(cmd: list[str], cwd: str | None, env: dict[str, str], log: IO[str] | None) -> RunResult:
    """Stream stdout/stderr to the console as they arrive, keeping a copy."""
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        bufsize=1,
    )

    stdout_lines: list[str] = []
    stderr_lines: list[str] = []

    def emit(line: str, is_stderr: bool) -> None:
        if is_stderr:
            print(line, file=sys.stderr, flush=True)
        else:
            print(line, flush=True)
        if log is not None:
            log.write(line + "\n")

    if sys.platform != "win32" and proc.stdout and proc.stderr:
        import selectors

        sel = selectors.DefaultSelector()
        sel.register(proc.stdout, selectors.EVENT_READ, ("stdout", stdout_lines))
        sel.register(proc.stderr, selectors.EVENT_READ, ("stderr", stderr_lines))

        while sel.get_map():
            for key, _ in sel.select():
                stream_type, lines_list = key.data
                line = key.fileobj.readline()  # type: ignore[union-attr]
                if line:
                    line_stripped = line.rstrip("\n")
                    lines_list.append(line_stripped)
                    emit(line_stripped, stream_type == "stderr")
                else:
                    sel.unregister(key.fileobj)

        sel.close()
    else:
        if proc.stdout:
            for line in proc.stdout:
                stdout_lines.append(line.rstrip("\n"))
                emit(stdout_lines[-1], False)
        if proc.stderr:
            for line in proc.stderr:
                stderr_lines.append(line.rstrip("\n"))
                emit(stderr_lines[-1], True)

    proc.wait()

    return RunResult(
        returncode=proc.returncode,
        stdout="\n".join(stdout_lines),
        stderr="\n".join(stderr_lines),
        command=cmd,
    )

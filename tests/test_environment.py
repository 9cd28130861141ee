"""Tests for container preparation, build scripts and subprocess helpers."""

import sys

import pytest

from cbci import environment
from cbci.config import PipelineConfig
from cbci.step import StepFailure
from cbci.subprocess import RunResult, SubprocessError, as_user_command, run


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "cloudberry"
    path.mkdir()
    return path


class TestRelocateScripts:
    def test_moves_checkout_beside_workspace(self, workspace) -> None:
        config = PipelineConfig()
        (workspace / config.scripts_dir / "scripts").mkdir(parents=True)

        target = environment.relocate_scripts_checkout(workspace, config)

        assert target == workspace.parent / config.scripts_dir
        assert (target / "scripts").is_dir()
        assert not (workspace / config.scripts_dir).exists()

    def test_already_relocated(self, workspace) -> None:
        config = PipelineConfig()
        (workspace.parent / config.scripts_dir).mkdir()

        assert environment.relocate_scripts_checkout(workspace, config) == workspace.parent / config.scripts_dir

    def test_no_checkout(self, workspace) -> None:
        with pytest.raises(StepFailure, match="Container initialization failed"):
            environment.relocate_scripts_checkout(workspace, PipelineConfig())


class TestRunCloudberryScript:
    @pytest.fixture
    def script(self, workspace):
        config = PipelineConfig()
        path = config.script_path(workspace, "configure-cloudberry.sh")
        path.parent.mkdir(parents=True)
        path.write_text("#!/bin/sh\n")
        path.chmod(0o644)
        return path

    def test_runs_as_build_user(self, monkeypatch, workspace, script) -> None:
        calls = []

        def fake_run(*args, **kwargs):
            calls.append((args, kwargs))
            return RunResult(returncode=0)

        monkeypatch.setattr(environment, "run", fake_run)

        environment.run_cloudberry_script(
            "configure-cloudberry.sh",
            workspace,
            PipelineConfig(),
            failure="Configure script failed",
            env={"BUILD_DESTINATION": "/usr/local/cloudberry-db"},
        )

        (args, kwargs), = calls
        assert args == (script,)
        assert kwargs["as_user"] == "gpadmin"
        assert kwargs["cwd"] == workspace
        assert kwargs["env"] == {"BUILD_DESTINATION": "/usr/local/cloudberry-db", "SRC_DIR": str(workspace)}
        assert script.stat().st_mode & 0o111 == 0o111

    def test_failure_message(self, monkeypatch, workspace, script) -> None:
        monkeypatch.setattr(environment, "run", lambda *args, **kwargs: RunResult(returncode=2))

        with pytest.raises(StepFailure, match="^Configure script failed$"):
            environment.run_cloudberry_script(
                "configure-cloudberry.sh", workspace, PipelineConfig(), failure="Configure script failed"
            )

    def test_missing_script(self, workspace) -> None:
        with pytest.raises(StepFailure, match="Build script failed: .*build-cloudberry.sh not found"):
            environment.run_cloudberry_script(
                "build-cloudberry.sh", workspace, PipelineConfig(), failure="Build script failed"
            )


class TestSubprocess:
    def test_as_user_command(self) -> None:
        assert as_user_command("gpadmin", ["./build.sh", "--jobs", "4"], cwd="/src dir", env={"SRC_DIR": "/src"}) == [
            "su",
            "-",
            "gpadmin",
            "-c",
            "cd '/src dir' && SRC_DIR=/src ./build.sh --jobs 4",
        ]

    def test_capture_and_log(self, tmp_path) -> None:
        log_file = tmp_path / "logs" / "run.log"

        result = run(sys.executable, "-c", "print('hello')", capture=True, log_file=log_file)

        assert result.ok
        assert result.stdout == "hello\n"
        assert log_file.read_text() == "hello\n"

    def test_streaming(self, tmp_path, capfd) -> None:
        result = run(
            sys.executable,
            "-c",
            "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)",
            log_file=tmp_path / "run.log",
        )

        assert result.failed
        assert result.returncode == 3
        assert result.stdout == "out"
        assert result.stderr == "err"
        assert "out" in capfd.readouterr().out

    def test_check_raises(self) -> None:
        with pytest.raises(SubprocessError, match="failed with exit code 1"):
            run(sys.executable, "-c", "raise SystemExit(1)", capture=True, check=True)

    def test_env_merged(self) -> None:
        result = run(
            sys.executable, "-c", "import os; print(os.environ['SRC_DIR'])", env={"SRC_DIR": "/src"}, capture=True
        )
        assert result.stdout.strip() == "/src"

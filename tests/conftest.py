"""Pytest configuration for cbci tests."""

import pytest


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch):
    """Reset all state between tests and disable colors for CLI invocations."""
    from cbci.context import set_automation_context, set_cbci_context, set_context, set_debug
    from cbci.jobs import _clear_job_registry
    from cbci.output import reset_output_manager

    # Rich ignores NO_COLOR when FORCE_COLOR is set
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    monkeypatch.setenv("NO_COLOR", "1")

    # Tasks under test must not write into a real runner's files
    for variable in ("GITHUB_ACTIONS", "GITHUB_OUTPUT", "GITHUB_ENV", "GITHUB_STEP_SUMMARY", "GITHUB_EVENT_PATH"):
        monkeypatch.delenv(variable, raising=False)
    monkeypatch.delenv("CBCI_SUBPROCESS", raising=False)

    set_context(None)
    set_automation_context(None)
    set_cbci_context(None)
    set_debug(False)
    _clear_job_registry()
    reset_output_manager()

    yield

    set_context(None)
    set_automation_context(None)
    set_cbci_context(None)
    set_debug(False)
    _clear_job_registry()
    reset_output_manager()


@pytest.fixture
def github_files(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Point GITHUB_OUTPUT, GITHUB_ENV and GITHUB_STEP_SUMMARY at temporary files."""
    files = {}
    for variable in ("GITHUB_OUTPUT", "GITHUB_ENV", "GITHUB_STEP_SUMMARY"):
        path = tmp_path / variable.lower()
        path.touch()
        monkeypatch.setenv(variable, str(path))
        files[variable] = path
    return files

"""Tests for pipeline configuration loading."""

from pathlib import Path

import pytest

from cbci.config import ConfigError, PipelineConfig, load_config


def write_config(path: Path, body: str) -> Path:
    path.write_text(body)
    return path


def test_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config == PipelineConfig()
    assert config.build_image == "apache/incubator-cloudberry:cbdb-build-rocky9-latest"
    assert config.log_retention_days == 7
    assert config.timeout_minutes == 120


def test_pyproject_table(tmp_path, monkeypatch) -> None:
    write_config(
        tmp_path / "pyproject.toml",
        '[project]\nname = "x"\n\n[tool.cbci]\nscripts_ref = "release-2.0"\nlog_retention_days = 14\n',
    )
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config.scripts_ref == "release-2.0"
    assert config.log_retention_days == 14


def test_cbci_toml_wins_over_pyproject(tmp_path, monkeypatch) -> None:
    write_config(tmp_path / "pyproject.toml", '[tool.cbci]\nbranch = "from-pyproject"\n')
    write_config(tmp_path / "cbci.toml", '[tool.cbci]\nbranch = "from-cbci"\n')
    monkeypatch.chdir(tmp_path)

    assert load_config(environ={}).branch == "from-cbci"


def test_environment_overrides_file(tmp_path) -> None:
    config_file = write_config(tmp_path / "cbci.toml", '[tool.cbci]\ncbdb_version = "2.0.0"\nbuild_number = 4\n')

    config = load_config(config_file, environ={"CBDB_VERSION": "2.1.0", "BUILD_NUMBER": "9", "CBCI_BUILD_USER": ""})

    assert config.cbdb_version == "2.1.0"
    assert config.build_number == 9
    assert config.build_user == "gpadmin"


def test_invalid_environment_value(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ConfigError, match="Invalid value for 'log_retention_days' from environment") as excinfo:
        load_config(environ={"LOG_RETENTION_DAYS": "365"})

    assert excinfo.value.field == "log_retention_days"
    assert excinfo.value.source == "environment (LOG_RETENTION_DAYS)"


def test_invalid_file_value(tmp_path) -> None:
    config_file = write_config(tmp_path / "cbci.toml", '[tool.cbci]\nbuild_number = 0\n')

    with pytest.raises(ConfigError, match="build_number") as excinfo:
        load_config(config_file, environ={})

    assert excinfo.value.source == str(config_file)


def test_unknown_key_rejected(tmp_path) -> None:
    config_file = write_config(tmp_path / "cbci.toml", '[tool.cbci]\nbuild_imag = "typo"\n')

    with pytest.raises(ConfigError, match="build_imag"):
        load_config(config_file, environ={})


def test_malformed_toml(tmp_path) -> None:
    config_file = write_config(tmp_path / "cbci.toml", "[tool.cbci\n")

    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(config_file, environ={})


def test_missing_explicit_file(tmp_path) -> None:
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path / "nope.toml", environ={})


def test_config_is_frozen() -> None:
    config = PipelineConfig()
    with pytest.raises(ValueError):
        config.branch = "other"  # type: ignore[misc]


def test_script_paths(tmp_path) -> None:
    workspace = tmp_path / "cloudberry"
    config = PipelineConfig()

    assert config.script_path(workspace, "build-cloudberry.sh") == (
        tmp_path / "cloudberry-devops-release" / "build_automation" / "cloudberry" / "scripts" / "build-cloudberry.sh"
    )
    assert config.rpm_build_script(workspace) == tmp_path / "cloudberry-devops-release" / "scripts" / "build-rpm.sh"
    assert config.rpm_spec_file(workspace).name == "apache-cloudberry-db-incubating.spec"

"""Pipeline configuration.

Constants of the pipeline live in one pydantic model. Values are layered:
defaults, then the ``[tool.cbci]`` table of ``cbci.toml`` or ``pyproject.toml``,
then environment variables.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .artifacts import PACKAGE_NAME, SOURCE_TARBALL

# Environment variable -> config field
ENV_OVERRIDES = {
    "CBDB_VERSION": "cbdb_version",
    "BUILD_NUMBER": "build_number",
    "LOG_RETENTION_DAYS": "log_retention_days",
    "CBCI_BUILD_USER": "build_user",
    "CBCI_INSTALL_PREFIX": "install_prefix",
}

CONFIG_FILES = ("cbci.toml", "pyproject.toml")


class ConfigError(Exception):
    """Raised when a configuration source holds an invalid value."""

    def __init__(self, message: str, *, field: str | None = None, source: str | None = None):
        self.field = field
        self.source = source
        super().__init__(message)


class PipelineConfig(BaseModel):
    """Everything the pipeline's jobs need to know that isn't code."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    build_image: str = "apache/incubator-cloudberry:cbdb-build-rocky9-latest"
    test_image: str = "apache/incubator-cloudberry:cbdb-test-rocky9-latest"
    container_options: str = "--user root -h cdw"

    scripts_repository: str = "apache/cloudberry-devops-release"
    scripts_ref: str = "main"
    scripts_dir: str = "cloudberry-devops-release"

    build_user: str = "gpadmin"
    init_script: str = "/tmp/init_system.sh"
    install_prefix: str = "/usr/local/cloudberry-db"

    package_name: str = PACKAGE_NAME
    source_tarball: str = SOURCE_TARBALL

    cbdb_version: str = "99.0.0"
    build_number: int = Field(default=1, ge=1)
    log_retention_days: int = Field(default=7, ge=1, le=90)

    branch: str = "main"
    timeout_minutes: int = Field(default=120, ge=1)
    critical_binaries: tuple[str, ...] = ("bin/postgres", "bin/psql")

    def scripts_root(self, workspace: Path) -> Path:
        """Where the script repository checkout lives once moved next to the workspace."""
        return workspace.parent / self.scripts_dir

    def script_path(self, workspace: Path, name: str) -> Path:
        """Path of a build automation script, e.g. script_path(ws, "configure-cloudberry.sh")."""
        return self.scripts_root(workspace) / "build_automation" / "cloudberry" / "scripts" / name

    def rpm_build_script(self, workspace: Path) -> Path:
        return self.scripts_root(workspace) / "scripts" / "build-rpm.sh"

    def rpm_spec_file(self, workspace: Path) -> Path:
        return self.scripts_root(workspace) / "packaging" / "rpm" / "el" / "SPECS" / f"{self.package_name}.spec"


def _read_toml_table(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}", source=str(path)) from e
    table = data.get("tool", {}).get("cbci", {})
    if not isinstance(table, dict):
        raise ConfigError(f"[tool.cbci] in {path} must be a table", source=str(path))
    return table


def _find_config_file(directory: Path) -> Path | None:
    for name in CONFIG_FILES:
        candidate = directory / name
        if candidate.exists():
            return candidate
    return None


def _validate(values: dict[str, Any], source: str) -> PipelineConfig:
    try:
        return PipelineConfig(**values)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        message = f"Invalid value for '{field}' from {source}: {first['msg']}"
        raise ConfigError(message, field=field, source=source) from e


def load_config(path: str | Path | None = None, *, environ: dict[str, str] | None = None) -> PipelineConfig:
    """
    Load the pipeline configuration.

    Args:
        path: TOML file to read. Default: cbci.toml or pyproject.toml in the current directory.
        environ: Environment to read overrides from. Default: os.environ.

    Raises:
        ConfigError: If a file is unreadable or any value is invalid

    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}

    config_file = Path(path) if path is not None else _find_config_file(Path.cwd())
    if config_file is not None:
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}", source=str(config_file))
        values.update(_read_toml_table(config_file))
        _validate(values, str(config_file))

    overridden = []
    for variable, field_name in ENV_OVERRIDES.items():
        if env.get(variable):
            values[field_name] = env[variable]
            overridden.append(variable)

    source = f"environment ({', '.join(overridden)})" if overridden else "defaults"
    return _validate(values, source)

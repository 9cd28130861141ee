"""Artifact declarations, naming and the local artifact store.

Artifacts are declared on a task with a key and a list of upload paths. At
run time the task publishes an artifact under a concrete name with
`save_artifact(key, name)`; the name travels as the `<key>_artifact` output,
so the generated upload step only runs for artifacts that were published.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Literal

PACKAGE_NAME = "apache-cloudberry-db-incubating"

RPM_ARTIFACT = f"{PACKAGE_NAME}-rpm-build-artifacts"
SOURCE_ARTIFACT = f"{PACKAGE_NAME}-source-build-artifacts"

SOURCE_TARBALL = "apache-cloudberry-incubating-src.tgz"

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Metadata file written next to each locally stored artifact
_METADATA_FILE = ".cbci-artifact.json"

IfNoFilesFound = Literal["warn", "error", "ignore"]


class ArtifactError(Exception):
    """Raised when an artifact cannot be stored or retrieved."""


@dataclass(frozen=True)
class ArtifactDecl:
    """
    An artifact a task may publish.

    Attributes:
        key: Identifier used by save_artifact() and ArtifactRef.
        paths: Upload paths relative to the workspace. Globs (including ``**``) are allowed.
        name: Fixed artifact name. None means the task chooses the name at run time.
        retention_days: Days to keep the artifact. None uses the workflow's LOG_RETENTION_DAYS.
        if_no_files_found: What the upload does when nothing matches.
        when: "success" uploads only while the job is healthy, "always" also after failures.

    """

    key: str
    paths: tuple[str, ...] = ()
    name: str | None = None
    retention_days: int | None = None
    if_no_files_found: IfNoFilesFound = "warn"
    when: Literal["success", "always"] = "success"


def artifact_output_name(key: str) -> str:
    """Name of the output that carries a published artifact's name."""
    return f"{key}_artifact"


def build_timestamp(now: datetime | None = None) -> str:
    """Format the build timestamp used to make artifact names unique per run."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def build_logs_name(timestamp: str) -> str:
    return f"build-logs-{timestamp}"


def install_logs_name(timestamp: str) -> str:
    return f"install-logs-{timestamp}"


def variant_logs_name(variant: str, timestamp: str) -> str:
    """Per-variant test log artifact name."""
    return f"test-logs-{variant}-{timestamp}"


def regression_logs_name(variant: str, timestamp: str) -> str:
    """Per-variant regression diagnostics artifact name."""
    return f"regression-logs-{variant}-{timestamp}"


def _expand_pattern(workspace: Path, pattern: str) -> list[Path]:
    pattern = pattern.rstrip("/")
    if not any(ch in pattern for ch in "*?["):
        candidate = workspace / pattern
        return [candidate] if candidate.exists() else []
    return sorted(workspace.glob(pattern))


@dataclass
class LocalArtifactStore:
    """
    Directory-backed stand-in for the hosted artifact store.

    Each artifact is a directory under `root` holding the uploaded files with
    their workspace-relative paths preserved, plus a metadata file with the
    expiry derived from the retention period.
    """

    root: Path
    uploaded: list[str] = field(default_factory=list)

    def path_for(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> bool:
        return (self.path_for(name) / _METADATA_FILE).exists()

    def upload(
        self,
        name: str,
        workspace: Path,
        patterns: list[str] | tuple[str, ...],
        *,
        retention_days: int,
        if_no_files_found: IfNoFilesFound = "warn",
        now: datetime | None = None,
    ) -> list[Path]:
        """
        Copy the files matching `patterns` into the store under `name`.

        Returns the stored paths. Raises ArtifactError when nothing matches and
        `if_no_files_found` is "error".
        """
        matches: list[Path] = []
        for pattern in patterns:
            for match in _expand_pattern(workspace, pattern):
                if match not in matches:
                    matches.append(match)

        if not matches:
            if if_no_files_found == "error":
                raise ArtifactError(f"No files were found for artifact '{name}' with paths: {', '.join(patterns)}")
            return []

        target = self.path_for(name)
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True)

        stored: list[Path] = []
        for match in matches:
            relative = match.relative_to(workspace)
            dest = target / relative
            dest.parent.mkdir(parents=True, exist_ok=True)
            if match.is_dir():
                shutil.copytree(match, dest, dirs_exist_ok=True)
            else:
                shutil.copy2(match, dest)
            stored.append(dest)

        created = now or datetime.now(timezone.utc)
        metadata = {
            "name": name,
            "created": created.isoformat(),
            "expires": (created + timedelta(days=retention_days)).isoformat(),
            "files": [str(p.relative_to(target)) for p in stored],
        }
        (target / _METADATA_FILE).write_text(json.dumps(metadata, indent=2))
        self.uploaded.append(name)
        return stored

    def download(self, name: str, dest: Path) -> Path:
        """Copy a stored artifact's files into `dest`."""
        source = self.path_for(name)
        if not self.exists(name):
            raise ArtifactError(f"Artifact '{name}' not found in {self.root}")
        dest.mkdir(parents=True, exist_ok=True)
        for item in source.iterdir():
            if item.name == _METADATA_FILE:
                continue
            if item.is_dir():
                shutil.copytree(item, dest / item.name, dirs_exist_ok=True)
            else:
                shutil.copy2(item, dest / item.name)
        return dest

    def prune(self, now: datetime | None = None) -> list[str]:
        """Delete artifacts whose retention period has elapsed."""
        if not self.root.exists():
            return []
        current = now or datetime.now(timezone.utc)
        removed = []
        for metadata_file in sorted(self.root.glob(f"*/{_METADATA_FILE}")):
            metadata = json.loads(metadata_file.read_text())
            if datetime.fromisoformat(metadata["expires"]) <= current:
                shutil.rmtree(metadata_file.parent)
                removed.append(metadata["name"])
        return removed

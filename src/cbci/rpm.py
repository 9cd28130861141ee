"""RPM package handling: locating, querying, verifying and installing."""

from __future__ import annotations

import hashlib
import os
import re
import shutil
from collections.abc import Iterable
from pathlib import Path

from .context import out
from .step import StepFailure
from .subprocess import run

_VERSION_ID = re.compile(r'^VERSION_ID="(\d)', re.MULTILINE)


def os_major_version(os_release_text: str) -> str:
    """
    Major OS version from /etc/os-release contents.

    Only the first digit of VERSION_ID is used, so "9.4" gives "9".

    Raises:
        ValueError: If there is no quoted VERSION_ID

    """
    match = _VERSION_ID.search(os_release_text)
    if match is None:
        raise ValueError("VERSION_ID not found in os-release")
    return match.group(1)


def rpm_file_name(package: str, version: str, release: str | int, os_major: str) -> str:
    """
    File name rpmbuild gives the binary package.

        >>> rpm_file_name("apache-cloudberry-db-incubating", "99.0.0", 1, "9")
        'apache-cloudberry-db-incubating-99.0.0-1.el9.x86_64.rpm'

    """
    return f"{package}-{version}-{release}.el{os_major}.x86_64.rpm"


def find_rpm(directory: Path, package: str) -> Path:
    """The single `<package>*.rpm` in `directory`."""
    matches = sorted(directory.glob(f"{package}*.rpm")) if directory.is_dir() else []
    if len(matches) != 1:
        if matches:
            out(f"Expected one RPM in {directory}, found: {', '.join(m.name for m in matches)}")
        raise StepFailure("RPM file not found")
    return matches[0]


def query_rpm(path: Path, field: str) -> str:
    """Read one header field (e.g. "VERSION") from a package file."""
    result = run("rpm", "-qp", "--queryformat", f"%{{{field}}}", path, capture=True, check=True)
    return result.stdout.strip()


def package_info(path: Path, log_file: Path | None = None) -> None:
    """Print `rpm -qip` for a package file."""
    out("Package Information:")
    run("rpm", "-qip", path, log_file=log_file, check=True)


def verify_rpm_contents(path: Path, binaries: Iterable[str]) -> None:
    """
    Check that every binary is listed in the package.

    A binary matches when a file path in `rpm -qlp` ends with it.
    """
    listing = run("rpm", "-qlp", path, capture=True, check=True).stdout.splitlines()
    out("Verifying critical files in RPM...")
    for binary in binaries:
        if not any(line.endswith(binary) for line in listing):
            raise StepFailure(f"Critical binary '{binary}' not found in RPM")


def sha256sum(path: Path) -> str:
    """A checksum line in `sha256sum` output format."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return f"{digest.hexdigest()}  {path}"


def install_rpm(path: Path, prefix: Path, *, log_file: Path | None = None) -> None:
    """Install a package file with dnf, after removing any previous installation at `prefix`."""
    if prefix.exists():
        shutil.rmtree(prefix)
    out("Starting installation...")
    result = run("dnf", "install", "-y", path, log_file=log_file)
    if result.failed:
        raise StepFailure("RPM installation failed")
    out("Installation completed successfully")


def verify_installed_binaries(prefix: Path, binaries: Iterable[str]) -> None:
    """Check that each binary exists under `prefix` and is executable."""
    for binary in binaries:
        target = prefix / binary
        if not target.is_file():
            raise StepFailure(f"Critical binary missing: {target}")
        if not os.access(target, os.X_OK):
            raise StepFailure(f"Binary not executable: {target}")
        out(f"Binary verified: {target}")

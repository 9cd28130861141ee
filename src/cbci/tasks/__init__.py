"""Tasks run by the Apache Cloudberry build pipeline, one per job."""

from .build import build
from .check_skip import check_skip
from .install_test import rpm_install_test
from .report import report
from .run_tests import run_tests

__all__ = [
    "build",
    "check_skip",
    "report",
    "rpm_install_test",
    "run_tests",
]

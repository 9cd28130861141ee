"""Test variants and the job matrix built from them."""

from __future__ import annotations

from dataclasses import dataclass, field

from .jobs import Matrix


@dataclass(frozen=True)
class TestVariant:
    """
    One installcheck configuration run by the test matrix.

    Attributes:
        test: Variant name; also names its log artifacts.
        make_target: The make target to run, e.g. "installcheck-good".
        make_directory: Directory argument passed to make.
        pg_settings: Server settings applied through PGOPTIONS.

    """

    __test__ = False

    test: str
    make_target: str
    make_directory: str
    pg_settings: dict[str, str] = field(default_factory=dict)

    def matrix_row(self) -> dict[str, object]:
        return {
            "test": self.test,
            "make_target": self.make_target,
            "make_directory": self.make_directory,
            "pg_settings": dict(self.pg_settings),
        }


DEFAULT_VARIANTS: tuple[TestVariant, ...] = (
    TestVariant(
        test="ic-good-opt-off",
        make_target="installcheck-good",
        make_directory="--directory=src/test/regress",
        pg_settings={"optimizer": "off"},
    ),
    TestVariant(
        test="ic-expandshrink",
        make_target="installcheck-expandshrink",
        make_directory="--directory=src/test/isolation2",
        pg_settings={"optimizer": "off"},
    ),
)


def pgoptions(settings: dict[str, str | None]) -> str:
    """
    Render server settings as a PGOPTIONS value.

    Empty settings are left out:

        >>> pgoptions({"optimizer": "off", "jit": ""})
        '-c optimizer=off'

    """
    return " ".join(f"-c {key}={value}" for key, value in settings.items() if value)


def variants_matrix(variants: tuple[TestVariant, ...] | list[TestVariant] = DEFAULT_VARIANTS) -> Matrix:
    """Build the test job's matrix: one `test` value per variant, details via `include`."""
    names = [v.test for v in variants]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate test variant names: {', '.join(duplicates)}")
    if not variants:
        raise ValueError("At least one test variant is required")

    return Matrix(
        values={"test": names},
        include=[v.matrix_row() for v in variants],
        fail_fast=False,
    )

"""The check-skip job."""

from __future__ import annotations

from ..context import out, set_output
from ..result import Ok, Result
from ..skip import load_event_message, should_skip
from ..task import task


@task(outputs=["should_skip"])
def check_skip(*, message: str | None = None) -> Result[bool]:
    """
    Decide whether the rest of the pipeline should be skipped.

    Looks for a skip marker in `message`, or in the triggering event's PR title
    or head commit message when no message is given.
    """
    text = message if message is not None else load_event_message()
    skip = should_skip(text)
    set_output("should_skip", "true" if skip else "false")
    if skip:
        out("CI Skip flag detected - skipping all checks")
    return Ok(skip)

"""Constant variables for stayopen."""

from __future__ import annotations

import enum

#: Marker the child prints once a batch of output is complete
DEFAULT_SENTINEL = "{ready}"

#: Line that asks the child to run the buffered parameters
EXECUTE_TRIGGER = "-execute"

#: Arguments that keep the child running and read its arguments from stdin
STAY_OPEN_ARGS: tuple[str, ...] = ("-stay_open", "True", "-@", "-")

#: Two-line directive that ends persistent mode
SHUTDOWN_DIRECTIVE: tuple[str, ...] = ("-stay_open", "False")

#: Seconds :meth:`ProcessSession.kill` waits after ``terminate()``
KILL_GRACE_SECONDS = 1.0

#: Upper bound on how long a call waits for stderr to be drained after its marker
STDERR_SETTLE_SECONDS = 1.0


class SessionState(enum.Enum):
    """Lifecycle of a :class:`~stayopen.session.ProcessSession`."""

    UNSTARTED = enum.auto()
    RUNNING = enum.auto()
    SHUTTING_DOWN = enum.auto()
    TERMINATED = enum.auto()


def numbered_trigger(number: int) -> str:
    """Return the execute trigger carrying a call number.

    >>> numbered_trigger(7)
    '-execute7'
    """
    return f"{EXECUTE_TRIGGER}{number}"


def numbered_sentinel(number: int, sentinel: str = DEFAULT_SENTINEL) -> str:
    """Return the sentinel the child answers a numbered trigger with.

    >>> numbered_sentinel(7)
    '{ready7}'
    >>> numbered_sentinel(3, sentinel="<done>")
    '<done3>'
    """
    if len(sentinel) < 2:
        return f"{sentinel}{number}"
    return f"{sentinel[:-1]}{number}{sentinel[-1]}"

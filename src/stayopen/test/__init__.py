"""Helper methods for stayopen and downstream stayopen libraries."""

from __future__ import annotations

import contextlib
import logging
import sys
import time
import typing as t

from stayopen.channel import CommandChannel
from stayopen.exc import WaitTimeout
from stayopen.test.constants import (
    ECHO_TOOL_MODULE,
    RETRY_INTERVAL_SECONDS,
    RETRY_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

if t.TYPE_CHECKING:
    from collections.abc import Callable, Generator


def retry_until(
    fun: Callable[[], bool],
    seconds: float = RETRY_TIMEOUT_SECONDS,
    *,
    interval: float = RETRY_INTERVAL_SECONDS,
    raises: bool | None = True,
) -> bool:
    """
    Retry a function until a condition meets or the specified time passes.

    Parameters
    ----------
    fun : callable
        A function that will be called repeatedly until it returns ``True``  or
        the specified time passes.
    seconds : float
        Seconds to retry. Defaults to ``8``, which is configurable via
        ``RETRY_TIMEOUT_SECONDS`` environment variables.
    interval : float
        Time in seconds to wait between calls. Defaults to ``0.05`` and is
        configurable via ``RETRY_INTERVAL_SECONDS`` environment variable.
    raises : bool
        Whether or not to raise an exception on timeout. Defaults to ``True``.

    Examples
    --------
    >>> retry_until(lambda: True)
    True

    >>> retry_until(lambda: False, 0.1, raises=False)
    False
    """
    ini = time.time()

    while not fun():
        end = time.time()
        if end - ini >= seconds:
            if raises:
                raise WaitTimeout
            return False
        time.sleep(interval)
    return True


def echo_tool_argv() -> list[str]:
    """Return the command line that launches the echo stand-in.

    >>> echo_tool_argv()[1:]
    ['-X', 'utf8', '-m', 'stayopen.test.echo_tool']
    """
    return [sys.executable, "-X", "utf8", "-m", ECHO_TOOL_MODULE]


@contextlib.contextmanager
def temp_channel(
    *args: str,
    **kwargs: t.Any,
) -> Generator[CommandChannel, t.Any, t.Any]:
    """
    Return a context manager with a channel on the echo stand-in.

    Other Parameters
    ----------------
    args : str
        Extra arguments placed before the stay-open arguments
    kwargs : dict
        Keyword arguments passed into :class:`~stayopen.channel.CommandChannel`

    Examples
    --------
    >>> with temp_channel() as channel:
    ...     channel.execute(["-a"]).stdout
    ['ECHO:-a']
    """
    executable, *base_args = echo_tool_argv()
    channel = CommandChannel(
        executable,
        executable_args=[*base_args, *args],
        **kwargs,
    )
    try:
        yield channel
    finally:
        channel.close()

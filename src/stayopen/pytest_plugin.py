"""stayopen pytest plugin."""

from __future__ import annotations

import logging
import typing as t

import pytest

from stayopen._internal import trace
from stayopen.channel import CommandChannel
from stayopen.test import echo_tool_argv as _echo_tool_argv
from stayopen.test.constants import RETRY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@pytest.fixture(scope="session")
def echo_tool_argv() -> list[str]:
    """Return the command line that launches the echo stand-in tool."""
    return _echo_tool_argv()


@pytest.fixture
def channel(
    request: pytest.FixtureRequest,
    echo_tool_argv: list[str],
) -> CommandChannel:
    """Return a :class:`stayopen.CommandChannel` on the echo stand-in tool.

    The channel is closed when the test finishes.

    >>> from stayopen.channel import CommandChannel

    >>> def test_example(channel: CommandChannel) -> None:
    ...     result = channel.execute(["-a", "-b"])
    ...     assert result.stdout == ["ECHO:-a", "ECHO:-b"]
    """
    executable, *base_args = echo_tool_argv
    channel = CommandChannel(
        executable,
        executable_args=base_args,
        shutdown_timeout=RETRY_TIMEOUT_SECONDS,
    )

    def fin() -> None:
        channel.close()

    request.addfinalizer(fin)

    return channel


@pytest.fixture(autouse=True)
def _trace_test_context(request: pytest.FixtureRequest) -> t.Iterator[None]:
    """Tag trace events with the running test's node id."""
    trace.set_test_context(request.node.nodeid)
    yield
    trace.set_test_context(None)


def pytest_terminal_summary(terminalreporter: t.Any) -> None:
    """Print the trace summary when ``STAYOPEN_TRACE`` is on."""
    if not trace.TRACE_ENABLED:
        return
    terminalreporter.write_line(trace.summarize())

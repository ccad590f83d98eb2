"""Provide exceptions used by stayopen.

stayopen.exc
~~~~~~~~~~~~

Every error raised by the session and channel layers derives from
:exc:`StayOpenException`, so callers can catch the whole family at once.

Notes
-----
Nothing at this layer retries. Resending a command to a child in an unknown
state risks running a side-effecting command twice, so retry policy belongs to
the caller.
"""

from __future__ import annotations

import typing as t

if t.TYPE_CHECKING:
    from stayopen._internal.types import StrPath


class StayOpenException(Exception):
    """Base exception for all stayopen errors."""


class ProcessStartFailure(StayOpenException):
    """Raised when the child executable cannot be launched."""

    def __init__(self, executable: StrPath, reason: str | None = None) -> None:
        self.executable = executable
        msg = f"Could not start {executable}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class BrokenPipe(StayOpenException):
    """Raised when the child exited or closed a stream mid-call."""


class SessionClosed(StayOpenException):
    """Raised when a call is attempted after the session was shut down."""


class ChannelFaulted(SessionClosed):
    """Raised when a call is attempted on a channel left in an unknown state.

    A stalled or broken call may leave unread output behind, so the channel
    refuses further work until it is restarted.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Channel faulted: {reason}")


class SessionStateError(StayOpenException):
    """Raised on an illegal session lifecycle transition."""


class ProtocolStall(StayOpenException):
    """Raised when the end-of-output marker does not arrive in time."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"No end-of-output marker within {timeout}s")


class InvalidParameter(StayOpenException, ValueError):
    """Raised if a parameter would split into more than one protocol line."""

    def __init__(self, parameter: str) -> None:
        self.parameter = parameter
        super().__init__(f"Parameter contains a line break: {parameter!r}")


class WaitTimeout(StayOpenException):
    """Raised when a function times out waiting for a condition."""

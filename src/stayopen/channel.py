"""Synchronous calls over a stay-open child process.

stayopen.channel
~~~~~~~~~~~~~~~~

The child's protocol carries no per-command identifier: output is attributed
to a call only because nothing else is in flight. :class:`CommandChannel`
holds one lock for the whole send/receive cycle, so exactly one call talks to
the child at a time.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
import typing as t

from stayopen import exc
from stayopen._internal import trace
from stayopen._internal.protocol import PendingCall, build_result
from stayopen.constants import (
    DEFAULT_SENTINEL,
    STAY_OPEN_ARGS,
    numbered_sentinel,
    numbered_trigger,
)
from stayopen.result import ChannelStats, ExecuteResult
from stayopen.session import ProcessSession

if t.TYPE_CHECKING:
    import types
    from collections.abc import Sequence

    from typing_extensions import Self

    from stayopen._internal.types import EnvMapping, Parameters, StrPath
    from stayopen.constants import SessionState

logger = logging.getLogger(__name__)

__all__ = ("ChannelStats", "CommandChannel", "ExecuteResult")


class CommandChannel:
    """Run batches of parameters through one persistent child process.

    Constructing a channel starts the child. Close it with :meth:`close`, or use
    it as a context manager, so the shutdown directive is sent and the process
    is reaped.

    Parameters
    ----------
    executable : str or PathLike
        Program to launch, e.g. ``exiftool``
    executable_args : Sequence[str], optional
        Arguments placed before the stay-open arguments
    command_timeout : float, optional
        Seconds to wait for the end-of-output marker. ``None`` (the default)
        waits forever. When a wait expires the child is torn down and the
        channel refuses further calls until :meth:`restart`.
    shutdown_timeout : float, optional
        Seconds :meth:`close` waits for a clean exit before killing the child.
        ``None`` (the default) waits forever.
    numbered : bool
        Send ``-execute<N>`` and wait for ``{ready<N>}`` so a marker left over
        from another call can never end the current one. Default: False
    sentinel : str
        End-of-output marker. Default: ``{ready}``
    encoding : str
        Encoding of all three pipes. Default: ``utf-8``
    cwd : str or PathLike, optional
        Working directory of the child
    env : Mapping[str, str], optional
        Variables layered over the parent's environment

    Raises
    ------
    :exc:`exc.ProcessStartFailure`
        If the executable cannot be launched

    Examples
    --------
    >>> with CommandChannel("exiftool") as exiftool:  # doctest: +SKIP
    ...     result = exiftool.execute(["-ver"])
    >>> result.stdout  # doctest: +SKIP
    ['12.76']
    """

    def __init__(
        self,
        executable: StrPath,
        *,
        executable_args: Sequence[str] = (),
        command_timeout: float | None = None,
        shutdown_timeout: float | None = None,
        numbered: bool = False,
        sentinel: str = DEFAULT_SENTINEL,
        encoding: str = "utf-8",
        cwd: StrPath | None = None,
        env: EnvMapping | None = None,
    ) -> None:
        if not sentinel:
            msg = "sentinel must not be empty"
            raise ValueError(msg)
        self.executable = executable
        self.executable_args = tuple(executable_args)
        self.command_timeout = command_timeout
        self.shutdown_timeout = shutdown_timeout
        self.numbered = numbered
        self.sentinel = sentinel
        self.encoding = encoding
        self.cwd = cwd
        self.env = env

        self._lock = threading.Lock()
        self._closed = False
        self._fault_reason: str | None = None
        self._last_error: str | None = None
        self._last_activity: float | None = None
        self._counter = 0
        self._calls = 0
        self._restarts = 0

        self.session = self._new_session()
        self.session.start()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(executable={self.executable!r}, "
            f"state={self.state.name}, pid={self.pid})"
        )

    def __enter__(self) -> Self:
        """Enter the context, returning self."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Exit the context, shutting the child down."""
        self.close()

    def __del__(self) -> None:  # pragma: no cover - best effort cleanup
        """Shut the child down if the channel was never closed."""
        if getattr(self, "session", None) is None or self._closed:
            return
        with contextlib.suppress(Exception):
            self.close()

    # Properties --------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def pid(self) -> int | None:
        return self.session.pid

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_faulted(self) -> bool:
        """Return True after a stall or broken pipe, until :meth:`restart`."""
        return self._fault_reason is not None

    # Calls -------------------------------------------------------------
    def execute(
        self,
        parameters: Parameters,
        *,
        timeout: float | None = None,
    ) -> ExecuteResult:
        """Send *parameters* to the child and return its output.

        Each parameter is written as its own line, followed by the execute
        trigger. Blocks until the child prints the end-of-output marker.
        Concurrent callers queue on the channel lock and run one at a time.

        Parameters
        ----------
        parameters : Sequence[str]
            Parameter lines, in order, e.g. ``["-xmp", "-b", "image.jpg"]``
        timeout : float, optional
            Overrides :attr:`command_timeout` for this call

        Returns
        -------
        :class:`ExecuteResult`

        Raises
        ------
        :exc:`exc.InvalidParameter`
            If a parameter contains a line break; nothing is sent
        :exc:`exc.SessionClosed`
            If the channel was closed; nothing is sent
        :exc:`exc.ChannelFaulted`
            If an earlier call stalled or broke the pipe; nothing is sent
        :exc:`exc.BrokenPipe`
            If the child exited or closed a pipe during the call
        :exc:`exc.ProtocolStall`
            If the marker did not arrive within the timeout
        """
        if isinstance(parameters, str):
            msg = "parameters must be a sequence of strings, not a string"
            raise TypeError(msg)
        params = tuple(parameters)
        for param in params:
            if "\n" in param or "\r" in param:
                raise exc.InvalidParameter(param)

        effective_timeout = timeout if timeout is not None else self.command_timeout

        with self._lock:
            self._raise_if_unusable()
            with trace.span(
                "channel.execute",
                parameters=len(params),
                child_pid=self.pid,
            ):
                return self._execute_locked(params, effective_timeout)

    def _execute_locked(
        self,
        params: tuple[str, ...],
        timeout: float | None,
    ) -> ExecuteResult:
        call = self._new_call(params)
        self._calls += 1
        logger.debug(
            "Executing %d parameter(s) on pid %s, waiting for %s",
            len(params),
            self.pid,
            call.sentinel,
        )

        try:
            self.session.write_lines(params)
            with self.session.subscribed(call):
                call.start_time = time.monotonic()
                self.session.write_line(call.trigger)
                completed = call.wait(timeout)
                if completed and call.error is None:
                    self.session.wait_for_stderr()
        except exc.BrokenPipe as e:
            self._fault(str(e))
            raise
        finally:
            self._last_activity = time.monotonic()

        if not completed:
            assert timeout is not None
            self._fault(f"no end-of-output marker within {timeout}s")
            raise exc.ProtocolStall(timeout)

        if call.error is not None:
            self._fault(str(call.error))
            raise call.error

        return build_result(call)

    def _new_call(self, params: tuple[str, ...]) -> PendingCall:
        if not self.numbered:
            return PendingCall(parameters=params, sentinel=self.sentinel)
        self._counter += 1
        return PendingCall(
            parameters=params,
            sentinel=numbered_sentinel(self._counter, self.sentinel),
            trigger=numbered_trigger(self._counter),
        )

    def _raise_if_unusable(self) -> None:
        if self._closed:
            msg = "Channel is closed"
            raise exc.SessionClosed(msg)
        if self._fault_reason is not None:
            raise exc.ChannelFaulted(self._fault_reason)

    def _fault(self, reason: str) -> None:
        # Unread output may still be in the pipes; drop the child with it
        logger.warning("Channel for %s faulted: %s", self.executable, reason)
        trace.point("channel.fault", child_pid=self.pid, reason=reason)
        self._fault_reason = reason
        self._last_error = reason
        self.session.kill()

    # Lifecycle ---------------------------------------------------------
    def close(self) -> None:
        """Send the shutdown directive and wait for the child to exit.

        Waits for an in-flight call to finish first. Safe to call more than
        once.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            with trace.span("channel.close", child_pid=self.pid):
                self.session.shutdown(timeout=self.shutdown_timeout)

    shutdown = close

    def restart(self) -> None:
        """Replace the child with a fresh one and clear any fault.

        Raises
        ------
        :exc:`exc.SessionClosed`
            If the channel was closed
        :exc:`exc.ProcessStartFailure`
            If the new child cannot be launched; the channel stays faulted
        """
        with self._lock:
            if self._closed:
                msg = "Cannot restart a closed channel"
                raise exc.SessionClosed(msg)

            logger.debug("Restarting stay-open process %s", self.pid)
            self.session.kill()
            self.session = self._new_session()
            try:
                self.session.start()
            except exc.ProcessStartFailure as e:
                self._fault_reason = self._last_error = str(e)
                raise

            self._fault_reason = None
            self._counter = 0
            self._restarts += 1

    def get_stats(self) -> ChannelStats:
        """Return diagnostic counters for the channel."""
        return ChannelStats(
            state=self.session.state,
            pid=self.session.pid,
            calls=self._calls,
            restarts=self._restarts,
            in_flight=self._lock.locked(),
            last_error=self._last_error,
            last_activity=self._last_activity,
        )

    def _new_session(self) -> ProcessSession:
        return ProcessSession(
            self.executable,
            executable_args=self.executable_args,
            stay_open_args=STAY_OPEN_ARGS,
            encoding=self.encoding,
            cwd=self.cwd,
            env=self.env,
        )

"""Per-call bookkeeping for the stay-open line protocol."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time

from stayopen import exc
from stayopen.constants import DEFAULT_SENTINEL, EXECUTE_TRIGGER
from stayopen.result import ExecuteResult

logger = logging.getLogger(__name__)


def split_marker(line: str, sentinel: str = DEFAULT_SENTINEL) -> tuple[bool, str]:
    """Look for *sentinel* anywhere in *line*.

    Returns whether it was found and the text before it. Text after the marker
    is dropped; the child only ever prints the marker as its final token.

    Examples
    --------
    >>> split_marker("{ready}")
    (True, '')
    >>> split_marker("done{ready}")
    (True, 'done')
    >>> split_marker("done{ready}ignored")
    (True, 'done')
    >>> split_marker("FileName: a.jpg")
    (False, 'FileName: a.jpg')
    """
    index = line.find(sentinel)
    if index == -1:
        return False, line
    return True, line[:index]


@dataclasses.dataclass
class PendingCall:
    """Tracks the output of a single in-flight call.

    Attached to a :class:`~stayopen.session.ProcessSession` as its line sink
    while the call runs. ``done`` fires once: on the end-of-output marker, or on
    EOF from the child.
    """

    parameters: tuple[str, ...]
    sentinel: str = DEFAULT_SENTINEL
    trigger: str = EXECUTE_TRIGGER
    stdout: list[str] = dataclasses.field(default_factory=list)
    stderr: list[str] = dataclasses.field(default_factory=list)
    error: BaseException | None = None
    start_time: float | None = None
    end_time: float | None = None
    done: threading.Event = dataclasses.field(default_factory=threading.Event)

    def on_stdout(self, line: str) -> None:
        if self.done.is_set():
            logger.debug("Line after end-of-output marker: %r", line)
            return
        found, content = split_marker(line, self.sentinel)
        if not found:
            self.stdout.append(line)
            return
        if content:
            self.stdout.append(content)
        self.signal_done()

    def on_stderr(self, line: str) -> None:
        self.stderr.append(line)

    def on_eof(self, reason: str) -> None:
        if self.done.is_set():
            return
        self.error = exc.BrokenPipe(f"Child process closed its output: {reason}")
        self.signal_done()

    def signal_done(self) -> None:
        """Mark the call complete. Later calls are no-ops."""
        if self.done.is_set():
            return
        self.end_time = time.monotonic()
        self.done.set()

    def wait(self, timeout: float | None) -> bool:
        """Wait for completion; returns False on timeout."""
        return self.done.wait(timeout=timeout)


def build_result(call: PendingCall) -> ExecuteResult:
    """Convert a completed call into an :class:`ExecuteResult`."""
    return ExecuteResult(
        parameters=call.parameters,
        stdout=list(call.stdout),
        stderr=list(call.stderr),
    )

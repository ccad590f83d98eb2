"""Own a stay-open child process and its three pipes.

stayopen.session
~~~~~~~~~~~~~~~~

:class:`ProcessSession` launches the child in persistent mode, drains stdout
and stderr on two background threads, and hands each line to whichever
:class:`LineSink` is attached at the time. It knows where lines end and nothing
else about the protocol; attributing lines to calls is the channel's job.

A session is not safe to drive from several threads at once.
:class:`~stayopen.channel.CommandChannel` serializes access to it.
"""

from __future__ import annotations

import codecs
import contextlib
import logging
import os
import selectors
import subprocess
import threading
import typing as t

from stayopen import exc
from stayopen._internal import trace
from stayopen.constants import (
    KILL_GRACE_SECONDS,
    SHUTDOWN_DIRECTIVE,
    STAY_OPEN_ARGS,
    STDERR_SETTLE_SECONDS,
    SessionState,
)

if t.TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from stayopen._internal.types import EnvMapping, StrPath

logger = logging.getLogger(__name__)

__all__ = ("LineSink", "ProcessSession", "SessionState")

# Windows: keep the child from opening a console window. 0 elsewhere.
_CREATION_FLAGS: int = getattr(subprocess, "CREATE_NO_WINDOW", 0)

# selectors only handle pipes on POSIX; Windows falls back to a plain line loop
_SELECTABLE_PIPES = os.name == "posix"

_READ_CHUNK = 65536


class LineSink(t.Protocol):
    """Receiver for the lines of one call."""

    def on_stdout(self, line: str) -> None:
        """Handle one stdout line, terminator removed."""

    def on_stderr(self, line: str) -> None:
        """Handle one stderr line, terminator removed."""

    def on_eof(self, reason: str) -> None:
        """Handle the child closing its stdout."""


class ProcessSession:
    """A stay-open child process.

    Parameters
    ----------
    executable : str or PathLike
        Program to launch
    executable_args : Sequence[str], optional
        Arguments placed before the stay-open arguments, e.g. the script path
        when *executable* is an interpreter
    stay_open_args : Sequence[str], optional
        Arguments that switch the child into persistent mode and make it read
        its arguments from stdin. Default: ``-stay_open True -@ -``
    encoding : str
        Encoding of all three pipes. Default: ``utf-8``
    cwd : str or PathLike, optional
        Working directory of the child
    env : Mapping[str, str], optional
        Variables layered over the parent's environment

    Examples
    --------
    >>> session = ProcessSession("exiftool")
    >>> session.state
    <SessionState.UNSTARTED: 1>
    >>> session.argv
    ['exiftool', '-stay_open', 'True', '-@', '-']
    """

    def __init__(
        self,
        executable: StrPath,
        *,
        executable_args: Sequence[str] = (),
        stay_open_args: Sequence[str] = STAY_OPEN_ARGS,
        encoding: str = "utf-8",
        cwd: StrPath | None = None,
        env: EnvMapping | None = None,
    ) -> None:
        self.executable = executable
        self.executable_args = tuple(str(a) for a in executable_args)
        self.stay_open_args = tuple(str(a) for a in stay_open_args)
        self.encoding = encoding
        self.cwd = cwd
        self.env = env
        self.process: subprocess.Popen[str] | None = None
        self._state = SessionState.UNSTARTED
        self._sink: LineSink | None = None
        self._eof_reason: str | None = None
        self._stdout_thread: threading.Thread | None = None
        self._stderr_thread: threading.Thread | None = None

        # stderr flush handshake, see wait_for_stderr()
        self._stderr_drained = threading.Condition()
        self._flush_requested = 0
        self._flush_done = 0
        self._stderr_closed = False
        self._wakeup: tuple[int, int] | None = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(state={self._state.name}, pid={self.pid})"

    # Properties --------------------------------------------------------
    @property
    def argv(self) -> list[str]:
        """Full command line used to launch the child."""
        return [os.fspath(self.executable), *self.executable_args, *self.stay_open_args]

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def returncode(self) -> int | None:
        if self.process is None:
            return None
        return self.process.poll()

    @property
    def is_alive(self) -> bool:
        """Return True while the child process has not exited."""
        return self.process is not None and self.process.poll() is None

    # Lifecycle ---------------------------------------------------------
    def start(self) -> None:
        """Launch the child and begin draining its output.

        Raises
        ------
        :exc:`exc.ProcessStartFailure`
            If the executable is missing or cannot be launched
        :exc:`exc.SessionStateError`
            If the session was already started
        """
        if self._state is not SessionState.UNSTARTED:
            msg = f"Cannot start a session in state {self._state.name}"
            raise exc.SessionStateError(msg)

        argv = self.argv
        env = {**os.environ, **self.env} if self.env is not None else None

        logger.debug("Starting stay-open process: %s", argv)
        with trace.span("session.start", argv=argv):
            try:
                self.process = subprocess.Popen(
                    argv,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding=self.encoding,
                    errors="backslashreplace",
                    bufsize=1,
                    cwd=self.cwd,
                    env=env,
                    creationflags=_CREATION_FLAGS,
                )
            except OSError as e:
                self._state = SessionState.TERMINATED
                raise exc.ProcessStartFailure(
                    self.executable,
                    e.strerror or str(e),
                ) from e

        self._state = SessionState.RUNNING

        self._stdout_thread = threading.Thread(
            target=self._read_stdout,
            args=(self.process,),
            name=f"stayopen-stdout-{self.process.pid}",
            daemon=True,
        )
        self._stdout_thread.start()

        if _SELECTABLE_PIPES:
            self._wakeup = os.pipe()
            os.set_blocking(self._wakeup[1], False)
        self._stderr_thread = threading.Thread(
            target=self._read_stderr,
            args=(self.process,),
            name=f"stayopen-stderr-{self.process.pid}",
            daemon=True,
        )
        self._stderr_thread.start()

    def shutdown(self, timeout: float | None = None) -> None:
        """End persistent mode and wait for the child to exit.

        Writes the ``-stay_open`` / ``False`` directive, closes stdin and blocks
        until the process is gone. Calling it again is a no-op, as is calling
        it while another thread is already shutting the session down.

        Parameters
        ----------
        timeout : float, optional
            Seconds to wait before escalating to ``terminate()``/``kill()``.
            Waits indefinitely by default.
        """
        if self._state in (SessionState.SHUTTING_DOWN, SessionState.TERMINATED):
            return
        if self._state is SessionState.UNSTARTED:
            self._state = SessionState.TERMINATED
            return

        proc = self.process
        assert proc is not None
        self._state = SessionState.SHUTTING_DOWN

        with trace.span("session.shutdown", child_pid=proc.pid):
            try:
                self._write(SHUTDOWN_DIRECTIVE)
            except exc.BrokenPipe:
                logger.debug(
                    "Child %s exited before the shutdown directive",
                    proc.pid,
                    exc_info=True,
                )
            if proc.stdin is not None:
                with contextlib.suppress(OSError, ValueError):
                    proc.stdin.close()
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Child %s did not exit within %ss of shutdown, terminating",
                    proc.pid,
                    timeout,
                )
                self._terminate(proc)
            self._finish(proc)

    def kill(self) -> None:
        """Tear the child down without the shutdown directive."""
        if self._state is SessionState.TERMINATED:
            return
        if self.process is None:
            self._state = SessionState.TERMINATED
            return

        proc = self.process
        self._state = SessionState.SHUTTING_DOWN
        logger.debug("Killing stay-open process %s", proc.pid)
        self._terminate(proc)
        self._finish(proc)

    def _terminate(self, proc: subprocess.Popen[str]) -> None:
        try:
            proc.terminate()
            proc.wait(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    def _finish(self, proc: subprocess.Popen[str]) -> None:
        if proc.stdin is not None:
            with contextlib.suppress(OSError, ValueError):
                proc.stdin.close()

        for thread, stream in (
            (self._stdout_thread, proc.stdout),
            (self._stderr_thread, proc.stderr),
        ):
            if thread is not None:
                thread.join(timeout=KILL_GRACE_SECONDS)
                if thread.is_alive():
                    # A grandchild may still hold the pipe open
                    logger.debug("Reader %s still running after exit", thread.name)
                    continue
            if stream is not None:
                with contextlib.suppress(OSError):
                    stream.close()

        if self._wakeup is not None and not (
            self._stderr_thread is not None and self._stderr_thread.is_alive()
        ):
            for fd in self._wakeup:
                os.close(fd)
            self._wakeup = None

        self._state = SessionState.TERMINATED
        logger.debug("Stay-open process %s exited with %s", proc.pid, proc.returncode)

    # Subscriptions -----------------------------------------------------
    def attach(self, sink: LineSink) -> None:
        """Route subsequent lines to *sink*."""
        if self._sink is not None and self._sink is not sink:
            msg = "Another call is already attached to this session"
            raise exc.SessionStateError(msg)
        self._sink = sink
        # stdout may have hit EOF before anyone was listening
        if self._eof_reason is not None:
            sink.on_eof(self._eof_reason)

    def detach(self, sink: LineSink) -> None:
        """Stop routing lines to *sink*; a no-op if another sink is attached."""
        if self._sink is sink:
            self._sink = None

    @contextlib.contextmanager
    def subscribed(self, sink: LineSink) -> Iterator[LineSink]:
        """Attach *sink* for the duration of the block."""
        self.attach(sink)
        try:
            yield sink
        finally:
            self.detach(sink)

    def wait_for_stderr(self, timeout: float = STDERR_SETTLE_SECONDS) -> bool:
        """Block until stderr written so far has reached the attached sink.

        stdout and stderr are separate pipes, so the end-of-output marker can be
        read before the stderr lines the child wrote ahead of it. This asks the
        stderr reader to confirm it has found the pipe empty after the request,
        which means everything the child wrote before the marker was delivered.

        Returns False if the reader did not confirm within *timeout*, or on
        platforms where pipes cannot be polled.
        """
        if self._wakeup is None:
            return False
        with self._stderr_drained:
            if self._stderr_closed:
                return True
            self._flush_requested += 1
            target = self._flush_requested
        # A full wakeup pipe already holds an unread nudge
        with contextlib.suppress(BlockingIOError):
            os.write(self._wakeup[1], b"\0")
        with self._stderr_drained:
            settled = self._stderr_drained.wait_for(
                lambda: self._flush_done >= target or self._stderr_closed,
                timeout=timeout,
            )
        if not settled:
            logger.debug("stderr of %s did not settle within %ss", self.pid, timeout)
            trace.point("session.stderr_unsettled", child_pid=self.pid)
        return settled

    # Writing -----------------------------------------------------------
    def write_line(self, text: str) -> None:
        """Write *text* as one line to the child's stdin.

        Raises
        ------
        :exc:`exc.SessionClosed`
            If the session is not running; nothing is written
        :exc:`exc.BrokenPipe`
            If the child exited or closed its input
        """
        self.write_lines((text,))

    def write_lines(self, lines: Iterable[str]) -> None:
        """Write several lines, flushing once at the end."""
        if self._state is not SessionState.RUNNING:
            msg = f"Session is {self._state.name.lower()}"
            raise exc.SessionClosed(msg)
        self._write(lines)

    def _write(self, lines: Iterable[str]) -> None:
        assert self.process is not None
        stdin = self.process.stdin
        if stdin is None:
            msg = "stdin of child process is not a pipe"
            raise exc.BrokenPipe(msg)
        try:
            for line in lines:
                logger.debug("-> %s", line)
                stdin.write(line + "\n")
            stdin.flush()
        except (OSError, ValueError) as e:
            # ValueError: write to a closed file
            msg = f"Could not write to child process {self.pid}: {e}"
            raise exc.BrokenPipe(msg) from e

    # Reader threads ----------------------------------------------------
    def _read_stdout(self, process: subprocess.Popen[str]) -> None:
        assert process.stdout is not None
        reason = "EOF from child process"
        try:
            for raw in process.stdout:
                line = raw.rstrip("\n")
                sink = self._sink
                if sink is None:
                    logger.debug("Unattributed stdout line: %r", line)
                    continue
                sink.on_stdout(line)
        except Exception:  # pragma: no cover - reader must always report EOF
            logger.exception("stdout reader crashed")
            reason = "stdout reader crashed"
        finally:
            self._eof_reason = reason
            trace.point("session.eof", child_pid=process.pid, reason=reason)
            sink = self._sink
            if sink is not None:
                sink.on_eof(reason)

    def _read_stderr(self, process: subprocess.Popen[str]) -> None:
        if process.stderr is None:
            return
        try:
            if self._wakeup is None:
                for raw in process.stderr:
                    self._dispatch_stderr(raw.rstrip("\n"))
            else:
                self._poll_stderr(process.stderr.fileno(), self._wakeup[0])
        except Exception:  # pragma: no cover
            logger.exception("stderr reader crashed")
        finally:
            with self._stderr_drained:
                self._stderr_closed = True
                self._stderr_drained.notify_all()

    def _poll_stderr(self, fd: int, wakeup_fd: int) -> None:
        """Read stderr until EOF, answering flush requests in between.

        A request is acknowledged only after a zero-timeout poll finds the pipe
        empty. Everything read before that poll has already been dispatched.
        """
        decoder = codecs.getincrementaldecoder(self.encoding)(errors="backslashreplace")
        partial = ""
        with selectors.DefaultSelector() as selector:
            selector.register(fd, selectors.EVENT_READ)
            selector.register(wakeup_fd, selectors.EVENT_READ)
            while True:
                with self._stderr_drained:
                    target = self._flush_requested
                    pending = target > self._flush_done
                ready = {key.fd for key, _ in selector.select(0 if pending else None)}

                if wakeup_fd in ready:
                    os.read(wakeup_fd, _READ_CHUNK)
                if fd in ready:
                    data = os.read(fd, _READ_CHUNK)
                    if not data:
                        break
                    *lines, partial = (partial + decoder.decode(data)).split("\n")
                    for line in lines:
                        self._dispatch_stderr(line.rstrip("\r"))
                elif pending:
                    with self._stderr_drained:
                        self._flush_done = target
                        self._stderr_drained.notify_all()

        partial += decoder.decode(b"", final=True)
        if partial:
            self._dispatch_stderr(partial.rstrip("\r"))

    def _dispatch_stderr(self, line: str) -> None:
        sink = self._sink
        if sink is None:
            logger.debug("Unattributed stderr line: %r", line)
            return
        sink.on_stderr(line)

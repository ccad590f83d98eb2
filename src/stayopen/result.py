"""Result and diagnostic types returned by :class:`~stayopen.channel.CommandChannel`."""

from __future__ import annotations

import dataclasses
import typing as t

if t.TYPE_CHECKING:
    from stayopen.constants import SessionState


@dataclasses.dataclass(frozen=True)
class ExecuteResult:
    """Output of one call, split into lines.

    Attributes
    ----------
    parameters : tuple[str, ...]
        Parameter lines that were sent, without the execute trigger
    stdout : list[str]
        Lines printed before the end-of-output marker. The marker itself and
        anything after it on the same line are never included.
    stderr : list[str]
        Lines the child wrote to its error stream before the end-of-output
        marker. On Windows, where pipes cannot be polled, lines that arrive
        after the marker may be dropped.

    Examples
    --------
    >>> result = ExecuteResult(
    ...     parameters=("-ver",),
    ...     stdout=["12.76"],
    ...     stderr=[],
    ... )
    >>> result.stdout
    ['12.76']
    >>> result.stdout_text
    '12.76'
    >>> bool(result.stderr)
    False
    """

    parameters: tuple[str, ...]
    stdout: list[str]
    stderr: list[str]

    @property
    def stdout_text(self) -> str:
        """Return stdout lines joined by newlines."""
        return "\n".join(self.stdout)

    @property
    def stderr_text(self) -> str:
        """Return stderr lines joined by newlines."""
        return "\n".join(self.stderr)


@dataclasses.dataclass(frozen=True)
class ChannelStats:
    """Diagnostic counters for a channel and its session."""

    state: SessionState
    pid: int | None
    calls: int
    restarts: int
    in_flight: bool
    last_error: str | None
    last_activity: float | None

"""stayopen, request/response framing over stay-open command-line tools."""

from .__about__ import (
    __author__,
    __copyright__,
    __description__,
    __email__,
    __license__,
    __package_name__,
    __title__,
    __version__,
)
from .channel import CommandChannel
from .constants import SessionState
from .result import ChannelStats, ExecuteResult
from .session import ProcessSession

__all__ = (
    "ChannelStats",
    "CommandChannel",
    "ExecuteResult",
    "ProcessSession",
    "SessionState",
    "__author__",
    "__copyright__",
    "__description__",
    "__email__",
    "__license__",
    "__package_name__",
    "__title__",
    "__version__",
)

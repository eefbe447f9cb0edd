"""Protocol module for the memcache server."""

from .commands import Command, ResponseStatus, Result, Value
from .dispatcher import CommandDispatcher, RequestContext
from .errors import ConnectionClosed, HandlerError, ProtocolError, TransportError
from .parser import ProtocolParser

__all__ = [
    "Command",
    "ResponseStatus",
    "Result",
    "Value",
    "CommandDispatcher",
    "RequestContext",
    "ConnectionClosed",
    "HandlerError",
    "ProtocolError",
    "TransportError",
    "ProtocolParser",
]

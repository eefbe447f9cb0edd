"""
mcserver: Memcached Text Protocol Server

An asyncio server for the memcached text protocol. It parses requests,
dispatches them to handlers registered by the embedding application and
writes the results back in the wire format.
"""

__version__ = "1.0.0"

from .network.tcp_server import MemcacheServer
from .protocol import Command, HandlerError, RequestContext, ResponseStatus, Result, Value

__all__ = [
    "MemcacheServer",
    "Command",
    "HandlerError",
    "RequestContext",
    "ResponseStatus",
    "Result",
    "Value",
]

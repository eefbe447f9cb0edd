"""
Protocol Error Types

Exceptions raised while reading requests and running handlers.

    ProtocolError   -> malformed client input, session continues
    TransportError  -> stream failure, session ends
    HandlerError    -> handler failure, reported as SERVER_ERROR
"""


class MemcacheError(Exception):
    """Base exception for all memcache server errors."""


class ProtocolError(MemcacheError):
    """
    Raised when a request line or data block is malformed.

    Attributes:
        description: Human readable reason, sent back as CLIENT_ERROR
    """

    def __init__(self, description: str):
        super().__init__(description)
        self.description = description

    def __str__(self) -> str:
        return f"protocol error: {self.description}"


class TransportError(MemcacheError):
    """Raised when the underlying stream fails or ends mid-request."""


class ConnectionClosed(TransportError):
    """Raised when the peer closes the stream cleanly between requests."""


class HandlerError(MemcacheError):
    """
    Raised by a handler to report a recoverable failure.

    The session stays open and the client receives
    ``SERVER_ERROR <description>``.
    """

    def __init__(self, description: str):
        super().__init__(description)
        self.description = description

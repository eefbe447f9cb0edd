"""
Protocol Command and Result Definitions

This module defines the data structures exchanged between the request
parser, the command dispatcher and the response formatter.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List


# Verbs understood by the request parser
STORAGE_COMMANDS = ("set", "add", "replace", "append", "prepend")
RETRIEVAL_COMMANDS = ("get", "gets")
ARITHMETIC_COMMANDS = ("incr", "decr")
ALL_COMMANDS = STORAGE_COMMANDS + RETRIEVAL_COMMANDS + ARITHMETIC_COMMANDS + (
    "cas",
    "delete",
    "touch",
    "flush_all",
    "version",
    "quit",
    "stats",
)

NOREPLY = "noreply"


class ResponseStatus(Enum):
    """Canonical status lines."""
    OK = "OK"
    END = "END"
    STORED = "STORED"
    NOT_STORED = "NOT_STORED"
    EXISTS = "EXISTS"
    DELETED = "DELETED"
    TOUCHED = "TOUCHED"
    NOT_FOUND = "NOT_FOUND"


# Error status prefixes, followed by a free-text description
ERROR_PREFIX = "ERROR "
CLIENT_ERROR_PREFIX = "CLIENT_ERROR "
SERVER_ERROR_PREFIX = "SERVER_ERROR "


@dataclass
class Command:
    """
    Represents a parsed protocol request.

    Fields that do not apply to a given verb keep their zero value.

    Attributes:
        name: The verb (set, get, cas, ...)
        key: Primary key for single-key commands
        keys: Keys for get/gets/delete, arguments for stats
        flags: Opaque flags token, passed through verbatim
        exptime: Expiration as 0 (never) or absolute epoch seconds
        data: Payload of storage commands, exactly as many bytes as declared
        delta: Amount for incr/decr
        cas: Compare-and-swap token, passed through verbatim
        noreply: True when the client asked for no reply
    """
    name: str
    key: str = ""
    keys: List[str] = field(default_factory=list)
    flags: str = ""
    exptime: int = 0
    data: bytes = b""
    delta: int = 0
    cas: str = ""
    noreply: bool = False


@dataclass
class Value:
    """One VALUE block of a response. An empty cas is left off the wire."""
    key: str
    flags: str
    data: bytes
    cas: str = ""


@dataclass
class Result:
    """
    Represents a response before it is written to the wire.

    Attributes:
        status: The final status line (without line terminator)
        values: VALUE blocks, emitted in the order they were appended
    """
    status: str = ""
    values: List[Value] = field(default_factory=list)

    def add_value(self, key: str, flags: str, data: bytes, cas: str = "") -> None:
        """Append a VALUE block."""
        self.values.append(Value(key=key, flags=flags, data=data, cas=cas))

    def set_status(self, status: ResponseStatus) -> None:
        self.status = status.value

    @classmethod
    def with_status(cls, status: ResponseStatus) -> "Result":
        return cls(status=status.value)

    @classmethod
    def error(cls, message: str) -> "Result":
        """Create a generic ERROR result."""
        return cls(status=ERROR_PREFIX + message)

    @classmethod
    def client_error(cls, message: str) -> "Result":
        """Create a CLIENT_ERROR result for malformed input."""
        return cls(status=CLIENT_ERROR_PREFIX + message)

    @classmethod
    def server_error(cls, message: str) -> "Result":
        """Create a SERVER_ERROR result for handler failures."""
        return cls(status=SERVER_ERROR_PREFIX + message)

    @classmethod
    def not_implemented(cls, verb: str) -> "Result":
        return cls.error(f"{verb} not implemented")

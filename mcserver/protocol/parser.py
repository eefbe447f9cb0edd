"""
Protocol Parser Module

This module handles parsing of memcached text protocol requests and
formatting of results back into the wire grammar.

Reading a request is split in two steps:
- parse_request(): turn one request line into a Command plus the size of
  the data block that follows it (storage commands only)
- read_request(): pull the line and the data block off an asyncio stream,
  translating stream failures into TransportError
"""

import asyncio
import re
import time
from typing import Callable, List, Optional, Tuple

from .commands import (
    ARITHMETIC_COMMANDS,
    NOREPLY,
    RETRIEVAL_COMMANDS,
    STORAGE_COMMANDS,
    Command,
    Result,
)
from .errors import ConnectionClosed, ProtocolError, TransportError
from ..config.settings import settings

CRLF = b"\r\n"

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def _parse_int64(token: str, what: str) -> int:
    """Parse a signed 64-bit decimal integer or raise ProtocolError."""
    if not _INTEGER_RE.fullmatch(token):
        raise ProtocolError(f"cannot read {what} {token!r}")
    value = int(token)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ProtocolError(f"cannot read {what} {token!r}: out of range")
    return value


def _has_noreply(parts: List[str], index: int) -> bool:
    return len(parts) > index and parts[index] == NOREPLY


class ProtocolParser:
    """
    Parser for the memcached text protocol.

    Protocol Format:
        Request:  <command> [ARGS...]\\r\\n[<data block>\\r\\n]
        Response: [VALUE <key> <flags> <bytes> [<cas>]\\r\\n<data>\\r\\n]*<status>\\r\\n

    Commands:
        set|add|replace|append|prepend <key> <flags> <exptime> <bytes> [noreply]
        cas <key> <flags> <exptime> <bytes> <cas unique> [noreply]
        get|gets <key>*
        delete <key>* [noreply]
        incr|decr <key> <delta> [noreply]
        touch <key> <exptime> [noreply]
        flush_all [delay] [noreply]
        version | quit
        stats [args...]

    Exptime values between 1 and max_delta seconds are relative and are
    converted into absolute epoch seconds using the parser clock.
    """

    def __init__(
            self,
            max_delta: Optional[int] = None,
            clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the parser.

        Args:
            max_delta: Largest exptime treated as relative (default from settings)
            clock: Returns the current epoch time in seconds (default time.time)
        """
        self.max_delta = max_delta if max_delta is not None else settings.REALTIME_MAX_DELTA
        self._clock = clock if clock is not None else time.time
        self._grammars = {
            "cas": self._parse_cas,
            "delete": self._parse_delete,
            "touch": self._parse_touch,
            "flush_all": self._parse_flush_all,
            "version": self._parse_bare,
            "quit": self._parse_bare,
            "stats": self._parse_stats,
        }
        for name in STORAGE_COMMANDS:
            self._grammars[name] = self._parse_storage
        for name in RETRIEVAL_COMMANDS:
            self._grammars[name] = self._parse_retrieval
        for name in ARITHMETIC_COMMANDS:
            self._grammars[name] = self._parse_arithmetic

    # ------------------------------------------------------------------
    # Stream reading
    # ------------------------------------------------------------------

    async def read_request(self, reader: asyncio.StreamReader) -> Command:
        """
        Read exactly one request from the stream.

        Returns:
            The parsed Command. Storage commands carry their data block.

        Raises:
            ProtocolError: The client sent malformed input
            ConnectionClosed: The peer closed the stream before a new request
            TransportError: The stream failed or ended mid-request
        """
        line = await self._read_line(reader)
        command, length = self.parse_request(line)
        if length is not None:
            command.data = await self._read_data_block(reader, length)
        return command

    async def _read_line(self, reader: asyncio.StreamReader) -> str:
        try:
            raw = await reader.readline()
        except ValueError:
            # StreamReader discards the oversized line before raising
            raise ProtocolError("line too long")
        except OSError as exc:
            raise TransportError(f"read failed: {exc}") from exc

        if not raw:
            raise ConnectionClosed("connection closed by peer")
        if not raw.endswith(b"\n"):
            raise TransportError("unexpected EOF in request line")

        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ProtocolError("invalid encoding")

    async def _read_data_block(self, reader: asyncio.StreamReader, length: int) -> bytes:
        try:
            data = await reader.readexactly(length)
            if await reader.readexactly(1) != b"\r":
                raise ProtocolError("expected \\r after data block")
            if await reader.readexactly(1) != b"\n":
                raise ProtocolError("expected \\n after data block")
        except asyncio.IncompleteReadError as exc:
            raise TransportError(
                f"read only {len(exc.partial)} of {exc.expected} expected bytes"
            ) from exc
        except OSError as exc:
            raise TransportError(f"read failed: {exc}") from exc
        return data

    # ------------------------------------------------------------------
    # Line grammar
    # ------------------------------------------------------------------

    def parse_request(self, line: str) -> Tuple[Command, Optional[int]]:
        """
        Parse a single request line.

        Args:
            line: The request line, with or without its terminator

        Returns:
            (command, length) where length is the size of the data block
            that must follow the line, or None when no data block follows.

        Raises:
            ProtocolError: On empty lines, unknown verbs and bad arguments

        Examples:
            >>> parser = ProtocolParser()
            >>> cmd, length = parser.parse_request("get a bb c\\r\\n")
            >>> cmd.keys
            ['a', 'bb', 'c']
            >>> length is None
            True
        """
        parts = line.split()
        if not parts:
            raise ProtocolError("empty line")

        grammar = self._grammars.get(parts[0])
        if grammar is None:
            raise ProtocolError(f"unknown command {parts[0]!r}")
        return grammar(parts)

    def normalize_exptime(self, exptime: int) -> int:
        """Convert a relative exptime into absolute epoch seconds."""
        if 0 < exptime <= self.max_delta:
            return int(self._clock()) + exptime
        return exptime

    def _require(self, parts: List[str], count: int) -> None:
        if len(parts) < count:
            raise ProtocolError(f"too few params to command {parts[0]!r}")

    def _read_length(self, token: str) -> int:
        length = _parse_int64(token, "bytes")
        if length < 0:
            raise ProtocolError(f"cannot read bytes {token!r}: negative length")
        return length

    def _parse_storage(self, parts: List[str]) -> Tuple[Command, int]:
        """<command> <key> <flags> <exptime> <bytes> [noreply]"""
        self._require(parts, 5)
        command = Command(
            name=parts[0],
            key=parts[1],
            flags=parts[2],
            exptime=self.normalize_exptime(_parse_int64(parts[3], "exptime")),
            noreply=_has_noreply(parts, 5),
        )
        return command, self._read_length(parts[4])

    def _parse_cas(self, parts: List[str]) -> Tuple[Command, int]:
        """cas <key> <flags> <exptime> <bytes> <cas unique> [noreply]"""
        self._require(parts, 6)
        command = Command(
            name=parts[0],
            key=parts[1],
            flags=parts[2],
            exptime=self.normalize_exptime(_parse_int64(parts[3], "exptime")),
            cas=parts[5],
            noreply=_has_noreply(parts, 6),
        )
        return command, self._read_length(parts[4])

    def _parse_delete(self, parts: List[str]) -> Tuple[Command, None]:
        """delete <key>* [noreply]"""
        self._require(parts, 2)
        keys = parts[1:]
        noreply = len(keys) > 1 and keys[-1] == NOREPLY
        if noreply:
            keys = keys[:-1]
        return Command(name=parts[0], keys=keys, noreply=noreply), None

    def _parse_retrieval(self, parts: List[str]) -> Tuple[Command, None]:
        """get|gets <key>*"""
        self._require(parts, 2)
        return Command(name=parts[0], keys=parts[1:]), None

    def _parse_arithmetic(self, parts: List[str]) -> Tuple[Command, None]:
        """incr|decr <key> <delta> [noreply]"""
        self._require(parts, 3)
        command = Command(
            name=parts[0],
            key=parts[1],
            delta=_parse_int64(parts[2], "value"),
            noreply=_has_noreply(parts, 3),
        )
        return command, None

    def _parse_touch(self, parts: List[str]) -> Tuple[Command, None]:
        """touch <key> <exptime> [noreply]"""
        self._require(parts, 3)
        command = Command(
            name=parts[0],
            key=parts[1],
            exptime=self.normalize_exptime(_parse_int64(parts[2], "exptime")),
            noreply=_has_noreply(parts, 3),
        )
        return command, None

    def _parse_flush_all(self, parts: List[str]) -> Tuple[Command, None]:
        """flush_all [delay] [noreply]"""
        args = parts[1:]
        command = Command(name=parts[0])
        if args and args[-1] == NOREPLY:
            command.noreply = True
            args = args[:-1]
        if args:
            command.exptime = self.normalize_exptime(_parse_int64(args[0], "delay"))
        return command, None

    def _parse_bare(self, parts: List[str]) -> Tuple[Command, None]:
        """version | quit"""
        return Command(name=parts[0]), None

    def _parse_stats(self, parts: List[str]) -> Tuple[Command, None]:
        """stats [args...]"""
        return Command(name=parts[0], keys=parts[1:]), None

    # ------------------------------------------------------------------
    # Response formatting
    # ------------------------------------------------------------------

    def format_response(self, result: Result) -> bytes:
        """
        Format a Result into wire bytes.

        Examples:
            >>> parser = ProtocolParser()
            >>> parser.format_response(Result(status="END"))
            b'END\\r\\n'
            >>> parser.format_response(Result())
            b'\\r\\n'
        """
        out = bytearray()
        for value in result.values:
            header = f"VALUE {value.key} {value.flags} {len(value.data)}"
            if value.cas:
                header += f" {value.cas}"
            out += header.encode("utf-8")
            out += CRLF
            out += value.data
            out += CRLF
        out += result.status.encode("utf-8")
        out += CRLF
        return bytes(out)

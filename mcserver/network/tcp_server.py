"""
Async Memcache Server Module

This module implements the connection server for the memcached text
protocol.

Each accepted connection is served by its own asyncio task:
- read one request with ProtocolParser.read_request()
- hand it to the CommandDispatcher
- format and write the Result unless the client asked for noreply
- repeat until the client disconnects, sends quit, or the stream fails

Lifecycle:
    IDLE --start()--> RUNNING --stop()--> STOPPING --> STOPPED
                         |
                         +--accept failure--> FAILED --stop()--> STOPPED

stop() closes the listener, waits a short grace period, force-closes
every open connection and then waits (bounded) for the connection tasks
to finish.
"""

import asyncio
import errno
import itertools
import logging
import os
import socket
import stat
import time
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .address import UNIX, ListenAddress, parse_address
from ..config.settings import settings
from ..protocol.commands import Result
from ..protocol.dispatcher import CommandDispatcher, Handler, RequestContext
from ..protocol.errors import ConnectionClosed, ProtocolError, TransportError
from ..protocol.parser import ProtocolParser

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 1024

# accept() failures worth retrying after a pause
TRANSIENT_ACCEPT_ERRNOS = frozenset({
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.ECONNABORTED,
    errno.ECONNRESET,
    errno.EAGAIN,
    errno.EINTR,
    errno.EPROTO,
    errno.EPERM,
})


def is_transient_accept_error(exc: OSError) -> bool:
    """Check whether an accept() failure should be retried."""
    return exc.errno in TRANSIENT_ACCEPT_ERRNOS


def _wake(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


class ServerState(Enum):
    """Server lifecycle states."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class Session:
    """
    Book-keeping for one accepted connection.

    The serving task owns the streams; the server keeps the session in its
    registry only to enumerate and force-close it during shutdown.
    """
    id: int
    sock: socket.socket
    peername: Any
    writer: Optional[StreamWriter] = None
    task: Optional["asyncio.Task[None]"] = None

    def close(self) -> None:
        """Force the connection closed, waking up any pending read."""
        if self.writer is not None:
            self.writer.transport.abort()
            return
        # Streams are not attached yet; shutting down makes the first read see EOF
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            logger.debug(f"Session {self.id} already disconnected: {exc}")


class MemcacheServer:
    """
    Asynchronous memcached text protocol server.

    Storage semantics are supplied by handlers registered per verb; the
    server only guarantees that well-formed requests reach a handler and
    that results are written back in the wire format.

    Usage:
        server = MemcacheServer("127.0.0.1:11211")
        server.register("get", handle_get)
        await server.start()
        ...
        await server.stop()

    Attributes:
        address: Listen address as given (host:port or unix:///path)
        dispatcher: The CommandDispatcher holding registered handlers
        parser: The ProtocolParser used for every connection
    """

    def __init__(
            self,
            address: str = None,
            dispatcher: CommandDispatcher = None,
            parser: ProtocolParser = None,
            grace_period: float = None,
            shutdown_timeout: float = None,
    ):
        """
        Initialize the server.

        Args:
            address: Listen address (default from settings)
            dispatcher: Handler registry (creates an empty one if not provided)
            parser: Request parser (creates a new one if not provided)
            grace_period: Pause between closing the listener and force-closing
                connections during stop()
            shutdown_timeout: Longest stop() waits for connections to finish

        Raises:
            ValueError: If the address cannot be parsed
        """
        self.address = address if address is not None else settings.ADDRESS
        self.listen_address: ListenAddress = parse_address(self.address)
        self.dispatcher = dispatcher if dispatcher is not None else CommandDispatcher()
        self.parser = parser if parser is not None else ProtocolParser()
        self.grace_period = grace_period if grace_period is not None else settings.SHUTDOWN_GRACE_PERIOD
        self.shutdown_timeout = (
            shutdown_timeout if shutdown_timeout is not None else settings.SHUTDOWN_TIMEOUT
        )
        self.backoff_min = settings.ACCEPT_BACKOFF_MIN
        self.backoff_max = settings.ACCEPT_BACKOFF_MAX

        # Server state
        self._state = ServerState.IDLE
        self._stopped = False
        self._stopped_event = asyncio.Event()
        self._listener: Optional[socket.socket] = None
        self._accept_task: Optional["asyncio.Task[None]"] = None
        self.accept_error: Optional[BaseException] = None
        self._sessions: Dict[int, Session] = {}
        self._session_ids = itertools.count(1)
        self._started_at = 0.0
        self._connection_count = 0
        self._total_requests = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, verb: str, handler: Handler) -> None:
        """Register the handler for a verb. Call before start()."""
        self.dispatcher.register(verb, handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Bind the listener and begin accepting connections in the background.

        Returns as soon as the listener is bound.

        Raises:
            OSError: If the address cannot be bound
            RuntimeError: If the server was already stopped or has failed
        """
        if self._state is ServerState.RUNNING:
            return
        if self._stopped or self._state is ServerState.FAILED:
            raise RuntimeError(f"server is {self._state.value}")

        self._listener = await self._bind()
        self._started_at = time.time()
        self._state = ServerState.RUNNING
        self._accept_task = asyncio.get_running_loop().create_task(
            self._accept_loop(self._listener)
        )
        self._accept_task.add_done_callback(self._on_accept_done)
        logger.info(f"memcached server starts on {self.listen_address}")

    async def serve_forever(self) -> None:
        """
        Wait until the server is stopped.

        Raises:
            OSError: If the accept loop failed with a non-transient error
        """
        if self._accept_task is None:
            raise RuntimeError("server is not started")

        await asyncio.wait([self._accept_task])
        if not self._accept_task.cancelled():
            exc = self._accept_task.exception()
            if exc is not None:
                raise exc
        await self._stopped_event.wait()

    async def stop(self) -> None:
        """
        Stop the server gracefully.

        Only the first call performs the shutdown; later calls return at
        once. Waits at most grace_period + shutdown_timeout seconds.
        """
        if self._stopped:
            return
        self._stopped = True

        if self._listener is None:
            logger.info("memcached server has not started")
            self._finish_stop()
            return

        self._state = ServerState.STOPPING
        await self._close_listener()

        # Let in-flight requests observe the stopped flag
        await asyncio.sleep(self.grace_period)

        self._drain_connections()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.shutdown_timeout
        while self._sessions and loop.time() < deadline:
            await asyncio.sleep(settings.SHUTDOWN_POLL_INTERVAL)

        if self._sessions:
            logger.warning(f"{len(self._sessions)} connections still open after shutdown timeout")
        self._finish_stop()
        logger.info("memcached server stopped")

    def _finish_stop(self) -> None:
        self._state = ServerState.STOPPED
        self._stopped_event.set()

    def _on_accept_done(self, task: "asyncio.Task[None]") -> None:
        """Record why the accept loop ended, if it failed."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self.accept_error = exc
        if not self._stopped:
            # Existing sessions keep running until stop() is called
            self._state = ServerState.FAILED

    def is_running(self) -> bool:
        """Check if the server is currently accepting connections."""
        return self._state is ServerState.RUNNING

    def is_stopping(self) -> bool:
        """Check if stop() has been called."""
        return self._stopped

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def sockname(self) -> Any:
        """The bound address of the listener (useful with port 0)."""
        if self._listener is None:
            return None
        return self._listener.getsockname()

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    async def _bind(self) -> socket.socket:
        addr = self.listen_address
        if addr.family == UNIX:
            self._remove_stale_socket(addr.path)
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sockaddr: Any = addr.path
        else:
            loop = asyncio.get_running_loop()
            infos = await loop.getaddrinfo(
                addr.host, addr.port,
                type=socket.SOCK_STREAM,
                flags=socket.AI_PASSIVE,
            )
            family, _, _, _, sockaddr = infos[0]
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            sock.bind(sockaddr)
            sock.listen(LISTEN_BACKLOG)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    @staticmethod
    def _remove_stale_socket(path: str) -> None:
        try:
            if stat.S_ISSOCK(os.stat(path).st_mode):
                os.unlink(path)
        except FileNotFoundError:
            pass

    async def _close_listener(self) -> None:
        if self._accept_task is not None and not self._accept_task.done():
            self._accept_task.cancel()
            await asyncio.wait([self._accept_task])
        self._listener.close()

        if self.listen_address.family == UNIX:
            try:
                os.unlink(self.listen_address.path)
            except FileNotFoundError:
                pass

    async def _accept_loop(self, listener: socket.socket) -> None:
        """
        Accept connections until the server stops.

        Transient accept errors are retried with exponential backoff
        (backoff_min doubling up to backoff_max). Any other error ends the
        loop and is re-raised.
        """
        delay = 0.0
        try:
            while True:
                try:
                    conn, peername = await self._accept(listener)
                except OSError as exc:
                    if self._stopped:
                        return
                    if not is_transient_accept_error(exc):
                        logger.error(f"memcached server accept error: {exc}")
                        raise
                    delay = self.backoff_min if not delay else min(delay * 2, self.backoff_max)
                    logger.warning(f"accept error: {exc}; retrying in {delay:.3f}s")
                    await asyncio.sleep(delay)
                    continue
                delay = 0.0

                if self._stopped:
                    conn.close()
                    return

                self._admit(conn, peername)
        finally:
            listener.close()

    @staticmethod
    async def _accept(listener: socket.socket) -> Tuple[socket.socket, Any]:
        """
        Accept one connection from the non-blocking listener.

        Waits for readability first and calls accept() only after waking,
        so a cancelled wait never takes a connection off the backlog.
        """
        loop = asyncio.get_running_loop()
        fd = listener.fileno()
        while True:
            try:
                conn, peername = listener.accept()
            except (BlockingIOError, InterruptedError):
                pass
            else:
                conn.setblocking(False)
                return conn, peername

            readable = loop.create_future()
            loop.add_reader(fd, _wake, readable)
            try:
                await readable
            finally:
                loop.remove_reader(fd)

    def _admit(self, conn: socket.socket, peername: Any) -> None:
        if self.listen_address.family != UNIX:
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            conn.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

        session = Session(id=next(self._session_ids), sock=conn, peername=peername)
        self._sessions[session.id] = session
        self._connection_count += 1
        session.task = asyncio.get_running_loop().create_task(self._run_session(session))

    def _drain_connections(self) -> None:
        """Force-close every registered connection."""
        for session in list(self._sessions.values()):
            logger.debug(f"Closing connection {session.id} ({session.peername})")
            session.close()

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def _run_session(self, session: Session) -> None:
        """Attach streams to an accepted socket and serve it until it ends."""
        try:
            if self.listen_address.family == UNIX:
                reader, writer = await asyncio.open_unix_connection(
                    sock=session.sock, limit=settings.READ_BUFFER_SIZE,
                )
            else:
                reader, writer = await asyncio.open_connection(
                    sock=session.sock, limit=settings.READ_BUFFER_SIZE,
                )
        except OSError as exc:
            logger.debug(f"Could not attach streams to {session.peername}: {exc}")
            self._sessions.pop(session.id, None)
            session.sock.close()
            return

        writer.transport.set_write_buffer_limits(high=settings.WRITE_BUFFER_SIZE)
        session.writer = writer
        try:
            await self.handle_client(reader, writer, session)
        finally:
            self._sessions.pop(session.id, None)

    async def handle_client(
            self,
            reader: StreamReader,
            writer: StreamWriter,
            session: Session,
    ) -> None:
        """
        Serve requests on one connection until it ends.

        Protocol flow:
            1. Read one request (line plus data block) from the client
            2. On a protocol error reply CLIENT_ERROR and keep going
            3. On quit, close without replying
            4. Dispatch to the registered handler
            5. Write the result unless the request carried noreply
        """
        addr = session.peername
        ctx = RequestContext(session_id=session.id, peername=addr, server=self)
        logger.debug(f"Client connected: {addr}")

        try:
            while not self._stopped:
                try:
                    command = await self.parser.read_request(reader)
                except ProtocolError as exc:
                    logger.debug(f"Protocol error from {addr}: {exc}")
                    await self._send(writer, Result.client_error(exc.description))
                    continue

                if command.name == "quit":
                    logger.debug(f"Client sent quit: {addr}")
                    break

                self._total_requests += 1
                result = await self.dispatcher.dispatch(ctx, command)
                if not command.noreply:
                    await self._send(writer, result)

        except ConnectionClosed:
            logger.debug(f"Client disconnected: {addr}")
        except TransportError as exc:
            logger.debug(f"Connection to {addr} failed: {exc}")
        except Exception as exc:  # Log unexpected errors but keep server alive
            logger.exception(f"Error handling client {addr}: {exc}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug(f"Error closing connection to {addr}: {exc}")

    async def _send(self, writer: StreamWriter, result: Result) -> None:
        writer.write(self.parser.format_response(result))
        try:
            await writer.drain()
        except OSError as exc:
            raise TransportError(f"write failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def connection_count(self) -> int:
        """Number of currently open connections."""
        return len(self._sessions)

    def get_stats(self) -> dict:
        """
        Get server statistics.

        Returns:
            Dictionary with lifecycle state, uptime and connection and
            request counters.
        """
        uptime = int(time.time() - self._started_at) if self._started_at else 0
        return {
            "state": self._state.value,
            "address": str(self.listen_address),
            "uptime": uptime,
            "curr_connections": len(self._sessions),
            "total_connections": self._connection_count,
            "total_requests": self._total_requests,
            "accept_error": str(self.accept_error) if self.accept_error is not None else None,
        }

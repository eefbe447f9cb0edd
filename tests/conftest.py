"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import socket
import pytest
import pytest_asyncio
from contextlib import closing
from typing import AsyncGenerator, List, Optional

from mcserver.cache.handlers import StoreHandlers, register_default_handlers
from mcserver.cache.store import MemoryStore
from mcserver.network.tcp_server import MemcacheServer
from mcserver.protocol.dispatcher import CommandDispatcher, RequestContext
from mcserver.protocol.parser import ProtocolParser

# Fixed "now" for exptime normalization
FIXED_NOW = 1_700_000_000


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def make_reader(data: bytes, eof: bool = True) -> asyncio.StreamReader:
    """Create a StreamReader pre-loaded with data (call inside a running loop)."""
    reader = asyncio.StreamReader(limit=1024)
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


@pytest.fixture
def reader_factory():
    """
    Factory fixture building StreamReaders fed with request bytes.

    Usage:
        async def test_something(parser, reader_factory):
            cmd = await parser.read_request(reader_factory(b"version\\r\\n"))
    """
    return make_reader


# ============================================================================
# Protocol Fixtures
# ============================================================================

@pytest.fixture
def parser() -> ProtocolParser:
    """Create a ProtocolParser with a frozen clock."""
    return ProtocolParser(clock=lambda: FIXED_NOW)


@pytest.fixture
def dispatcher() -> CommandDispatcher:
    """Create an empty CommandDispatcher."""
    return CommandDispatcher()


@pytest.fixture
def ctx() -> RequestContext:
    """Create a detached RequestContext."""
    return RequestContext(session_id=1, peername=("127.0.0.1", 50000))


# ============================================================================
# Store Fixtures
# ============================================================================

class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, now: float = FIXED_NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    """Create a fresh MemoryStore on the fake clock."""
    return MemoryStore(clock=clock)


@pytest.fixture
def handlers(store: MemoryStore) -> StoreHandlers:
    return StoreHandlers(store)


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def server(server_port: int) -> AsyncGenerator[MemcacheServer, None]:
    """
    Create and start a server with the reference handlers.

    This fixture:
    1. Creates a MemcacheServer on a random free port
    2. Registers the default handlers and starts accepting
    3. Yields the server for testing
    4. Stops it after the test
    """
    srv = MemcacheServer(
        address=f"127.0.0.1:{server_port}",
        grace_period=0.01,
        shutdown_timeout=0.5,
    )
    register_default_handlers(srv)
    await srv.start()

    yield srv

    await srv.stop()


# ============================================================================
# Client Fixtures
# ============================================================================

class AsyncClient:
    """
    Helper class for testing server interactions.

    Usage:
        async with AsyncClient('127.0.0.1', 11211) as client:
            response = await client.send_command("set key 0 0 5", b"hello")
            assert response == "STORED"
    """

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None

    async def connect(self) -> None:
        """Establish connection to server."""
        self.reader, self.writer = await asyncio.open_connection(
            self.host, self.port
        )

    async def disconnect(self) -> None:
        """Close connection to server."""
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except OSError:
                pass

    async def send_raw(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def read_line(self, timeout: float = 2.0) -> str:
        """Read one response line, without its terminator."""
        line = await asyncio.wait_for(self.reader.readline(), timeout)
        return line.decode().rstrip("\r\n")

    async def send_command(self, command: str, data: Optional[bytes] = None) -> str:
        """
        Send a command (and optional data block) and return the status line.

        Args:
            command: Request line without terminator
            data: Data block for storage commands
        """
        payload = command.encode() + b"\r\n"
        if data is not None:
            payload += data + b"\r\n"
        await self.send_raw(payload)
        return await self.read_line()

    async def send_noreply(self, command: str, data: Optional[bytes] = None) -> None:
        """Send a noreply command; the server writes nothing back."""
        payload = command.encode() + b"\r\n"
        if data is not None:
            payload += data + b"\r\n"
        await self.send_raw(payload)

    async def retrieve(self, command: str) -> List[str]:
        """Send a retrieval command and collect lines up to and including END."""
        await self.send_raw(command.encode() + b"\r\n")
        lines = []
        while True:
            line = await self.read_line()
            lines.append(line)
            if line == "END" or line.startswith(("ERROR", "CLIENT_ERROR", "SERVER_ERROR")):
                return lines

    async def is_closed(self, timeout: float = 2.0) -> bool:
        """True if the server closed the connection."""
        try:
            data = await asyncio.wait_for(self.reader.read(1), timeout)
        except ConnectionResetError:
            return True
        return data == b""

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


@pytest.fixture
def client_factory(server_port: int):
    """
    Factory fixture to create test clients.

    Usage:
        async def test_something(server, client_factory):
            async with client_factory() as client:
                response = await client.send_command("version")
    """
    def factory() -> AsyncClient:
        return AsyncClient('127.0.0.1', server_port)
    return factory


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


# Configure asyncio mode for pytest-asyncio
pytest_plugins = ['pytest_asyncio']

"""
Tests for listen address parsing.

Run with: python -m pytest tests/test_address.py -v
"""

import pytest
from mcserver.network.address import TCP, UNIX, ListenAddress, parse_address


class TestParseAddress:
    """Test host:port and URI forms."""

    def test_host_port(self):
        assert parse_address("127.0.0.1:11211") == ListenAddress(TCP, "127.0.0.1", 11211)

    def test_empty_host(self):
        """Test a bare :port listens on all interfaces."""
        assert parse_address(":11211") == ListenAddress(TCP, "0.0.0.0", 11211)

    def test_ipv6(self):
        addr = parse_address("[::1]:11211")
        assert addr == ListenAddress(TCP, "::1", 11211)
        assert str(addr) == "[::1]:11211"

    def test_unix_uri(self):
        addr = parse_address("unix:///tmp/mc.sock")
        assert addr == ListenAddress(UNIX, path="/tmp/mc.sock")
        assert str(addr) == "unix:///tmp/mc.sock"

    def test_tcp_uri(self):
        assert parse_address("tcp://localhost:11311") == ListenAddress(TCP, "localhost", 11311)

    def test_port_zero(self):
        assert parse_address("127.0.0.1:0").port == 0

    @pytest.mark.parametrize("addr", [
        "localhost",
        "127.0.0.1:http",
        "127.0.0.1:70000",
        "::1:11211",
        "[::1]11211",
        "unix://",
    ])
    def test_invalid(self, addr):
        with pytest.raises(ValueError):
            parse_address(addr)

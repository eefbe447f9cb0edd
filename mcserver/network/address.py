"""
Listen Address Parsing

Accepted forms:
    host:port              -> TCP
    [::1]:port             -> TCP over IPv6
    tcp://host:port        -> TCP (any scheme other than unix)
    unix:///path/to.sock   -> Unix domain socket
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

TCP = "tcp"
UNIX = "unix"


@dataclass(frozen=True)
class ListenAddress:
    """A parsed listen address."""
    family: str
    host: Optional[str] = None
    port: Optional[int] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        if self.family == UNIX:
            return f"unix://{self.path}"
        if self.host and ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def _split_host_port(hostport: str) -> ListenAddress:
    if hostport.startswith("["):
        host, sep, rest = hostport[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"invalid address {hostport!r}")
        port = rest[1:]
    else:
        host, sep, port = hostport.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {hostport!r}")
        if ":" in host:
            raise ValueError(f"too many colons in address {hostport!r}")

    if not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ValueError(f"invalid port in address {hostport!r}")
    return ListenAddress(family=TCP, host=host or "0.0.0.0", port=int(port))


def parse_address(addr: str) -> ListenAddress:
    """
    Parse a listen address string.

    Raises:
        ValueError: If the address is malformed
    """
    if "://" not in addr:
        return _split_host_port(addr)

    url = urlsplit(addr)
    if url.scheme == UNIX:
        if not url.path:
            raise ValueError(f"missing socket path in address {addr!r}")
        return ListenAddress(family=UNIX, path=url.path)
    return _split_host_port(url.netloc)

"""
Reference Handlers

Handlers implementing the usual memcached semantics on top of a
MemoryStore. They back the command line server and the integration
tests; embedding applications are expected to register their own.
"""

import os
import re

from .store import MemoryStore
from .. import __version__
from ..protocol.commands import Command, ResponseStatus, Result
from ..protocol.dispatcher import RequestContext
from ..protocol.errors import HandlerError

UINT64_LIMIT = 2 ** 64

_DECIMAL_RE = re.compile(rb"[0-9]+")


class StoreHandlers:
    """Handlers for every storage verb, bound to one MemoryStore."""

    def __init__(self, store: MemoryStore = None):
        self.store = store if store is not None else MemoryStore()

    def get(self, ctx: RequestContext, command: Command, result: Result) -> None:
        """get/gets <key>*: VALUE blocks for hits, then END."""
        with_cas = command.name == "gets"
        for key, item in self.store.get_many(command.keys):
            result.add_value(key, item.flags, item.data, str(item.cas) if with_cas else "")
        result.set_status(ResponseStatus.END)

    def set(self, ctx: RequestContext, command: Command, result: Result) -> None:
        status = self.store.set(command.key, command.flags, command.data, command.exptime)
        result.set_status(status)

    def add(self, ctx: RequestContext, command: Command, result: Result) -> None:
        status = self.store.add(command.key, command.flags, command.data, command.exptime)
        result.set_status(status)

    def replace(self, ctx: RequestContext, command: Command, result: Result) -> None:
        status = self.store.replace(command.key, command.flags, command.data, command.exptime)
        result.set_status(status)

    def append(self, ctx: RequestContext, command: Command, result: Result) -> None:
        result.set_status(self.store.append(command.key, command.data))

    def prepend(self, ctx: RequestContext, command: Command, result: Result) -> None:
        result.set_status(self.store.prepend(command.key, command.data))

    def cas(self, ctx: RequestContext, command: Command, result: Result) -> None:
        if not command.cas.isdigit():
            raise HandlerError(f"invalid cas unique {command.cas!r}")
        status = self.store.cas(
            command.key, command.flags, command.data, command.exptime, int(command.cas),
        )
        result.set_status(status)

    def delete(self, ctx: RequestContext, command: Command, result: Result) -> None:
        """Delete every listed key; DELETED if at least one existed."""
        deleted = 0
        for key in command.keys:
            if self.store.delete(key):
                deleted += 1
        result.set_status(ResponseStatus.DELETED if deleted else ResponseStatus.NOT_FOUND)

    def incr(self, ctx: RequestContext, command: Command, result: Result) -> None:
        self._arithmetic(command, result, command.delta)

    def decr(self, ctx: RequestContext, command: Command, result: Result) -> None:
        self._arithmetic(command, result, -command.delta)

    def _arithmetic(self, command: Command, result: Result, step: int) -> None:
        if command.delta < 0:
            raise HandlerError("invalid numeric delta argument")

        item = self.store.get(command.key)
        if item is None:
            result.set_status(ResponseStatus.NOT_FOUND)
            return
        if not _DECIMAL_RE.fullmatch(item.data):
            raise HandlerError("cannot increment or decrement non-numeric value")

        # incr wraps at 64 bits, decr stops at zero
        value = max(int(item.data) + step, 0) % UINT64_LIMIT
        self.store.replace_data(command.key, str(value).encode("ascii"))
        result.status = str(value)

    def touch(self, ctx: RequestContext, command: Command, result: Result) -> None:
        touched = self.store.touch(command.key, command.exptime)
        result.set_status(ResponseStatus.TOUCHED if touched else ResponseStatus.NOT_FOUND)

    def flush_all(self, ctx: RequestContext, command: Command, result: Result) -> None:
        self.store.flush(command.exptime)
        result.set_status(ResponseStatus.OK)

    def version(self, ctx: RequestContext, command: Command, result: Result) -> None:
        result.status = f"VERSION {__version__}"

    def stats(self, ctx: RequestContext, command: Command, result: Result) -> None:
        """General-purpose statistics as STAT lines followed by END."""
        if command.keys:
            raise HandlerError(f"stats {' '.join(command.keys)} not supported")

        stats = {"pid": os.getpid(), "version": __version__, "curr_items": self.store.size()}
        if ctx.server is not None:
            server_stats = ctx.server.get_stats()
            for name in ("uptime", "curr_connections", "total_connections"):
                stats[name] = server_stats[name]

        lines = [f"STAT {name} {value}" for name, value in stats.items()]
        lines.append(ResponseStatus.END.value)
        result.status = "\r\n".join(lines)


def register_default_handlers(server, store: MemoryStore = None) -> StoreHandlers:
    """
    Register the reference handlers for every verb on a server.

    Args:
        server: Anything with a register(verb, handler) method
        store: Store to operate on (creates a new one if not provided)

    Returns:
        The StoreHandlers instance, giving access to its store
    """
    handlers = StoreHandlers(store)
    server.register("get", handlers.get)
    server.register("gets", handlers.get)
    server.register("set", handlers.set)
    server.register("add", handlers.add)
    server.register("replace", handlers.replace)
    server.register("append", handlers.append)
    server.register("prepend", handlers.prepend)
    server.register("cas", handlers.cas)
    server.register("delete", handlers.delete)
    server.register("incr", handlers.incr)
    server.register("decr", handlers.decr)
    server.register("touch", handlers.touch)
    server.register("flush_all", handlers.flush_all)
    server.register("version", handlers.version)
    server.register("stats", handlers.stats)
    return handlers

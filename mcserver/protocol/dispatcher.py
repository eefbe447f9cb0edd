"""
Command Dispatcher Module

Maps verbs to handlers supplied by the embedding application.

A handler is called as ``handler(ctx, command, result)`` and populates
``result`` in place. It may be a plain function or a coroutine function.
Raising HandlerError reports a recoverable failure; the status line is
replaced by ``SERVER_ERROR <description>`` and any values the handler
already appended are kept.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .commands import Command, Result
from .errors import HandlerError

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """
    Per-session information handed to every handler call.

    Attributes:
        session_id: Stable identifier of the connection within its server
        peername: Remote address as reported by the transport
        server: The server that accepted the connection, if any
    """
    session_id: int = 0
    peername: Any = None
    server: Any = None

    def is_closing(self) -> bool:
        """True once the owning server has begun shutting down."""
        return self.server is not None and self.server.is_stopping()


Handler = Callable[[RequestContext, Command, Result], Union[None, Awaitable[None]]]


class CommandDispatcher:
    """
    Registry of handlers keyed by verb.

    Handlers are registered before the server starts and the table is
    treated as read-only while serving.

    Usage:
        dispatcher = CommandDispatcher()
        dispatcher.register("get", handle_get)
        result = await dispatcher.dispatch(ctx, command)
    """

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, verb: str, handler: Handler) -> None:
        """Register (or replace) the handler for a verb."""
        if verb == "quit":
            raise ValueError("quit is handled by the server and cannot be registered")
        self._handlers[verb] = handler

    def get_handler(self, verb: str) -> Optional[Handler]:
        return self._handlers.get(verb)

    def __contains__(self, verb: str) -> bool:
        return verb in self._handlers

    async def dispatch(self, ctx: RequestContext, command: Command) -> Result:
        """
        Run the handler registered for ``command.name``.

        Returns:
            The populated Result, a SERVER_ERROR result if the handler
            raised HandlerError, or an ERROR result for unregistered verbs.

        Any other exception raised by the handler propagates to the caller.
        """
        handler = self._handlers.get(command.name)
        if handler is None:
            return Result.not_implemented(command.name)

        result = Result()
        try:
            outcome = handler(ctx, command, result)
            if inspect.isawaitable(outcome):
                await outcome
        except HandlerError as exc:
            logger.warning(
                f"Handler for {command.name!r} failed: {exc.description} "
                f"(session {ctx.session_id}, command {command!r})"
            )
            result.status = Result.server_error(exc.description).status
        return result

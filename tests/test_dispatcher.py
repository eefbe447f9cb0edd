"""
Tests for the Command Dispatcher

These tests verify handler lookup, invocation and failure reporting.

Run with: python -m pytest tests/test_dispatcher.py -v
"""

import pytest
from mcserver.protocol.commands import Command, ResponseStatus, Result
from mcserver.protocol.dispatcher import CommandDispatcher, RequestContext
from mcserver.protocol.errors import HandlerError


def handle_version(ctx, command, result):
    result.status = "VERSION test"


async def handle_get(ctx, command, result):
    for key in command.keys:
        result.add_value(key, "0", key.encode())
    result.set_status(ResponseStatus.END)


@pytest.mark.asyncio
class TestDispatch:
    """Test dispatching parsed commands to handlers."""

    async def test_sync_handler(self, dispatcher: CommandDispatcher, ctx: RequestContext):
        """Test a plain function handler populates the result."""
        dispatcher.register("version", handle_version)

        result = await dispatcher.dispatch(ctx, Command(name="version"))

        assert result.status == "VERSION test"
        assert result.values == []

    async def test_async_handler(self, dispatcher: CommandDispatcher, ctx: RequestContext):
        """Test a coroutine handler is awaited."""
        dispatcher.register("get", handle_get)

        result = await dispatcher.dispatch(ctx, Command(name="get", keys=["b", "a"]))

        assert result.status == "END"
        assert [v.key for v in result.values] == ["b", "a"]

    async def test_handler_receives_context_and_command(
            self, dispatcher: CommandDispatcher, ctx: RequestContext):
        seen = []

        def handler(c, command, result):
            seen.append((c, command))
            result.set_status(ResponseStatus.STORED)

        command = Command(name="set", key="k", data=b"v")
        dispatcher.register("set", handler)
        await dispatcher.dispatch(ctx, command)

        assert seen == [(ctx, command)]

    async def test_fresh_result_per_call(self, dispatcher: CommandDispatcher, ctx: RequestContext):
        """Test every dispatch starts from an empty Result."""
        dispatcher.register("get", handle_get)

        await dispatcher.dispatch(ctx, Command(name="get", keys=["a"]))
        result = await dispatcher.dispatch(ctx, Command(name="get", keys=["b"]))

        assert [v.key for v in result.values] == ["b"]

    async def test_unregistered_verb(self, dispatcher: CommandDispatcher, ctx: RequestContext):
        """Test unknown handlers produce a not implemented error."""
        result = await dispatcher.dispatch(ctx, Command(name="touch", key="k"))

        assert result.status == "ERROR touch not implemented"
        assert result.values == []

    async def test_handler_error(self, dispatcher: CommandDispatcher, ctx: RequestContext):
        """Test HandlerError becomes a SERVER_ERROR status."""
        def failing(c, command, result):
            raise HandlerError("disk on fire")

        dispatcher.register("set", failing)
        result = await dispatcher.dispatch(ctx, Command(name="set", key="k"))

        assert result.status == "SERVER_ERROR disk on fire"

    async def test_handler_error_keeps_values(self, dispatcher: CommandDispatcher, ctx: RequestContext):
        """Test values appended before the failure are kept."""
        async def partial(c, command, result):
            result.add_value("a", "0", b"1")
            result.set_status(ResponseStatus.END)
            raise HandlerError("backend lost")

        dispatcher.register("get", partial)
        result = await dispatcher.dispatch(ctx, Command(name="get", keys=["a", "b"]))

        assert result.status == "SERVER_ERROR backend lost"
        assert len(result.values) == 1

    async def test_unexpected_exception_propagates(
            self, dispatcher: CommandDispatcher, ctx: RequestContext):
        """Test programming faults are not turned into replies."""
        def broken(c, command, result):
            raise KeyError("boom")

        dispatcher.register("get", broken)
        with pytest.raises(KeyError):
            await dispatcher.dispatch(ctx, Command(name="get", keys=["a"]))


class TestRegistry:
    """Test handler registration."""

    def test_register_and_lookup(self, dispatcher: CommandDispatcher):
        dispatcher.register("version", handle_version)

        assert "version" in dispatcher
        assert dispatcher.get_handler("version") is handle_version
        assert dispatcher.get_handler("get") is None

    def test_register_replaces(self, dispatcher: CommandDispatcher):
        dispatcher.register("version", handle_version)
        dispatcher.register("version", handle_get)
        assert dispatcher.get_handler("version") is handle_get

    def test_quit_cannot_be_registered(self, dispatcher: CommandDispatcher):
        with pytest.raises(ValueError):
            dispatcher.register("quit", handle_version)

    def test_context_not_closing_without_server(self, ctx: RequestContext):
        assert ctx.is_closing() is False


class TestResultHelpers:
    """Test Result construction helpers."""

    def test_with_status(self):
        assert Result.with_status(ResponseStatus.NOT_STORED).status == "NOT_STORED"

    def test_error_prefixes(self):
        assert Result.error("x").status == "ERROR x"
        assert Result.client_error("x").status == "CLIENT_ERROR x"
        assert Result.server_error("x").status == "SERVER_ERROR x"

"""Unit tests for declared-command invocation."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from courier_client.config import CommandSpec
from courier_client.invoker import CommandInvoker


@pytest.fixture
def invoker(scheduler) -> CommandInvoker:
    invoker = CommandInvoker(scheduler)
    invoker.register(
        "user",
        [
            CommandSpec(name="login", params=["username", "password"]),
            CommandSpec(name="logout"),
        ],
    )
    invoker.register("inbox", [CommandSpec(name="list", params=["page"])])
    return invoker


class TestBind:
    """Tests for binding arguments to declared parameter names."""

    def test_positional(self, invoker) -> None:
        assert invoker.bind("user.login", ("bob", "pw"), {}) == {
            "username": "bob",
            "password": "pw",
        }

    def test_keyword(self, invoker) -> None:
        assert invoker.bind("user.login", ("bob",), {"password": "pw"}) == {
            "username": "bob",
            "password": "pw",
        }

    def test_missing_arguments_are_left_out(self, invoker) -> None:
        assert invoker.bind("user.login", ("bob",), {}) == {"username": "bob"}

    def test_too_many_arguments(self, invoker) -> None:
        with pytest.raises(TypeError, match="takes 0 positional arguments but 1 were given"):
            invoker.bind("user.logout", ("now",), {})

    def test_unexpected_keyword(self, invoker) -> None:
        with pytest.raises(TypeError, match="unexpected keyword argument 'remember'"):
            invoker.bind("user.login", (), {"remember": True})

    def test_duplicate_argument(self, invoker) -> None:
        with pytest.raises(TypeError, match="multiple values for argument 'username'"):
            invoker.bind("user.login", ("bob",), {"username": "alice"})

    def test_unknown_command(self, invoker) -> None:
        with pytest.raises(KeyError):
            invoker.bind("user.delete", (), {})


class TestInvoke:
    """Tests for sending declared commands."""

    @pytest.mark.asyncio
    async def test_invoke_sends_bound_params(self, invoker, transport) -> None:
        callback = MagicMock()

        command = invoker.invoke("user.login", "bob", "pw", callback=callback)
        await asyncio.sleep(0)

        assert command.params == '{"username":"bob","password":"pw"}'
        assert transport.last_request.url.endswith("/user.login")

        transport.respond(None, [[None, {"id": 7}]])
        callback.assert_called_once_with(None, {"id": 7})

    @pytest.mark.asyncio
    async def test_module_proxy(self, invoker, transport) -> None:
        user = invoker.module("user")

        user.login("bob", password="pw")
        user.logout()
        await asyncio.sleep(0)

        assert transport.last_request.url.endswith("/user.login,user.logout")
        assert transport.last_request.body == '[]\n{"username":"bob","password":"pw"}\n{}'

    def test_mismatch_is_logged_and_raised(self, invoker, caplog) -> None:
        with caplog.at_level(logging.WARNING), pytest.raises(TypeError):
            invoker.invoke("user.login", "bob", "pw", "extra", callback=print)

        assert "Expected use: user.login(username, password, callback)" in caplog.text
        assert 'Actual use: user.login("bob", "pw", "extra", Function)' in caplog.text

    def test_unknown_module_command(self, invoker) -> None:
        with pytest.raises(AttributeError, match="has no command 'delete'"):
            invoker.module("user").delete

    def test_private_names_are_not_commands(self, invoker) -> None:
        with pytest.raises(AttributeError):
            invoker.module("user")._secret

    def test_dir_lists_commands(self, invoker) -> None:
        assert sorted(dir(invoker.module("user"))) == ["login", "logout"]
        assert invoker.commands_of("inbox") == ["list"]

    def test_has_command(self, invoker) -> None:
        assert invoker.has_command("inbox.list")
        assert not invoker.has_command("inbox.delete")

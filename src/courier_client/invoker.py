"""Data-driven command invocation.

The server declares, per module, which commands exist and which parameters
each takes. The invoker binds positional and keyword arguments to those
declared names and hands the result to the scheduler:

    invoker.invoke("user.login", "bob", "secret", callback=on_login)
    # -> scheduler.send_command("user.login", {"username": "bob", "password": "secret"}, on_login)

    user = invoker.module("user")
    user.login("bob", "secret", callback=on_login)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from .config import CommandSpec
from .protocol.commands import Command, CommandCallback
from .scheduler import CommandScheduler

logger = logging.getLogger(__name__)


def _describe_argument(value: Any) -> str:
    if callable(value):
        return "Function"
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return type(value).__name__


class CommandInvoker:
    """Maps command names to their declared parameter lists."""

    def __init__(self, scheduler: CommandScheduler):
        self.scheduler = scheduler
        self._commands: dict[str, list[str]] = {}

    def register(self, module: str, commands: list[CommandSpec]) -> None:
        """Declare the commands a module exposes."""
        for command in commands:
            self._commands[f"{module}.{command.name}"] = list(command.params)

    def register_all(self, commands: Mapping[str, list[CommandSpec]]) -> None:
        for module, specs in commands.items():
            self.register(module, specs)

    def has_command(self, name: str) -> bool:
        return name in self._commands

    def commands_of(self, module: str) -> list[str]:
        prefix = f"{module}."
        return [name[len(prefix) :] for name in self._commands if name.startswith(prefix)]

    def expected_use(self, name: str) -> str:
        params = [*self._commands.get(name, []), "callback"]
        return f"{name}({', '.join(params)})"

    def bind(self, name: str, args: tuple[Any, ...], kwargs: Mapping[str, Any]) -> dict[str, Any]:
        """Bind arguments to the declared parameter names.

        Parameters that were not passed are left out.

        Raises:
            KeyError: If the command was never declared
            TypeError: If the arguments do not match the declaration
        """
        if name not in self._commands:
            raise KeyError(f"Unknown command: {name}")

        declared = self._commands[name]

        if len(args) > len(declared):
            raise TypeError(
                f"{name}() takes {len(declared)} positional arguments but {len(args)} were given"
            )

        params = dict(zip(declared, args, strict=False))

        for key, value in kwargs.items():
            if key not in declared:
                raise TypeError(f"{name}() got an unexpected keyword argument {key!r}")
            if key in params:
                raise TypeError(f"{name}() got multiple values for argument {key!r}")
            params[key] = value

        return params

    def invoke(
        self,
        name: str,
        *args: Any,
        callback: CommandCallback | None = None,
        **kwargs: Any,
    ) -> Command | None:
        """Send a declared command.

        On an argument mismatch the expected and actual use are logged before
        the error propagates.
        """
        try:
            params = self.bind(name, args, kwargs)
            return self.scheduler.send_command(name, params, callback)
        except (TypeError, ValueError):
            actual = [_describe_argument(a) for a in args]
            actual += [f"{k}={_describe_argument(v)}" for k, v in kwargs.items()]
            if callback is not None:
                actual.append("Function")
            logger.warning(f"Expected use: {self.expected_use(name)}")
            logger.warning(f"Actual use: {name}({', '.join(actual)})")
            raise

    def module(self, module: str) -> ModuleCommands:
        """Attribute-style access to a module's commands."""
        return ModuleCommands(self, module)


class ModuleCommands:
    """Proxy exposing a module's declared commands as methods.

    Usage:
        user = invoker.module("user")
        user.login("bob", "secret", callback=on_login)
    """

    def __init__(self, invoker: CommandInvoker, module: str):
        self._invoker = invoker
        self._module = module

    def __getattr__(self, command: str) -> Any:
        name = f"{self._module}.{command}"
        if command.startswith("_") or not self._invoker.has_command(name):
            raise AttributeError(f"Module {self._module!r} has no command {command!r}")

        def call(*args: Any, callback: CommandCallback | None = None, **kwargs: Any) -> Any:
            return self._invoker.invoke(name, *args, callback=callback, **kwargs)

        call.__name__ = command
        return call

    def __dir__(self) -> list[str]:
        return self._invoker.commands_of(self._module)

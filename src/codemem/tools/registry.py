"""Name-to-handler table behind the JSON-lines command surface."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

CommandHandler = Callable[[dict[str, object]], dict[str, object]]


@dataclass(slots=True, frozen=True)
class CommandDispatchError(Exception):
    """A request named a command that cannot run; ``code`` goes on the wire."""

    code: str
    message: str


@dataclass(slots=True)
class CommandRegistry:
    """Maps dotted command names (``index.scan``, ``log.audit``) to handlers.

    Names are unique and listed in registration order.
    """

    _handlers: dict[str, CommandHandler] = field(default_factory=dict)

    def register(self, name: str, handler: CommandHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"Command already registered: {name}")
        self._handlers[name] = handler

    def get(self, name: str) -> CommandHandler | None:
        return self._handlers.get(name)

    def names(self) -> tuple[str, ...]:
        """Dotted names in the order the server registered them."""
        return tuple(self._handlers.keys())

    def dispatch(self, name: str, arguments: dict[str, object]) -> dict[str, object]:
        handler = self.get(name)
        if handler is None:
            raise CommandDispatchError(code="UNKNOWN_COMMAND", message=f"Unknown command: {name}")
        return handler(arguments)

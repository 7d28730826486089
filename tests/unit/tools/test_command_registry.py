from __future__ import annotations

from pathlib import Path

import pytest

from codemem.server import create_server
from codemem.tools.registry import CommandDispatchError, CommandRegistry


def test_registry_preserves_order_and_rejects_unknown() -> None:
    registry = CommandRegistry()
    registry.register("b.cmd", lambda _: {"name": "b"})
    registry.register("a.cmd", lambda _: {"name": "a"})

    assert registry.names() == ("b.cmd", "a.cmd")
    assert registry.dispatch("a.cmd", {}) == {"name": "a"}
    with pytest.raises(CommandDispatchError) as excinfo:
        registry.dispatch("c.cmd", {})
    assert excinfo.value.code == "UNKNOWN_COMMAND"


def test_duplicate_registration_is_an_error() -> None:
    registry = CommandRegistry()
    registry.register("a.cmd", lambda _: {})

    with pytest.raises(ValueError, match="already registered"):
        registry.register("a.cmd", lambda _: {})


def test_server_registers_full_command_set(tmp_path: Path) -> None:
    server = create_server(repo_root=tmp_path)

    assert server.registry.names() == (
        "index.scan",
        "index.search",
        "index.get_file",
        "index.upsert",
        "index.remove",
        "index.verify",
        "index.repair",
        "index.status",
        "index.structure",
        "index.files_by_language",
        "index.similar",
        "watcher.start",
        "watcher.stop",
        "watcher.status",
        "log.audit",
        "log.events",
    )

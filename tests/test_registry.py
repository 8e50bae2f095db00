"""Tests for ToolRegistry."""

from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from chatloop.errors import NotFoundError
from chatloop.tools.registry import ToolRegistry
from tests.mock_tools import DeleteTool, EchoTool, FailingTool


def test_register_and_lookup():
    reg = ToolRegistry()
    reg.register(EchoTool())
    assert reg.get("echo").name == "echo"
    assert reg.get("missing") is None
    with pytest.raises(NotFoundError):
        reg.require("missing")


def test_duplicate_names_rejected():
    reg = ToolRegistry()
    reg.register(EchoTool())
    with pytest.raises(ValueError):
        reg.register(EchoTool())


def test_list_sorted_by_name():
    reg = ToolRegistry()
    reg.register(FailingTool())
    reg.register(DeleteTool())
    reg.register(EchoTool())
    assert [t.name for t in reg.list()] == ["delete_resource", "echo", "failing"]


def test_definitions_filtered_by_names():
    reg = ToolRegistry()
    reg.register(EchoTool())
    reg.register(DeleteTool())
    defs = reg.definitions(["echo", "unknown"])
    assert [d["name"] for d in defs] == ["echo"]
    assert defs[0]["input_schema"]["required"] == ["message"]
    assert len(reg.definitions()) == 2


def test_loaders_run_once_and_freeze():
    calls = []

    def loader(r):
        calls.append(1)
        r._register(EchoTool())

    reg = ToolRegistry()
    reg.add_loader(loader)
    assert not reg.loaded
    reg.get("echo")
    reg.list()
    assert calls == [1]
    assert reg.loaded
    with pytest.raises(RuntimeError):
        reg.register(DeleteTool())
    with pytest.raises(RuntimeError):
        reg.add_loader(loader)


def test_concurrent_first_lookup_loads_once():
    calls = []
    barrier = threading.Barrier(8)

    def loader(r):
        calls.append(1)
        r._register(EchoTool())

    reg = ToolRegistry()
    reg.add_loader(loader)

    def lookup():
        barrier.wait()
        assert reg.get("echo") is not None

    threads = [threading.Thread(target=lookup) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert calls == [1]


def test_load_plugins_disabled_is_noop():
    reg = ToolRegistry()
    assert reg.load_plugins(enabled=False) == 0


def test_load_plugins_honours_allow_lists(monkeypatch):
    eps = [
        SimpleNamespace(name="echo", dist=SimpleNamespace(name="good-dist"), load=lambda: EchoTool),
        SimpleNamespace(name="failing", dist=SimpleNamespace(name="other-dist"), load=lambda: FailingTool),
        SimpleNamespace(name="delete_resource", dist=SimpleNamespace(name="good-dist"), load=lambda: DeleteTool),
    ]
    monkeypatch.setattr(
        "chatloop.tools.registry.entry_points", lambda group: eps if group == "chatloop.tools" else []
    )
    reg = ToolRegistry()
    loaded = reg.load_plugins(
        enabled=True, allow_distributions={"good-dist"}, allow_tools={"echo"}
    )
    assert loaded == 1
    assert [t.name for t in reg.list()] == ["echo"]

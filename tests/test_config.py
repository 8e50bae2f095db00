"""Tests for the layered config loader."""

from __future__ import annotations

import pytest
import yaml

from chatloop.config import ChatloopConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("CHATLOOP_"):
            monkeypatch.delenv(key)


def _write(tmp_path, data) -> str:
    path = tmp_path / "chatloop.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_defaults():
    cfg = load_config(None)
    assert cfg.llm.provider_type == "openrouter"
    assert cfg.llm.max_tokens == 8192
    assert cfg.orchestrator.followup_delay_seconds == 0.5
    assert cfg.tools.url_merge_tool == "get_url"
    assert cfg.validate() == []


def test_missing_file_uses_defaults(tmp_path):
    assert load_config(tmp_path / "nope.yaml").llm.model == ChatloopConfig().llm.model


def test_file_profile_env_cli_precedence(tmp_path, monkeypatch):
    path = _write(tmp_path, {
        "llm": {"model": "from-file", "max_tokens": 100},
        "tools": {"dangerous": ["delete_resource"], "unknown_key": 1},
        "profiles": {"work": {"llm": {"model": "from-profile", "provider_type": "anthropic"}}},
    })
    cfg = load_config(path, profile="work")
    assert cfg.llm.model == "from-profile"
    assert cfg.llm.provider_type == "anthropic"
    assert cfg.llm.max_tokens == 100
    assert cfg.tools.dangerous == ["delete_resource"]

    monkeypatch.setenv("CHATLOOP_LLM_MODEL", "from-env")
    monkeypatch.setenv("CHATLOOP_ORCH_STREAM", "false")
    monkeypatch.setenv("CHATLOOP_TOOLS_DISABLED", "a, b")
    cfg = load_config(path, profile="work")
    assert cfg.llm.model == "from-env"
    assert cfg.orchestrator.stream is False
    assert cfg.tools.disabled == ["a", "b"]

    cfg = load_config(path, profile="work", cli_overrides={"llm.model": "from-cli"})
    assert cfg.llm.model == "from-cli"


def test_unknown_override_rejected():
    with pytest.raises(KeyError):
        load_config(None, cli_overrides={"llm.nope": 1})


def test_validate_reports_problems():
    cfg = ChatloopConfig()
    cfg.set_override("llm.provider_type", "other")
    cfg.set_override("orchestrator.max_rounds", 0)
    cfg.tools.dangerous = ["x"]
    cfg.tools.disabled = ["x"]
    problems = cfg.validate()
    assert any("provider_type" in p for p in problems)
    assert any("max_rounds" in p for p in problems)
    assert any("dangerous and disabled" in p for p in problems)


def test_to_dict_roundtrips_sections():
    d = ChatloopConfig().to_dict()
    assert set(d) >= {"llm", "tools", "plugins", "orchestrator", "store", "logging"}
    assert d["store"]["database"].endswith("chatloop.db")


def test_configure_logging_sets_levels():
    import logging

    from chatloop.config import LoggingConfig
    from chatloop.logging_setup import configure_logging

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(LoggingConfig(level="info"))
        assert root.level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING

        configure_logging(LoggingConfig(level="info"), level="debug")
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

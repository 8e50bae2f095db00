"""Wire the full stack from a ``ChatloopConfig``."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from chatloop.config import ChatloopConfig
from chatloop.conversation.service import ConversationService
from chatloop.llm.providers import create_provider
from chatloop.store.attachments import AttachmentStore
from chatloop.store.store import SQLiteStore
from chatloop.tools.builtin.get_url import GetUrlTool
from chatloop.tools.executor import ToolExecutor
from chatloop.tools.policy import PolicyEngine
from chatloop.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_registry(cfg: ChatloopConfig) -> ToolRegistry:
    """Built-in tools plus entry-point plugins, minus ``tools.disabled``."""
    registry = ToolRegistry()
    disabled = set(cfg.tools.disabled)

    def load_builtin(reg: ToolRegistry) -> None:
        for tool in (GetUrlTool(api_key_env=cfg.tools.jina_api_key_env),):
            if tool.name not in disabled:
                reg.register(tool)

    def load_plugins(reg: ToolRegistry) -> None:
        reg.load_plugins(
            enabled=cfg.plugins.enabled,
            allow_distributions=set(cfg.plugins.allow_distributions) or None,
            allow_tools=(set(cfg.plugins.allow_tools) - disabled) or None,
        )

    registry.add_loader(load_builtin)
    registry.add_loader(load_plugins)
    return registry


def build_policy(cfg: ChatloopConfig) -> PolicyEngine:
    return PolicyEngine(
        dangerous=cfg.tools.dangerous,
        redaction_patterns=cfg.tools.redaction_patterns,
        audit_log_path=cfg.tools.audit_log_path,
        audit_max_size_mb=cfg.tools.audit_max_size_mb,
        audit_keep_files=cfg.tools.audit_keep_files,
    )


@dataclass
class Stack:
    config: ChatloopConfig
    store: SQLiteStore
    registry: ToolRegistry
    policy: PolicyEngine
    service: ConversationService

    async def close(self) -> None:
        if self.service.queue.running:
            await self.service.queue.stop()
        await self.store.close()


async def open_store(cfg: ChatloopConfig) -> SQLiteStore:
    store = SQLiteStore(cfg.store.database)
    await store.init()
    return store


async def open_stack(cfg: ChatloopConfig) -> Stack:
    store = await open_store(cfg)
    registry = build_registry(cfg)
    policy = build_policy(cfg)
    executor = ToolExecutor(registry, policy=policy, timeout=float(cfg.tools.timeout_seconds))
    service = ConversationService(
        store,
        create_provider(cfg.llm),
        registry,
        executor,
        policy,
        attachments=AttachmentStore(cfg.store.attachments_dir),
        url_merge_tool=cfg.tools.url_merge_tool or None,
        followup_delay=cfg.orchestrator.followup_delay_seconds,
        max_rounds=cfg.orchestrator.max_rounds,
        stream=cfg.orchestrator.stream,
    )
    logger.debug("Stack ready: provider=%s db=%s", cfg.llm.provider_type, store.db_path)
    return Stack(cfg, store, registry, policy, service)

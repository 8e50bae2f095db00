"""
Main CLI application for chatloop.

Usage:
    chatloop chat [--profile NAME] [--conversation ID] [--agent TYPE]
    chatloop conversations list|show|delete|cancel
    chatloop approve|reject TOOL_USE_ID
    chatloop tools list|info
    chatloop config show|validate
    chatloop version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console

from chatloop.config import ChatloopConfig, load_config
from chatloop.logging_setup import configure_logging

app = typer.Typer(name="chatloop", help="chatloop - streaming LLM conversations with tools")
conversations_app = typer.Typer(help="Conversation management")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(conversations_app, name="conversations")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "chatloop.yaml",
        Path.cwd() / "chatloop.yml",
        Path.home() / ".config" / "chatloop" / "config.yaml",
        Path.home() / ".chatloop" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _load(profile: str | None = None, model: str | None = None) -> ChatloopConfig:
    overrides = {"llm.model": model} if model else None
    cfg = load_config(_get_config_path(), profile=profile, cli_overrides=overrides)
    configure_logging(cfg.logging)
    return cfg


def _owner():
    from chatloop.conversation.conversable import SimpleConversable

    return SimpleConversable()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    model: Optional[str] = typer.Option(None, help="Override llm.model"),
    conversation: Optional[int] = typer.Option(None, "--conversation", "-c", help="Continue conversation ID"),
    agent: str = typer.Option("planner", help="Agent type: planner, coder, reviewer, tester"),
):
    """Start an interactive chat session."""
    from chatloop.cli.chat import ChatHandler
    from chatloop.stack import open_stack
    from chatloop.store.models import AgentType

    cfg = _load(profile, model)
    problems = cfg.validate()
    if problems:
        for p in problems:
            console.print(f"[red]Config error:[/red] {p}")
        raise typer.Exit(1)
    try:
        agent_type = AgentType(agent.lower())
    except ValueError:
        console.print(f"[red]Unknown agent type:[/red] {agent}")
        raise typer.Exit(1)

    async def _run():
        stack = await open_stack(cfg)
        owner = _owner()
        try:
            if conversation is not None:
                conv = await stack.store.get_conversation(conversation)
            else:
                conv = await stack.service.ensure_conversation(owner, agent_type)
            handler = ChatHandler(stack.service, owner, conv.id, console=console)
            if conv.is_waiting:
                await handler.handle_command("/pending")
            await handler.run_loop()
        finally:
            await stack.close()

    asyncio.run(_run())


@app.command()
def approve(tool_use_id: int = typer.Argument(..., help="Tool use row ID")):
    """Approve a pending tool call and resume its conversation."""
    _decide(tool_use_id, approved=True)


@app.command()
def reject(
    tool_use_id: int = typer.Argument(..., help="Tool use row ID"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Reason sent to the model"),
):
    """Reject a pending tool call and resume its conversation."""
    _decide(tool_use_id, approved=False, message=message)


def _decide(tool_use_id: int, *, approved: bool, message: str | None = None) -> None:
    from chatloop.errors import ChatloopError
    from chatloop.orchestrator.context import TurnContext
    from chatloop.stack import open_stack

    cfg = _load()

    async def _on_chunk(text: str) -> None:
        console.print(text, end="", markup=False)

    async def _run():
        stack = await open_stack(cfg)
        ctx = TurnContext(on_chunk=_on_chunk)
        try:
            if approved:
                result = await stack.service.approve_tool_use(_owner(), tool_use_id, ctx=ctx)
            else:
                result = await stack.service.reject_tool_use(_owner(), tool_use_id, message, ctx=ctx)
        finally:
            await stack.close()
        console.print()
        if result is None:
            console.print("[dim]Recorded; other tool calls are still awaiting approval.[/dim]")
        elif result.error:
            console.print(f"[red]Error:[/red] {result.error}")
        else:
            console.print(f"[dim]Conversation {result.conversation_id} is {result.status.value}.[/dim]")

    try:
        asyncio.run(_run())
    except ChatloopError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@conversations_app.command("list")
def conversations_list():
    """List the local user's conversations."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.stack import open_store

    cfg = _load()

    async def _run():
        store = await open_store(cfg)
        owner = _owner()
        conversations = await store.list_conversations(owner.owner_type, owner.owner_id)
        OutputFormatter(console).format_conversation_list(conversations)
        await store.close()

    asyncio.run(_run())


@conversations_app.command("show")
def conversations_show(conversation_id: int = typer.Argument(..., help="Conversation ID")):
    """Show a conversation's messages and tool calls."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.errors import NotFoundError
    from chatloop.stack import open_store

    cfg = _load()

    async def _run():
        store = await open_store(cfg)
        try:
            conv = await store.get_conversation(conversation_id)
            messages = await store.get_history(conversation_id, include_errors=True)
        finally:
            await store.close()
        formatter = OutputFormatter(console)
        formatter.format_conversation_list([conv])
        formatter.format_messages(messages)

    try:
        asyncio.run(_run())
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@conversations_app.command("delete")
def conversations_delete(conversation_id: int = typer.Argument(..., help="Conversation ID")):
    """Delete a conversation."""
    from chatloop.stack import open_store

    cfg = _load()

    async def _run():
        store = await open_store(cfg)
        await store.delete_conversation(conversation_id)
        console.print(f"Deleted conversation: {conversation_id}")
        await store.close()

    asyncio.run(_run())


@conversations_app.command("cancel")
def conversations_cancel(conversation_id: int = typer.Argument(..., help="Conversation ID")):
    """Cancel a running or waiting conversation."""
    from chatloop.conversation.state import ConversationStateMachine
    from chatloop.stack import open_store

    cfg = _load()

    async def _run():
        store = await open_store(cfg)
        try:
            conv = await ConversationStateMachine(store).cancel(conversation_id, "cli")
        finally:
            await store.close()
        console.print(f"Canceled conversation {conv.id} (now {conv.status.value})")

    asyncio.run(_run())


@tools_app.command("list")
def tools_list():
    """List registered tools."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.stack import build_registry

    cfg = _load()
    registry = build_registry(cfg)
    OutputFormatter(console).format_tool_list(registry.list(), set(cfg.tools.dangerous))


@tools_app.command("info")
def tools_info(tool_name: str = typer.Argument(..., help="Tool name")):
    """Show tool details and schema."""
    from chatloop.cli.output import OutputFormatter
    from chatloop.stack import build_registry

    cfg = _load()
    tool = build_registry(cfg).get(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)

    OutputFormatter(console).format_tool_info(tool, tool_name in cfg.tools.dangerous)


@config_app.command("show")
def config_show(profile: Optional[str] = typer.Option(None, help="Config profile name")):
    """Show effective config."""
    from chatloop.cli.output import OutputFormatter

    cfg = _load(profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(profile: Optional[str] = typer.Option(None, help="Config profile name")):
    """Validate config and report any problems."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path, profile=profile)
    except (OSError, ValueError, KeyError, yaml.YAMLError) as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    problems = cfg.validate()
    if problems:
        for p in problems:
            console.print(f"[red]Config error:[/red] {p}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  LLM provider: {cfg.llm.provider_type} ({cfg.llm.model})")
    console.print(f"  Dangerous tools: {', '.join(cfg.tools.dangerous) or 'none'}")
    console.print(f"  Plugins enabled: {cfg.plugins.enabled}")


@app.command()
def version():
    """Show version."""
    console.print("chatloop v0.1.0")


def main():
    app()


if __name__ == "__main__":
    main()

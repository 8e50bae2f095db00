"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from chatloop.store.models import Conversation, ConversationStatus, Message, ToolUse, ToolUseStatus
from chatloop.tools.base import Tool

STATUS_COLORS = {
    ConversationStatus.RESTING: "green",
    ConversationStatus.WORKING: "yellow",
    ConversationStatus.WAITING: "magenta",
}

TOOL_USE_COLORS = {
    ToolUseStatus.PENDING: "magenta",
    ToolUseStatus.APPROVED: "green",
    ToolUseStatus.REJECTED: "red",
    ToolUseStatus.WAITING: "yellow",
}


def _clip(text: str | None, limit: int) -> str:
    text = (text or "").replace("\n", " ")
    return text if len(text) <= limit else text[: limit - 3] + "..."


class OutputFormatter:
    """Rich-based output formatting for the chatloop CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # -- tools ---------------------------------------------------------------

    def format_tool_list(self, tools: list[Tool], dangerous: set[str] | None = None) -> None:
        dangerous = dangerous or set()
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Approval", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            approval = Text("required", style="red") if t.name in dangerous else Text("auto", style="green")
            table.add_row(t.name, approval, t.description)

        self.console.print(table)

    def format_tool_info(self, tool: Tool, dangerous: bool = False) -> None:
        approval = "[red]required[/red]" if dangerous else "[green]auto[/green]"
        self.console.print(Panel(
            f"[bold]{tool.name}[/bold]\n\n"
            f"[dim]Approval:[/dim] {approval}\n"
            f"[dim]Secret fields:[/dim] {tool.secret_fields or 'none'}\n\n"
            f"{tool.description}",
            title=f"Tool: {tool.name}",
        ))
        schema_json = json.dumps(tool.to_definition()["input_schema"], indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    def format_confirmation(self, tool_use: ToolUse) -> None:
        args_json = json.dumps(tool_use.input, indent=2)
        self.console.print(Panel(
            f"[bold]{tool_use.name}[/bold] [dim]({tool_use.tool_use_id})[/dim]\n\n{args_json}",
            title="[magenta]Approval required[/magenta]",
        ))

    # -- conversations -------------------------------------------------------

    def format_conversation_list(self, conversations: list[Conversation]) -> None:
        if not conversations:
            self.console.print("[dim]No conversations found.[/dim]")
            return

        table = Table(title="Conversations")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Agent", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Owner")
        table.add_column("Updated", no_wrap=True)

        for c in conversations:
            color = STATUS_COLORS.get(c.status, "white")
            status = c.status.value + (" (canceled)" if c.canceled else "")
            table.add_row(
                str(c.id),
                c.agent_type.value,
                Text(status, style=color),
                f"{c.owner_type}:{c.owner_id}",
                c.updated_at.strftime("%Y-%m-%d %H:%M:%S") if c.updated_at else "?",
            )

        self.console.print(table)

    def format_messages(self, messages: list[Message]) -> None:
        if not messages:
            self.console.print("[dim]No messages.[/dim]")
            return

        for msg in messages:
            ts = msg.created_at.strftime("%H:%M:%S") if msg.created_at else "--:--:--"
            color = "blue" if msg.is_user else "green"
            if msg.is_error:
                color = "red"
            header = f"[dim]{ts}[/dim] [{color}]{msg.role.value:<10}[/{color}]"
            self.console.print(f"{header} {_clip(msg.content, 120) or '[dim](no text)[/dim]'}")
            for att in msg.attachments:
                self.console.print(f"    [dim]attachment[/dim] {att.filename} ({att.content_type})")
            for tu in msg.tool_uses:
                tcolor = TOOL_USE_COLORS.get(tu.status, "white")
                args = _clip(json.dumps(tu.input), 80)
                self.console.print(
                    f"    [{tcolor}]{tu.status.value:<8}[/{tcolor}] "
                    f"#{tu.id} {tu.name}({args})"
                )
                if tu.result is not None:
                    mark = "[red]error[/red]" if tu.result.is_error else "result"
                    if tu.result.pending:
                        mark = "[yellow]pending[/yellow]"
                    self.console.print(f"             {mark}: {_clip(tu.result.content, 100)}")
                elif not tu.completed:
                    self.console.print("             [yellow]awaiting approval[/yellow] [dim](/pending)[/dim]")

    # -- config --------------------------------------------------------------

    def format_config(self, config: dict[str, Any]) -> None:
        self.console.print(Syntax(json.dumps(config, indent=2, default=str), "json", theme="monokai"))

"""Interactive chat session handler."""

from __future__ import annotations

import asyncio

from rich.console import Console

from chatloop.cli.output import OutputFormatter
from chatloop.conversation.conversable import SimpleConversable
from chatloop.conversation.service import ConversationService
from chatloop.errors import ChatloopError
from chatloop.orchestrator.context import TurnContext, TurnResult
from chatloop.store.models import AgentType, ConversationStatus


class ChatHandler:
    """
    Manages the interactive chat loop.

    Streams assistant text as it arrives and prompts for approval whenever a
    turn stops on a tool that needs confirmation.
    """

    def __init__(
        self,
        service: ConversationService,
        owner: SimpleConversable,
        conversation_id: int,
        console: Console | None = None,
    ) -> None:
        self.service = service
        self.owner = owner
        self.conversation_id = conversation_id
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self._running = True

    async def _print_chunk(self, text: str) -> None:
        self.console.print(text, end="", markup=False)

    def _context(self) -> TurnContext:
        return TurnContext(user_id=self.owner.owner_id, on_chunk=self._print_chunk)

    async def _ask(self, prompt: str) -> str:
        try:
            return await asyncio.get_running_loop().run_in_executor(
                None, lambda: input(prompt).strip()
            )
        except (EOFError, KeyboardInterrupt):
            return ""

    async def confirm_pending(self) -> TurnResult | None:
        """Prompt for every pending tool use; the last decision resumes the turn."""
        result = None
        for tool_use in await self.service.pending_tool_uses(self.conversation_id):
            self.formatter.format_confirmation(tool_use)
            answer = (await self._ask("\n  Approve? [y/N]: ")).lower()
            self.console.print("[dim]assistant>[/dim] ", end="")
            if answer in ("y", "yes"):
                result = await self.service.approve_tool_use(
                    self.owner, tool_use.id, ctx=self._context()
                )
            else:
                result = await self.service.reject_tool_use(
                    self.owner, tool_use.id, ctx=self._context()
                )
            self.console.print()
        return result

    async def _settle(self, result: TurnResult | None) -> None:
        while result is not None:
            if result.error:
                self.console.print(f"\n[red]Error:[/red] {result.error} [dim](/retry to try again)[/dim]")
                return
            if result.canceled:
                self.console.print("\n[yellow]Canceled.[/yellow]")
                return
            if result.status is not ConversationStatus.WAITING:
                return
            result = await self.confirm_pending()

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        parts = command.strip().split(None, 1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd == "/quit":
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/history":
            messages = await self.service.store.get_history(
                self.conversation_id, include_errors=True
            )
            self.formatter.format_messages(messages)
            return True

        if cmd == "/tools":
            self.formatter.format_tool_list(
                self.service.registry.list(), self.service.policy.dangerous
            )
            return True

        if cmd == "/pending":
            self.console.print("[dim]assistant>[/dim] ", end="")
            await self._settle(await self.confirm_pending())
            return True

        if cmd == "/retry":
            try:
                self.console.print("[dim]assistant>[/dim] ", end="")
                result = await self.service.retry(
                    self.owner, self.conversation_id, ctx=self._context()
                )
            except ChatloopError as e:
                self.console.print(f"\n[red]Error:[/red] {e}")
                return True
            self.console.print()
            await self._settle(result)
            return True

        if cmd == "/new":
            try:
                agent_type = AgentType(arg.lower()) if arg else AgentType.PLANNER
            except ValueError:
                self.console.print(f"  [red]Unknown agent type:[/red] {arg}")
                return True
            conv = await self.service.store.create_conversation(
                self.owner.owner_type, self.owner.owner_id, agent_type
            )
            self.conversation_id = conv.id
            self.console.print(f"  Started conversation [bold]{conv.id}[/bold] ({agent_type.value})")
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit     - Exit the chat\n"
                "  /history  - Show this conversation\n"
                "  /tools    - List available tools\n"
                "  /pending  - Review tool calls awaiting approval\n"
                "  /retry    - Re-run the last failed turn\n"
                "  /new      - Start a new conversation [planner|coder|reviewer|tester]\n"
                "  /help     - Show this help\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> None:
        """Run one turn for *user_input*, streaming the reply."""
        try:
            result = await self.service.chat(
                self.owner, self.conversation_id, user_input, ctx=self._context()
            )
        except ChatloopError as e:
            self.console.print(f"\n[red]Error:[/red] {e}")
            return

        self.console.print()
        await self._settle(result)

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            f"[bold]chatloop[/bold] - conversation {self.conversation_id}\n"
            "[dim]Type /help for commands, /quit to exit.[/dim]\n"
        )

        while self._running:
            try:
                user_input = await asyncio.get_running_loop().run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            self.console.print("[dim]assistant>[/dim] ", end="")
            await self.handle_input(user_input)

"""Minimal terminal front end for a ConversationEngine.

Features:
- Streaming token output
- Slash commands (/system, /temp, /rewind, /save, /load, /list, ...)
"""

from __future__ import annotations

import asyncio

from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown

from convo.config import get_convo_home
from convo.core.engine import ConversationEngine
from convo.core.errors import ConvoError

console = Console()

HELP_TEXT = """
**Slash Commands:**
- `/help` - Show this help message
- `/model <name>` - Switch model; `/model` shows the current one
- `/temp <value>` - Set temperature (clamped to 0.0-2.0)
- `/system <text>` - Replace the system prompt
- `/history` - Show conversation history with indices
- `/rewind <index>` - Drop history from `index` on
- `/clear` - Clear conversation history; `/clear examples` keeps example turns
- `/new` - Save and start a new conversation
- `/save` - Save the conversation
- `/list` - List recent conversations
- `/load <id>` - Switch to a saved conversation
- `/quit` or `/exit` - Exit
"""


class CLI:
    """Interactive loop around one engine."""

    def __init__(self, engine: ConversationEngine) -> None:
        self.engine = engine

        history_dir = get_convo_home() / "history"
        history_dir.mkdir(parents=True, exist_ok=True)
        self.prompt_session: PromptSession[str] = PromptSession(
            history=FileHistory(str(history_dir / "cli_input.txt")),
        )

    async def run(self) -> None:
        """Main CLI loop."""
        console.print(
            f"[bold cyan]convo[/bold cyan] [dim]model:[/dim] {self.engine.model}  "
            f"[dim]/help for commands[/dim]"
        )

        with patch_stdout():
            while True:
                try:
                    user_input = await asyncio.get_event_loop().run_in_executor(
                        None,
                        lambda: self.prompt_session.prompt("\n> "),
                    )
                except (EOFError, KeyboardInterrupt):
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                user_input = user_input.strip()
                if not user_input:
                    continue

                if user_input.startswith("/"):
                    if not await self.handle_command(user_input):
                        break
                    continue

                await self.send(user_input)

    async def send(self, user_text: str) -> None:
        """Stream one reply to the console."""
        try:
            stream = await self.engine.send_message_stream(user_text)
            async with stream:
                async for fragment in stream:
                    console.print(fragment, end="", markup=False, highlight=False)
            console.print()
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted[/yellow]")
        except ConvoError as e:
            console.print(f"\n[red]Error: {e}[/red]")

    async def handle_command(self, command: str) -> bool:
        """Handle a slash command. Returns False if should exit."""
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        try:
            return await self._dispatch(cmd, arg)
        except (ConvoError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            return True

    async def _dispatch(self, cmd: str, arg: str) -> bool:
        engine = self.engine

        if cmd in ("/quit", "/exit", "/q"):
            console.print("[dim]Goodbye![/dim]")
            return False

        elif cmd == "/help":
            console.print(Markdown(HELP_TEXT))

        elif cmd == "/model":
            if arg:
                engine.set_model(arg)
                console.print(f"[green]Model switched to: {arg}[/green]")
            else:
                console.print(f"[blue]Current model: {engine.model}[/blue]")

        elif cmd == "/temp":
            engine.set_temperature(float(arg))
            console.print(f"[green]Temperature: {engine.temperature}[/green]")

        elif cmd == "/system":
            await engine.set_system_prompt(arg)
            console.print("[green]System prompt updated[/green]")

        elif cmd == "/history":
            if not engine.history_list:
                console.print("[dim]No conversation history[/dim]")
            for i, msg in enumerate(engine.history_list):
                color = "green" if msg.role.value == "user" else "blue"
                console.print(f"[dim]{i:>3}[/dim] [{color}]{msg.role.value}:[/{color}] {msg.content[:200]}")

        elif cmd == "/rewind":
            await engine.remove_messages_from(int(arg))
            console.print(f"[green]History now has {len(engine.history_list)} messages[/green]")

        elif cmd == "/clear":
            engine.delete_history(keep_examples=(arg == "examples"))
            console.print("[green]Conversation cleared[/green]")

        elif cmd == "/new":
            await engine.new_conversation()
            console.print("[green]Started a new conversation[/green]")

        elif cmd == "/save":
            await engine.save_conversation()
            console.print(f"[green]Saved: {engine.conversation_id or '(nothing to save)'}[/green]")

        elif cmd == "/list":
            if engine.storage is None:
                console.print("[dim]No storage configured[/dim]")
            else:
                for convo in await engine.storage.list_recent(10):
                    console.print(f"[cyan]{convo.id}[/cyan] {convo.title}")

        elif cmd == "/load":
            await engine.load_conversation(arg)
            console.print(f"[green]Loaded {arg} ({len(engine.history_list)} messages)[/green]")

        else:
            console.print(f"[red]Unknown command: {cmd}[/red]")
            console.print("[dim]Type /help for available commands[/dim]")

        return True

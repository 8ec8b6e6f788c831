"""
ui/renderer.py - The View Layer

Responsible for all Rich console operations and formatting.
Never handles input - only rendering.
"""

from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from monk_manager.exceptions import MonkBaseError

# Raw error strings that deserve a hint even without a typed error.
ERROR_HINTS = {
    "FileNotFound": "I cannot locate that file. Please verify the path exists.",
    "ConnectionRefused": "I could not connect to the model API. Check your network.",
    "rate_limit": "The API provider is rate-limiting us. Please wait a moment.",
    "KeyboardInterrupt": "User cancelled the operation.",
}


def improve_error_message(raw_msg: str) -> Optional[str]:
    """Return a hint for well-known error strings, if any."""
    msg_str = str(raw_msg).lower()
    for key, hint in ERROR_HINTS.items():
        if key.lower() in msg_str:
            return hint
    return None


class ConsoleRenderer:
    """
    Handles all visual output.
    Manages console state and the ephemeral thinking indicator.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(highlight=False)
        self._thinking_active = False
        self._stream_started = False

    def print_system(self, message: str) -> None:
        """Print [SYS] tag in blue"""
        self.console.print(f"[bold blue][SYS][/bold blue] {escape(message)}", highlight=False)

    def print_warning(self, message: str) -> None:
        self.console.print(f"[bold yellow][WARN] {escape(message)}[/bold yellow]")

    def print_error(self, error: Any, use_panel: bool = False) -> None:
        """
        Unified error display.

        Typed errors carry their own hint; plain strings are matched against
        ``ERROR_HINTS``.
        """
        if isinstance(error, MonkBaseError):
            message, hint = error.message, error.user_hint
        else:
            message, hint = str(error), improve_error_message(str(error))

        body = escape(message)
        if hint:
            body += f"\n\n[dim italic]Hint: {escape(hint)}[/]"
        if use_panel:
            self.console.print(
                Panel(
                    body,
                    title="[bold red]Error[/]",
                    border_style="red3",
                    box=box.ROUNDED,
                    padding=(1, 2),
                )
            )
        else:
            self.console.print()
            self.console.print(f"[bold red]ERROR:[/bold red] {body}")
            self.console.print()

    def start_thinking(self, message: str = "Thinking...") -> None:
        """
        Start ephemeral thinking indicator.
        Prints [MONK] tag in green with no newline (uses \\r).
        """
        self._thinking_active = True
        self._stream_started = False
        self.console.print(f"\n[bold green][MONK][/bold green] {message}", end="\r")

    def stop_thinking(self) -> None:
        """Clear the ephemeral thinking line if active"""
        if self._thinking_active:
            self.console.print("\x1b[2K\r", end="")
            self._thinking_active = False

    def print_stream(self, text: str) -> None:
        """
        Stream text as it arrives.
        Clears the thinking line before the first chunk.
        """
        if not self._stream_started:
            self.stop_thinking()
            self.console.print("[bold green][MONK][/bold green] ", end="")
            self._stream_started = True
        self.console.print(text, end="", markup=False, highlight=False)

    def end_stream(self) -> None:
        if self._stream_started:
            self.console.print()
            self._stream_started = False
        self.stop_thinking()

    def print_markdown(self, text: str) -> None:
        self.console.print(Markdown(text))

    def print_plain(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False)

    def print_startup_banner(self, project_dir: str, model: str) -> None:
        self.console.print(
            "[bold green]Welcome to monk-manager interactive mode![/bold green]\n"
            f"[green]Project directory: {escape(project_dir)}[/green]\n"
            f"[dim]Model: {escape(model)}[/dim]\n"
            "[dim]Type your message and press Enter to send.\n"
            "Type '/help' for assistance or '/exit' to quit.[/dim]"
        )

    def render_help(self, commands: Dict[str, str]) -> None:
        self.console.print()
        self.console.print("[bold green]Available commands:[/bold green]")
        for name, description in commands.items():
            self.console.print(f"  [green]{escape(name):<22}[/green] {escape(description)}", highlight=False)
        self.console.print()

    def render_status(self, status: Dict[str, Any]) -> None:
        table = Table(title="Current State", box=box.SIMPLE, show_header=False)
        table.add_column("key", style="cyan")
        table.add_column("value")
        cache = status.get("cache", {})
        table.add_row("Model", str(status.get("model")))
        table.add_row("Provider", str(status.get("provider")))
        if "api_key" in status:
            table.add_row("API key", escape(str(status["api_key"])))
        table.add_row("Session", str(status.get("session_id")))
        table.add_row("Conversation", f"{status.get('history_messages', 0)} messages")
        table.add_row(
            "Cache",
            f"{cache.get('entries', 0)}/{cache.get('capacity', 0)} entries, "
            f"{cache.get('hits', 0)} hits, {cache.get('misses', 0)} misses",
        )
        table.add_row("In flight", str(status.get("in_flight", 0)))
        self.console.print(table)

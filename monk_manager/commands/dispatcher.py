#!/usr/bin/env python3
"""
Command Dispatcher Module

Centralized handling of slash commands for the interactive session.
"""

import logging
import shlex
from typing import TYPE_CHECKING, Dict, Optional

from monk_manager.commands.explain import ExplainArgs, run_explain
from monk_manager.exceptions import InvalidInputError

if TYPE_CHECKING:
    from monk_manager.commands.interactive import InteractiveSession

HELP_COMMANDS: Dict[str, str] = {
    "/help": "Display this help message",
    "/status": "Show model, provider, history length and cache stats",
    "/clear": "Start a fresh conversation",
    "/explain FILE [A:B]": "Explain a file, optionally only lines A to B",
    "/exit or /quit": "Exit the session",
}


class CommandDispatcher:
    """Centralized dispatcher for slash commands."""

    def __init__(self, interactive: "InteractiveSession"):
        self.interactive = interactive
        self.logger = logging.getLogger(__name__)

    async def dispatch(self, user_input: str) -> Optional[bool]:
        """
        Process slash commands and return appropriate signals.

        Returns:
            Optional[bool]: True if command was handled, False if quit command,
            None if not a command
        """
        if not user_input.startswith("/"):
            return None

        try:
            parts = shlex.split(user_input.strip())
        except ValueError as e:
            raise InvalidInputError(f"Could not parse command: {e}") from e
        cmd, args = parts[0].lower(), parts[1:]
        renderer = self.interactive.renderer

        if cmd in ("/exit", "/quit"):
            renderer.print_system("Exiting monk-manager.")
            return False

        if cmd == "/help":
            renderer.render_help(HELP_COMMANDS)
            return True

        if cmd == "/status":
            status = self.interactive.engine.status()
            status["api_key"] = self.interactive.settings.credentials().mask_for_display()
            renderer.render_status(status)
            return True

        if cmd == "/clear":
            self.interactive.engine.new_session()
            renderer.print_system("Conversation cleared.")
            return True

        if cmd == "/explain":
            await self._handle_explain(args)
            return True

        renderer.print_warning(f"Unknown command: {cmd}. Type /help for the list.")
        return True

    async def _handle_explain(self, args) -> None:
        if not args or len(args) > 2:
            raise InvalidInputError(
                "Usage: /explain FILE [A:B]",
                field_name="file",
                user_hint="Give a file path and an optional line range such as 10:20.",
            )
        explain_args = ExplainArgs(
            file=args[0],
            lines=args[1] if len(args) == 2 else None,
            format="markdown",
            stream=self.interactive.stream,
        )
        await self.interactive.run_turn(
            run_explain(
                self.interactive.engine,
                explain_args,
                self.interactive.settings,
                self.interactive.renderer,
            )
        )

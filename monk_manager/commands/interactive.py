"""
Interactive session: a prompt loop over one ConversationSession.

Ctrl-C while an answer is in flight cancels only that turn; Ctrl-C or
Ctrl-D at the prompt leaves the loop.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Awaitable, Optional

from monk_manager.agent.engine import AIEngine
from monk_manager.commands.ask import run_ask
from monk_manager.commands.dispatcher import CommandDispatcher
from monk_manager.config.settings import Settings
from monk_manager.exceptions import MonkBaseError, OperationCancelledError
from monk_manager.ui.input import InputManager
from monk_manager.ui.renderer import ConsoleRenderer

logger = logging.getLogger(__name__)

PROJECT_CONTEXT_KEY = "Current directory"


class InteractiveSession:
    def __init__(
        self,
        engine: AIEngine,
        settings: Settings,
        renderer: Optional[ConsoleRenderer] = None,
        input_manager: Optional[InputManager] = None,
        project_root: Optional[Path] = None,
        stream: bool = True,
    ):
        self.engine = engine
        self.settings = settings
        self.renderer = renderer or ConsoleRenderer()
        self.input_manager = input_manager or InputManager()
        self.project_root = project_root or Path.cwd()
        self.stream = stream
        self.dispatcher = CommandDispatcher(self)
        self.engine.session.set_metadata(PROJECT_CONTEXT_KEY, str(self.project_root))

    async def run(self) -> None:
        self.renderer.print_startup_banner(
            str(self.project_root), self.engine.client.model_name
        )
        while True:
            user_input = await self.input_manager.read_input()
            if user_input is None:
                self.renderer.print_system("Exiting monk-manager.")
                break
            user_input = user_input.strip()
            if not user_input:
                continue
            if not await self.handle_input(user_input):
                break

    async def handle_input(self, user_input: str) -> bool:
        """Process one line. Returns False when the session should end."""
        try:
            handled = await self.dispatcher.dispatch(user_input)
            if handled is not None:
                return handled
            await self.run_turn(
                run_ask(self.engine, user_input, self.renderer, stream=self.stream)
            )
        except OperationCancelledError as e:
            self.renderer.print_warning(e.message)
        except MonkBaseError as e:
            logger.debug("Turn failed: %s", e.message)
            self.renderer.print_error(e)
        return True

    async def run_turn(self, turn: Awaitable[Any]) -> Any:
        """
        Run one engine turn in its own task so SIGINT cancels just the turn.

        Raises:
            OperationCancelledError: If the turn was interrupted.
        """
        task = asyncio.ensure_future(turn)
        loop = asyncio.get_running_loop()
        previous = _install_sigint(loop, task.cancel)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise OperationCancelledError(
                "Interrupted. The partial answer was discarded."
            ) from None
        finally:
            if previous is not None:
                loop.remove_signal_handler(signal.SIGINT)
                signal.signal(signal.SIGINT, previous)


def _install_sigint(loop: asyncio.AbstractEventLoop, callback):
    """Route SIGINT to ``callback``; returns the handler to restore, or None."""
    previous = signal.getsignal(signal.SIGINT)
    try:
        loop.add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError, ValueError):
        # No loop signal support (Windows, or not the main thread).
        return None
    return previous if previous is not None else signal.SIG_DFL

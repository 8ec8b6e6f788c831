"""
ui/input.py - Input Abstraction Layer
"""

import asyncio
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout


class InputManager:
    """
    Manages all user input operations using prompt_toolkit.
    Ensures single input source and proper stdout patching.
    """

    def __init__(self, session: Optional[PromptSession] = None):
        self.session = session or PromptSession(history=InMemoryHistory())
        self._is_prompt_active: bool = False

    async def read_input(self, prompt_text: str = ">> ") -> Optional[str]:
        """
        Read one line of user input.
        Returns None on Ctrl-C/Ctrl-D to signal exit.
        """
        if self._is_prompt_active:
            # Prompt already active - return None to signal cancellation
            return None
        self._is_prompt_active = True

        try:
            with patch_stdout():
                return await self.session.prompt_async(HTML("\n{}").format(prompt_text))
        except (KeyboardInterrupt, EOFError):
            return None
        except asyncio.CancelledError:
            return None
        finally:
            self._is_prompt_active = False
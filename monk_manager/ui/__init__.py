"""Terminal presentation for monk-manager: rich output, prompt_toolkit input."""

from monk_manager.ui.input import InputManager
from monk_manager.ui.renderer import ConsoleRenderer

__all__ = ["ConsoleRenderer", "InputManager"]

"""Command handlers: one-shot explain/ask and the interactive session."""

from monk_manager.commands.ask import run_ask
from monk_manager.commands.dispatcher import CommandDispatcher
from monk_manager.commands.explain import ExplainArgs, run_explain
from monk_manager.commands.interactive import InteractiveSession

__all__ = [
    "CommandDispatcher",
    "ExplainArgs",
    "InteractiveSession",
    "run_ask",
    "run_explain",
]

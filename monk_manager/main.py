#!/usr/bin/env python3
"""
Application Starter for Monk Manager
====================================

1. Parses the command line
2. Loads configuration and sets up logging
3. Builds the model client and AI engine
4. Runs the selected command on the event loop

Without a subcommand the interactive session starts.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from monk_manager import __version__
from monk_manager.agent.engine import AIEngine
from monk_manager.agent.events import EventBus
from monk_manager.agent.provider_registry import create_model_client
from monk_manager.commands.ask import run_ask
from monk_manager.commands.explain import OUTPUT_FORMATS, ExplainArgs, run_explain
from monk_manager.commands.interactive import InteractiveSession
from monk_manager.config.settings import Settings, load_settings
from monk_manager.exceptions import MonkBaseError
from monk_manager.ui.renderer import ConsoleRenderer
from monk_manager.utils.logger import EventLogger, setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="monk",
        description="AI-powered assistant that explains code and answers questions.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to a monk.toml/json/yaml file")
    parser.add_argument("--provider", help="Model provider (anthropic, openrouter, mock)")
    parser.add_argument("--model", dest="model_name", help="Model name")
    parser.add_argument("--log-level", dest="log_level", help="Logging level")
    parser.add_argument("--log-file", dest="log_file", type=Path, help="Write logs to this file")

    subparsers = parser.add_subparsers(dest="command")

    explain = subparsers.add_parser("explain", help="Explain a source file")
    explain.add_argument("file", help="Path to the file to explain")
    explain.add_argument("-l", "--language", help="Programming language of the code")
    explain.add_argument("--lines", help="Line range to explain, e.g. 10:20")
    explain.add_argument(
        "-c", "--context-lines", type=int, help="Extra lines around the line range"
    )
    explain.add_argument("--focus", help="Symbol to pay particular attention to")
    explain.add_argument(
        "--detail", default="medium", choices=("basic", "medium", "detailed")
    )
    explain.add_argument("-f", "--format", choices=OUTPUT_FORMATS, help="Output format")
    explain.add_argument("--no-stream", action="store_true", help="Wait for the full answer")

    ask = subparsers.add_parser("ask", help="Ask a one-off question")
    ask.add_argument("query", nargs="+", help="The question")
    ask.add_argument("--no-stream", action="store_true", help="Wait for the full answer")

    chat = subparsers.add_parser("chat", help="Start the interactive session (default)")
    chat.add_argument("--no-stream", action="store_true", help="Wait for full answers")

    return parser


def build_engine(settings: Settings, event_bus: EventBus) -> AIEngine:
    client = create_model_client(settings)
    return AIEngine.from_settings(settings, client=client, event_bus=event_bus)


async def run_command(
    args: argparse.Namespace, settings: Settings, renderer: ConsoleRenderer
) -> None:
    event_bus = EventBus()
    engine = build_engine(settings, event_bus)
    event_logger = EventLogger(event_bus)
    event_logger.start()

    stream = not getattr(args, "no_stream", False)
    try:
        if args.command == "explain":
            await run_explain(
                engine,
                ExplainArgs(
                    file=args.file,
                    language=args.language,
                    lines=args.lines,
                    context_lines=args.context_lines,
                    focus=args.focus,
                    detail=args.detail,
                    format=args.format,
                    stream=stream,
                ),
                settings,
                renderer,
            )
        elif args.command == "ask":
            await run_ask(engine, " ".join(args.query), renderer, stream=stream)
        else:
            await InteractiveSession(
                engine, settings, renderer=renderer, stream=stream
            ).run()
    finally:
        event_logger.stop()
        await engine.client.close()


def run(argv: Optional[List[str]] = None) -> int:
    """Console script entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    renderer = ConsoleRenderer()

    try:
        settings = load_settings(
            args.config,
            provider=args.provider,
            model_name=args.model_name,
            log_level=args.log_level,
            log_file=args.log_file,
        )
        setup_logging(settings.log_level, settings.log_file)
        if settings.config_file_path:
            logger.info("Loaded configuration from %s", settings.config_file_path)
        asyncio.run(run_command(args, settings, renderer))
    except MonkBaseError as e:
        logger.debug("Command failed", exc_info=True)
        renderer.print_error(e)
        return 1
    except KeyboardInterrupt:
        renderer.print_system("Interrupted by user")
        return 130
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()

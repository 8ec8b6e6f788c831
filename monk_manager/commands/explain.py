"""
Explain command: send a source file (or a slice of it) to the model and
print the explanation as markdown, plain text or JSON.
"""

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Optional, Tuple

from monk_manager.agent.engine import AIEngine
from monk_manager.agent.prompt_builder import (
    DetailLevel,
    LineRange,
    PromptOptions,
    SourceExcerpt,
    UserRequest,
)
from monk_manager.config.settings import Settings
from monk_manager.exceptions import InvalidInputError
from monk_manager.ui.renderer import ConsoleRenderer
from monk_manager.utils.files import load_excerpt

logger = logging.getLogger(__name__)

EXPLAIN_QUERY = "Explain what this code does."
OUTPUT_FORMATS = ("markdown", "plain", "json")


@dataclass
class ExplainArgs:
    file: str
    language: Optional[str] = None
    lines: Optional[str] = None
    context_lines: Optional[int] = None
    focus: Optional[str] = None
    detail: str = "medium"
    format: Optional[str] = None
    stream: bool = True


def build_explain_request(
    args: ExplainArgs, settings: Settings
) -> Tuple[UserRequest, SourceExcerpt, str]:
    """Validate the arguments and load the file. Returns (request, excerpt, format)."""
    output_format = (args.format or settings.default_format).lower()
    if output_format not in OUTPUT_FORMATS:
        raise InvalidInputError(
            f"Unsupported output format: {output_format}",
            field_name="format",
            user_hint="Use one of: markdown, plain, json.",
        )

    context_lines = args.context_lines or 0
    if context_lines < 0:
        raise InvalidInputError("--context-lines must not be negative", field_name="context_lines")
    if context_lines > settings.max_context_lines:
        raise InvalidInputError(
            f"--context-lines {context_lines} exceeds the limit of {settings.max_context_lines}",
            field_name="context_lines",
            user_hint=f"Use at most {settings.max_context_lines} context lines or raise max_context_lines.",
        )

    line_range = LineRange.parse(args.lines) if args.lines else None
    excerpt = load_excerpt(
        args.file, language=args.language, detect=settings.language_detection
    )
    options = PromptOptions(
        language=excerpt.language,
        detail=DetailLevel.parse(args.detail),
        focus=args.focus,
        line_range=line_range,
        # Context lines only matter around an explicit range.
        context_lines=context_lines if line_range is not None else 0,
    )
    request = UserRequest(
        query=EXPLAIN_QUERY,
        excerpt=excerpt,
        options=options,
        # JSON needs the whole text before anything is printed.
        stream=args.stream and output_format != "json",
    )
    return request, excerpt, output_format


def format_header(path: str, language: str, output_format: str) -> str:
    if output_format == "markdown":
        return f"# Code Explanation\n\n## File: {path}\n\n## Language: {language}\n\n## Explanation\n"
    if output_format == "plain":
        return f"File: {path}\nLanguage: {language}\n\nExplanation:\n"
    return ""


def format_explanation(
    path: str,
    language: str,
    explanation: str,
    output_format: str,
    model: Optional[str] = None,
    cached: bool = False,
) -> str:
    """Render a complete explanation in the requested output format."""
    if output_format == "json":
        return json.dumps(
            {
                "file": path,
                "language": language,
                "explanation": explanation,
                "model": model,
                "cached": cached,
            },
            indent=2,
        )
    if output_format in ("markdown", "plain"):
        return f"{format_header(path, language, output_format)}\n{explanation}"
    raise InvalidInputError(f"Unsupported output format: {output_format}", field_name="format")


async def run_explain(
    engine: AIEngine,
    args: ExplainArgs,
    settings: Settings,
    renderer: ConsoleRenderer,
) -> str:
    """Explain one file. Returns the explanation text."""
    request, excerpt, output_format = build_explain_request(args, settings)
    language = request.options.language
    logger.info("Explaining %s as %s", excerpt.path, language)

    if not request.stream:
        renderer.start_thinking()
        try:
            response = await engine.answer(request)
        finally:
            renderer.stop_thinking()
        output = format_explanation(
            excerpt.path,
            language,
            response.text,
            output_format,
            model=response.model,
            cached=response.cached,
        )
        if output_format == "markdown":
            renderer.print_markdown(output)
        else:
            renderer.print_plain(output)
        return response.text

    renderer.print_plain(format_header(excerpt.path, language, output_format))
    renderer.start_thinking()
    try:
        async with aclosing(engine.answer_stream(request)) as chunks:
            async for chunk in chunks:
                renderer.print_stream(chunk)
    finally:
        renderer.end_stream()
    return engine.session.history[-1].content

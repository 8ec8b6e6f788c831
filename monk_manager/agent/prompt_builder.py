#!/usr/bin/env python3
"""
Prompt Builder
==============

Renders a user request plus conversation history into a provider-neutral
prompt. Rendering is a pure function of its inputs so the same request
always produces the same text (and therefore the same cache fingerprint).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from monk_manager.agent.message import Message, Role
from monk_manager.config.settings import DEFAULT_SYSTEM_PROMPT
from monk_manager.exceptions import InvalidInputError

logger = logging.getLogger(__name__)


class DetailLevel(str, Enum):
    BASIC = "basic"
    MEDIUM = "medium"
    DETAILED = "detailed"

    @classmethod
    def parse(cls, value: str) -> "DetailLevel":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidInputError(
                f"Invalid detail level: {value!r}. Expected basic, medium or detailed.",
                field_name="detail",
            ) from None


DETAIL_INSTRUCTIONS = {
    DetailLevel.BASIC: "Give a brief, high-level summary suitable for a newcomer.",
    DetailLevel.MEDIUM: "Explain what it does and how its main parts fit together.",
    DetailLevel.DETAILED: (
        "Give a thorough walkthrough, covering control flow, edge cases "
        "and design trade-offs."
    ),
}


@dataclass(frozen=True)
class LineRange:
    """1-based inclusive line range; either end may be open."""

    start: Optional[int] = None
    end: Optional[int] = None

    def __post_init__(self):
        for name, value in (("start", self.start), ("end", self.end)):
            if value is not None and value < 1:
                raise InvalidInputError(
                    f"Line {name} must be >= 1, got {value}", field_name="line_range"
                )
        if self.start is not None and self.end is not None and self.start > self.end:
            raise InvalidInputError(
                f"Invalid line range {self.start}:{self.end}: start must not exceed end",
                field_name="line_range",
            )

    @classmethod
    def parse(cls, text: str) -> "LineRange":
        """Parse ``A:B``, ``A:``, ``:B`` or a single line ``A``."""
        raw = text.strip()
        try:
            if ":" not in raw:
                line = int(raw)
                return cls(line, line)
            start_text, end_text = raw.split(":", 1)
            start = int(start_text) if start_text.strip() else None
            end = int(end_text) if end_text.strip() else None
        except ValueError:
            raise InvalidInputError(
                f"Invalid line range: {text!r}. Use START:END.", field_name="line_range"
            ) from None
        return cls(start, end)

    def __str__(self) -> str:
        return f"{self.start or ''}:{self.end or ''}"


@dataclass(frozen=True)
class SourceExcerpt:
    """File content the user wants explained."""

    path: str
    content: str
    language: Optional[str] = None


@dataclass(frozen=True)
class PromptOptions:
    language: Optional[str] = None
    detail: DetailLevel = DetailLevel.MEDIUM
    focus: Optional[str] = None
    line_range: Optional[LineRange] = None
    context_lines: int = 0


@dataclass(frozen=True)
class UserRequest:
    """One turn as submitted by the caller."""

    query: str
    excerpt: Optional[SourceExcerpt] = None
    options: PromptOptions = field(default_factory=PromptOptions)
    stream: bool = False


@dataclass(frozen=True)
class RenderedPrompt:
    """Provider-ready prompt produced by PromptBuilder.render()."""

    system: str
    history: Tuple[Message, ...]
    user_turn: str
    dropped_messages: int = 0

    def to_messages(self) -> List[Dict[str, str]]:
        """Chat messages (without the system instruction), newest last."""
        messages = [msg.to_dict() for msg in self.history]
        messages.append({"role": Role.USER.value, "content": self.user_turn})
        return messages

    @property
    def cache_text(self) -> str:
        """The instruction and current turn, the part that identifies the question."""
        return f"[system]\n{self.system}\n[user]\n{self.user_turn}"


class PromptBuilder:
    """
    Turns a request and conversation context into a RenderedPrompt.

    Prior conversation is kept within ``char_budget``; the oldest messages
    are dropped first and the current user turn is never truncated.
    """

    def __init__(
        self,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        char_budget: int = 24000,
        default_language: Optional[str] = None,
    ):
        self.system_prompt = system_prompt
        self.char_budget = char_budget
        self.default_language = default_language

    def render(
        self,
        request: UserRequest,
        history: Sequence[Message] = (),
        metadata: Optional[Mapping[str, str]] = None,
    ) -> RenderedPrompt:
        if not request.query or not request.query.strip():
            raise InvalidInputError("Query must not be empty", field_name="query")

        system = self._render_system(metadata or {})
        if request.excerpt is not None:
            user_turn = self._render_excerpt_turn(request)
        else:
            user_turn = self._render_query_turn(request)

        kept, dropped = self._fit_history(system, user_turn, history)
        if dropped:
            logger.debug("Dropped %d oldest messages to fit the prompt budget", dropped)
        return RenderedPrompt(
            system=system,
            history=tuple(kept),
            user_turn=user_turn,
            dropped_messages=dropped,
        )

    def _render_system(self, metadata: Mapping[str, str]) -> str:
        if not metadata:
            return self.system_prompt
        # Sorted so the text does not depend on insertion order.
        context = "; ".join(f"{key}: {metadata[key]}" for key in sorted(metadata))
        return f"{self.system_prompt} Project context: {context}"

    def _render_query_turn(self, request: UserRequest) -> str:
        options = request.options
        query = request.query.strip()
        guidance = []
        if options.language:
            guidance.append(f"Answer in the context of {options.language}.")
        if options.focus:
            guidance.append(f"Focus on `{options.focus}`.")
        if options.detail is not DetailLevel.MEDIUM:
            guidance.append(DETAIL_INSTRUCTIONS[options.detail])
        if not guidance:
            return query
        return f"{query}\n\n" + " ".join(guidance)

    def _render_excerpt_turn(self, request: UserRequest) -> str:
        excerpt = request.excerpt
        options = request.options
        language = (
            options.language or excerpt.language or self.default_language or "unknown"
        )
        code, first_line, last_line = self._slice(excerpt.content, options)

        location = excerpt.path
        if options.line_range is not None:
            location = f"{excerpt.path} (lines {first_line}-{last_line})"

        instruction = (
            f"You are an expert programmer. Please explain the following {language} "
            f"code from {location} in a clear and concise way. "
            f"{DETAIL_INSTRUCTIONS[options.detail]}"
        )
        if options.focus:
            instruction += f" Pay particular attention to `{options.focus}`."

        return (
            f"{instruction}\n\n```{language}\n{code}\n```\n\n{request.query.strip()}"
        )

    @staticmethod
    def _slice(content: str, options: PromptOptions) -> Tuple[str, int, int]:
        lines = content.splitlines()
        total = len(lines)
        if options.line_range is None:
            return content.rstrip("\n"), 1, total

        start = options.line_range.start or 1
        end = options.line_range.end or total
        if start > total:
            raise InvalidInputError(
                f"Line range starts at {start} but the file has only {total} lines",
                field_name="line_range",
            )
        end = min(end, total)
        if options.context_lines:
            start = max(1, start - options.context_lines)
            end = min(total, end + options.context_lines)
        return "\n".join(lines[start - 1 : end]), start, end

    def _fit_history(
        self, system: str, user_turn: str, history: Sequence[Message]
    ) -> Tuple[List[Message], int]:
        kept = list(history)
        remaining = self.char_budget - len(system) - len(user_turn)
        used = sum(len(msg.content) for msg in kept)

        while kept and used > remaining:
            used -= len(kept.pop(0).content)
        # Chat APIs expect the conversation to open with a user turn.
        while kept and kept[0].role is not Role.USER:
            used -= len(kept.pop(0).content)
        return kept, len(history) - len(kept)

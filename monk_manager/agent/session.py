#!/usr/bin/env python3
"""
Conversation Session
====================

Owns one conversation: the ordered message history, session metadata and
the Idle -> Awaiting -> (Streaming) -> Idle turn state machine. History is
append-only; a turn's messages are committed together only when the turn
succeeds.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from monk_manager.agent.message import Message
from monk_manager.exceptions import SessionBusyError

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting"
    STREAMING = "streaming"


class SessionStateMachine:
    """
    Enforces valid state transitions for a session.
    Prevents invalid jumps (e.g., IDLE -> STREAMING without a request).
    """

    def __init__(self):
        self._current_state = SessionState.IDLE

        # Cancellation and failure always lead back to IDLE.
        self._transitions: Dict[SessionState, Set[SessionState]] = {
            SessionState.IDLE: {SessionState.AWAITING},
            SessionState.AWAITING: {SessionState.STREAMING, SessionState.IDLE},
            SessionState.STREAMING: {SessionState.IDLE},
        }

    @property
    def current(self) -> SessionState:
        return self._current_state

    def can_transition_to(self, new_state: SessionState) -> bool:
        return new_state in self._transitions[self._current_state]

    def transition_to(self, new_state: SessionState) -> None:
        """
        Attempts to transition to a new state.
        Raises ValueError if the transition is illegal.
        """
        if not self.can_transition_to(new_state):
            raise ValueError(
                f"Invalid State Transition: {self._current_state.value} -> {new_state.value}"
            )
        self._current_state = new_state

    def reset(self) -> None:
        self._current_state = SessionState.IDLE


@dataclass
class ConversationContext:
    """Ordered messages (newest last) plus session-scoped metadata."""

    messages: List[Message] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)


class ConversationSession:
    def __init__(
        self,
        metadata: Optional[Dict[str, str]] = None,
        max_messages: Optional[int] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.created_at = time.time()
        self.max_messages = max_messages
        self._context = ConversationContext(metadata=dict(metadata or {}))
        self._state = SessionStateMachine()
        self._pending_user: Optional[str] = None
        self._buffer: List[str] = []
        self.truncated_messages = 0

    # --- Read access ---

    @property
    def state(self) -> SessionState:
        return self._state.current

    @property
    def is_idle(self) -> bool:
        return self._state.current is SessionState.IDLE

    @property
    def history(self) -> Tuple[Message, ...]:
        return tuple(self._context.messages)

    @property
    def metadata(self) -> Dict[str, str]:
        return dict(self._context.metadata)

    @property
    def pending_text(self) -> str:
        return "".join(self._buffer)

    def __len__(self) -> int:
        return len(self._context.messages)

    def set_metadata(self, key: str, value: str) -> None:
        self._context.metadata[key] = value

    # --- Turn lifecycle ---

    def submit(self, user_text: str) -> None:
        """Idle -> Awaiting. A second submission while busy is rejected."""
        if not self.is_idle:
            raise SessionBusyError(
                f"Session {self.session_id} is {self.state.value}; "
                "wait for the current turn to finish"
            )
        self._state.transition_to(SessionState.AWAITING)
        self._pending_user = user_text
        self._buffer = []

    def start_streaming(self) -> None:
        self._state.transition_to(SessionState.STREAMING)
        self._buffer = []

    def append_chunk(self, text: str) -> None:
        """Buffer a streamed chunk; nothing reaches history until complete()."""
        if self.state is not SessionState.STREAMING:
            raise ValueError(f"Cannot append chunks while {self.state.value}")
        self._buffer.append(text)

    def complete(self, assistant_text: Optional[str] = None) -> Message:
        """
        Commit the turn: the user message and one assistant message.

        When streaming, the buffered chunks form the assistant text unless
        ``assistant_text`` is given.
        """
        if self.state is SessionState.IDLE:
            raise ValueError("No turn in progress")
        if assistant_text is None:
            assistant_text = self.pending_text

        self._state.transition_to(SessionState.IDLE)
        user_message = Message.user(self._pending_user or "")
        assistant_message = Message.assistant(assistant_text)
        self._context.messages.append(user_message)
        self._context.messages.append(assistant_message)
        self._pending_user = None
        self._buffer = []
        self._truncate_front()
        return assistant_message

    def fail(self) -> None:
        """Terminal failure: back to Idle with nothing committed."""
        self._discard()

    def cancel(self) -> int:
        """Interrupt the turn; returns the number of discarded buffered characters."""
        discarded = len(self.pending_text)
        if not self.is_idle:
            logger.debug(
                "Session %s cancelled while %s, discarding %d chars",
                self.session_id,
                self.state.value,
                discarded,
            )
        self._discard()
        return discarded

    def clear(self) -> None:
        """Drop the whole conversation (keeps metadata). Only allowed while idle."""
        if not self.is_idle:
            raise SessionBusyError("Cannot clear the conversation while a turn is in progress")
        self._context.messages = []
        self.truncated_messages = 0

    def _discard(self) -> None:
        self._state.reset()
        self._pending_user = None
        self._buffer = []

    def _truncate_front(self) -> None:
        if self.max_messages is None:
            return
        overflow = len(self._context.messages) - self.max_messages
        if overflow > 0:
            # Whole exchanges only, so history keeps starting with a user turn.
            overflow += overflow % 2
            del self._context.messages[:overflow]
            self.truncated_messages += overflow

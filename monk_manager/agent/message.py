import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    """
    Represents a single turn in the conversation.
    Frozen: once appended to a session it is never edited.
    """

    role: Role
    content: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to a dictionary compliant with chat API specs.
        Removes internal fields like timestamp.
        """
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(Role.ASSISTANT, content)

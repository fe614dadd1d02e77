"""Chat message model and request body parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from errors import MalformedRequestError

ROLES = frozenset({"user", "assistant", "system"})


@dataclass(frozen=True)
class ChatMessage:
    """One turn of a conversation."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to the OpenAI-style message dictionary."""
        return {"role": self.role, "content": self.content}


def parse_messages(body: Any) -> List[ChatMessage]:
    """
    Validate a decoded `/chat` body and return its messages in order.

    Raises MalformedRequestError when the body is not an object, `messages`
    is missing, not a non-empty array, or any entry has an unknown role or
    non-string content.
    """
    if not isinstance(body, dict):
        raise MalformedRequestError("Invalid JSON body: expected object")

    messages = body.get("messages")
    if not isinstance(messages, list):
        raise MalformedRequestError("Invalid request: 'messages' field must be an array")
    if not messages:
        raise MalformedRequestError("Invalid request: 'messages' array cannot be empty")

    out: List[ChatMessage] = []
    for i, m in enumerate(messages):
        if not isinstance(m, dict):
            raise MalformedRequestError(f"Invalid request: messages[{i}] must be an object")
        role = m.get("role")
        if role not in ROLES:
            raise MalformedRequestError(
                f"Invalid request: messages[{i}].role must be one of {sorted(ROLES)}"
            )
        content = m.get("content")
        if not isinstance(content, str):
            raise MalformedRequestError(f"Invalid request: messages[{i}].content must be a string")
        out.append(ChatMessage(role=role, content=content))
    return out

"""
Clarification dialogue messages.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ClarificationMessage:
    """One displayable message in a clarification thread."""

    role: MessageRole
    content: str
    created_at: Optional[str] = None

    @classmethod
    def from_stored(cls, data: dict) -> "ClarificationMessage":
        """
        Build from a stored history entry ({role, messageText, createdAt}).

        Assistant messages are stored as JSON with a "notes" field; user
        messages are plain text.
        """
        role = MessageRole(data.get("role", "user"))
        text = data.get("messageText") or ""
        if role is MessageRole.ASSISTANT:
            text = unwrap_assistant_text(text)
        return cls(role=role, content=text, created_at=data.get("createdAt"))


def unwrap_assistant_text(raw: str) -> str:
    """
    Extract the displayable "notes" text from a stored assistant message.

    Returns an empty string when the message is not the expected JSON.
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("Unreadable assistant message: %s", e)
        return ""

    if not isinstance(payload, dict):
        logger.warning("Assistant message is not a JSON object")
        return ""

    notes = payload.get("notes")
    return notes if isinstance(notes, str) else ""

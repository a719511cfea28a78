"""
Chat Data Model

Defines the persisted shapes of a chat conversation:
- Source: one retrieved reference shown under an assistant reply
- Message: a single turn (user, assistant or system)
- ChatSession: one conversation thread owned by one user

All three serialize to plain dicts with snake_case keys. That dict form is
both the storage format and the wire format returned to the browser.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 30

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = (ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT)


def now() -> int:
    """Current time in whole seconds."""
    return int(time.time())


def generate_session_id() -> str:
    """Generate a unique, opaque session ID."""
    return f"chat_{uuid.uuid4().hex[:16]}"


def derive_title(content: str) -> str:
    """
    Derive a session title from the first user message.

    The first 30 characters are kept; an ellipsis is appended only when
    something was cut off.
    """
    if len(content) > TITLE_MAX_LENGTH:
        return content[:TITLE_MAX_LENGTH] + "..."
    return content


@dataclass
class Source:
    """A retrieved reference attached to an assistant reply."""
    url: str
    title: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "title": self.title, "score": self.score}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Source":
        return cls(
            url=data.get("url", "#"),
            title=data.get("title", ""),
            score=float(data.get("score", 0.0)),
        )


@dataclass
class Message:
    """
    Represents a single message in a chat session.

    Attributes:
        role: "user", "assistant", or "system"
        content: The text shown to the user
        augmented_content: What was actually sent to the LLM (user messages only)
        sources: Retrieved references (assistant messages only)
        timestamp: When the message was persisted (seconds)
    """
    role: str
    content: str
    augmented_content: Optional[str] = None
    sources: Optional[List[Source]] = None
    timestamp: int = field(default_factory=now)

    def llm_content(self) -> str:
        """Content to replay into an LLM call."""
        if self.augmented_content is not None:
            return self.augmented_content
        return self.content

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting absent optional fields."""
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.augmented_content is not None:
            data["augmented_content"] = self.augmented_content
        if self.sources is not None:
            data["sources"] = [s.to_dict() for s in self.sources]
        data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Create from dictionary."""
        sources = data.get("sources")
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            augmented_content=data.get("augmented_content"),
            sources=[Source.from_dict(s) for s in sources] if sources is not None else None,
            timestamp=int(data.get("timestamp", now())),
        )

    def __str__(self) -> str:
        return f"{self.role}: {self.content}"


@dataclass
class ChatSession:
    """One conversation thread with an append-only message history."""
    id: str
    title: str = DEFAULT_TITLE
    created_at: int = field(default_factory=now)
    messages: List[Message] = field(default_factory=list)

    @classmethod
    def new(cls, session_id: Optional[str] = None) -> "ChatSession":
        return cls(id=session_id or generate_session_id())

    def append(self, message: Message) -> None:
        """
        Append a message.

        The title is taken from the message only when it is the first one in
        the session and was written by the user; it never changes afterwards.
        """
        self.messages.append(message)
        if len(self.messages) == 1 and message.role == ROLE_USER:
            self.title = derive_title(message.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatSession":
        return cls(
            id=data["id"],
            title=data.get("title") or DEFAULT_TITLE,
            created_at=int(data.get("created_at", 0)),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
        )

    def __len__(self) -> int:
        return len(self.messages)

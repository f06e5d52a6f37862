"""Session and message records exchanged between the engine and the store.

Lifecycle:
    - `Session`: created on the first message (or explicitly), touched on every
      turn, moved to `archived`/`deleted` by store operations only. Never
      hard-deleted.
    - `Message`: immutable after persistence except for `attachments`, which are
      append-only.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4


SESSION_ACTIVE = "active"
SESSION_ARCHIVED = "archived"
SESSION_DELETED = "deleted"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

DEFAULT_SESSION_TITLE = "New Conversation"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


@dataclass
class Attachment:
    """Non-text artifact linked to an assistant message."""

    url: str
    filename: str
    type: str = "image"
    original_prompt: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    owner_id: str
    title: str = DEFAULT_SESSION_TITLE
    status: str = SESSION_ACTIVE
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    last_activity_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.last_activity_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["last_activity_at"] = self.last_activity_at.isoformat()
        return data


@dataclass
class Message:
    session_id: str
    role: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    attachments: list[Attachment] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def user(cls, session_id: str, content: str) -> "Message":
        return cls(session_id=session_id, role=ROLE_USER, content=content)

    @classmethod
    def assistant(cls, session_id, content, metadata=None, attachments=None) -> "Message":
        return cls(
            session_id=session_id,
            role=ROLE_ASSISTANT,
            content=content,
            metadata=dict(metadata or {}),
            attachments=list(attachments or []),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class ExchangeResult:
    """Structured outcome of one conversation turn."""

    user_message: Message
    assistant_message: Message
    session: Session

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_message": self.user_message.to_dict(),
            "assistant_message": self.assistant_message.to_dict(),
            "session": self.session.to_dict(),
        }

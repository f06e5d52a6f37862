"""Session/message persistence boundary.

Purpose of this abstraction:
    The engine depends only on `MessageStore`, the contract of the persistence
    collaborator (create / find-by-id / find-by-session-paginated / field-level update).
    Turns advance session activity through `touch_session`, which never
    writes back a stale copy of the other session fields.
    Production deployments plug an ORM-backed implementation in here.

`InMemoryStore`:
    Thread-safe process-local implementation used by the CLI, the HTTP adapter
    defaults and the tests. When `snapshot_path` is set the whole state is
    mirrored to a JSON file after every write and reloaded on start, so an
    interrupted process keeps its conversations.

Pagination:
    `list_messages` pages from the newest message backwards (page 1 holds the
    most recent `limit` messages); each page is returned in chronological order.

Immutability:
    Records are copied on the way in and out, so callers can never mutate
    persisted state except through store operations.
"""

import copy
import json
import logging
import os
import threading
from datetime import datetime
from typing import Protocol

from chatcore.memory.models import SESSION_DELETED, Attachment, Message, Session


logger = logging.getLogger(__name__)


class MessageStore(Protocol):
    """Persistence contract consumed by `chatcore.core.engine`."""

    def create_session(self, session: Session) -> Session:
        ...

    def get_session(self, session_id: str) -> Session | None:
        ...

    def touch_session(self, session_id: str) -> Session:
        ...

    def patch_session(self, session_id: str, **changes) -> Session:
        ...

    def list_sessions(self, owner_id: str, page: int = 1, limit: int = 20) -> tuple[list[Session], int]:
        ...

    def create_message(self, message: Message) -> Message:
        ...

    def get_message(self, message_id: str) -> Message | None:
        ...

    def list_messages(self, session_id: str, page: int = 1, limit: int = 50) -> tuple[list[Message], int]:
        ...

    def add_attachment(self, message_id: str, attachment: Attachment) -> Message:
        ...


class InMemoryStore:
    """Lock-guarded dictionary store with optional JSON mirroring."""

    def __init__(self, snapshot_path: str | None = None):
        self._sessions: dict[str, Session] = {}
        self._messages: dict[str, Message] = {}
        self._lock = threading.Lock()
        self.snapshot_path = snapshot_path

        if snapshot_path and os.path.exists(snapshot_path):
            self._load_snapshot()

    # =========================================================
    # SESSIONS
    # =========================================================

    def create_session(self, session: Session) -> Session:
        with self._lock:
            self._sessions[session.id] = copy.deepcopy(session)
            self._write_snapshot()
        return copy.deepcopy(session)

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session else None

    def touch_session(self, session_id: str) -> Session:
        """Advance `last_activity_at` only; every other field keeps its stored value."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise KeyError(session_id)
            session.touch()
            self._write_snapshot()
            return copy.deepcopy(session)

    def patch_session(self, session_id: str, **changes) -> Session:
        """Set the named fields on the stored record and return the result."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise KeyError(session_id)
            for name, value in changes.items():
                if not hasattr(session, name):
                    raise AttributeError(name)
                setattr(session, name, copy.deepcopy(value))
            self._write_snapshot()
            return copy.deepcopy(session)

    def list_sessions(self, owner_id, page=1, limit=20):
        """Return `(sessions, total)` for one owner, most recently active first.

        Soft-deleted sessions are never listed.
        """
        with self._lock:
            owned = [
                s for s in self._sessions.values()
                if s.owner_id == owner_id
                and s.status != SESSION_DELETED
            ]

        owned.sort(key=lambda s: s.last_activity_at, reverse=True)
        start = max(0, (page - 1) * limit)
        return [copy.deepcopy(s) for s in owned[start:start + limit]], len(owned)

    # =========================================================
    # MESSAGES
    # =========================================================

    def create_message(self, message: Message) -> Message:
        with self._lock:
            if message.session_id not in self._sessions:
                raise KeyError(message.session_id)
            self._messages[message.id] = copy.deepcopy(message)
            self._write_snapshot()
        return copy.deepcopy(message)

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            message = self._messages.get(message_id)
            return copy.deepcopy(message) if message else None

    def list_messages(self, session_id, page=1, limit=50):
        with self._lock:
            in_session = [m for m in self._messages.values() if m.session_id == session_id]

        in_session.sort(key=lambda m: m.created_at)
        total = len(in_session)

        end = total - max(0, (page - 1) * limit)
        start = max(0, end - limit)
        window = in_session[start:end] if end > 0 else []

        return [copy.deepcopy(m) for m in window], total

    def add_attachment(self, message_id: str, attachment: Attachment) -> Message:
        """Append one attachment; attachments are never replaced or removed."""
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                raise KeyError(message_id)
            message.attachments.append(copy.deepcopy(attachment))
            self._write_snapshot()
            return copy.deepcopy(message)

    # =========================================================
    # SNAPSHOT MIRROR
    # =========================================================

    def _write_snapshot(self) -> None:
        # Caller holds self._lock.
        if not self.snapshot_path:
            return

        data = {
            "sessions": [s.to_dict() for s in self._sessions.values()],
            "messages": [m.to_dict() for m in self._messages.values()],
        }

        try:
            with open(self.snapshot_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError:
            logger.exception("Failed to write store snapshot to %s", self.snapshot_path)

    def _load_snapshot(self) -> None:
        with open(self.snapshot_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        for raw in data.get("sessions", []):
            raw = dict(raw)
            raw["created_at"] = datetime.fromisoformat(raw["created_at"])
            raw["last_activity_at"] = datetime.fromisoformat(raw["last_activity_at"])
            session = Session(**raw)
            self._sessions[session.id] = session

        for raw in data.get("messages", []):
            raw = dict(raw)
            raw["created_at"] = datetime.fromisoformat(raw["created_at"])
            raw["attachments"] = [Attachment(**a) for a in raw.get("attachments", [])]
            message = Message(**raw)
            self._messages[message.id] = message

        logger.info(
            "Store snapshot loaded from %s: %d sessions, %d messages",
            self.snapshot_path,
            len(self._sessions),
            len(self._messages),
        )

"""Session Registry: long-lived, caller-visible conversation history.

Separate from the scratch conversation a single tool loop builds. Entries are
created on first reference, trimmed oldest-first to ``max_history`` after every
mutation, and only removed by an explicit ``clear``. Clearing never touches
persisted analytics.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable

from mm_agent.config import DEFAULT_MAX_HISTORY
from mm_agent.models import Message, now_ms

logger = logging.getLogger(__name__)


@dataclass
class Session:
    session_id: str
    agent_key: str | None = None
    messages: list[Message] = field(default_factory=list)
    max_history: int = DEFAULT_MAX_HISTORY
    started_at: int = field(default_factory=now_ms)
    completed_at: int | None = None


class SessionRegistry:
    """Thread-safe map of session id → Session.

    Sessions are independent, so one registry-wide lock around short map and
    list operations is enough; concurrent loops on the *same* session id are
    not supported and may interleave their history.
    """

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY) -> None:
        if max_history <= 0:
            raise ValueError("max_history must be positive")
        self.max_history = max_history
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Session:
        """Return the session, creating an empty one if absent."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(session_id=session_id, max_history=self.max_history)
                self._sessions[session_id] = session
            return session

    def peek(self, session_id: str) -> Session | None:
        """Return the session without creating it."""
        with self._lock:
            return self._sessions.get(session_id)

    def append(
        self,
        session_id: str,
        messages: Iterable[Message],
        *,
        agent_key: str | None = None,
        completed: bool = False,
    ) -> Session:
        """Append messages to a session's history, then trim."""
        session = self.get(session_id)
        with self._lock:
            session.messages.extend(messages)
            if agent_key is not None:
                session.agent_key = agent_key
            if completed:
                session.completed_at = now_ms()
            self._trim_locked(session)
        return session

    def trim(self, session: Session) -> None:
        """Keep only the most recent ``max_history`` messages."""
        with self._lock:
            self._trim_locked(session)

    @staticmethod
    def _trim_locked(session: Session) -> None:
        overflow = len(session.messages) - session.max_history
        if overflow > 0:
            del session.messages[:overflow]

    def clear(self, session_id: str) -> bool:
        """Remove a session entirely. Returns whether an entry existed."""
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Conversation history cleared for session: %s", session_id)
        return removed

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

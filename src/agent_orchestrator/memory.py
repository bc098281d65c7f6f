"""
Session memory for the agent orchestrator.

Short-term memory is the per-session message list; long-term memory is the
conversation record kept by a ``SessionStore``. Only an in-memory store ships
here; hosts plug in a persistent one through the same contract.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Literal

from pydantic import BaseModel, Field

from .exceptions import ConversationNotFoundError


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionMessage(BaseModel):
    """One message in a session or conversation."""
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: Dict[str, Any] = {}


class ConversationRecord(BaseModel):
    """A persisted conversation."""
    id: Optional[str] = None
    user_id: str
    organization_id: str
    project_id: Optional[str] = None
    messages: List[SessionMessage] = []
    title: Optional[str] = None
    tags: List[str] = []
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class SessionStore(ABC):
    """Storage contract for session messages and conversation records."""

    @abstractmethod
    async def append_message(self, session_id: str, message: SessionMessage) -> None:
        pass

    @abstractmethod
    async def get_messages(self, session_id: str) -> List[SessionMessage]:
        pass

    @abstractmethod
    async def save_conversation(self, record: ConversationRecord) -> str:
        """Store a new conversation and return its id."""
        pass

    @abstractmethod
    async def update_conversation(self, conversation_id: str, new_messages: List[SessionMessage]) -> None:
        """Append messages; raises ``ConversationNotFoundError`` for an unknown id."""
        pass

    @abstractmethod
    async def load_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        pass

    @abstractmethod
    async def get_recent_conversations(self, user_id: str, organization_id: str,
                                       limit: int = 10) -> List[ConversationRecord]:
        pass

    @abstractmethod
    async def clear_session(self, session_id: str) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Process-local store; contents are lost on restart."""

    def __init__(self):
        self._sessions: Dict[str, List[SessionMessage]] = {}
        self._conversations: Dict[str, ConversationRecord] = {}
        self._lock = threading.Lock()

    async def append_message(self, session_id: str, message: SessionMessage) -> None:
        with self._lock:
            self._sessions.setdefault(session_id, []).append(message)

    async def get_messages(self, session_id: str) -> List[SessionMessage]:
        with self._lock:
            return list(self._sessions.get(session_id, []))

    async def save_conversation(self, record: ConversationRecord) -> str:
        conversation_id = uuid.uuid4().hex
        now = _now()
        stored = record.model_copy(update={"id": conversation_id, "created_at": now, "updated_at": now}, deep=True)
        with self._lock:
            self._conversations[conversation_id] = stored
        return conversation_id

    async def update_conversation(self, conversation_id: str, new_messages: List[SessionMessage]) -> None:
        with self._lock:
            record = self._conversations.get(conversation_id)
            if record is None:
                raise ConversationNotFoundError(conversation_id)
            self._conversations[conversation_id] = record.model_copy(update={
                "messages": [*record.messages, *new_messages],
                "updated_at": _now()
            })

    async def load_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            record = self._conversations.get(conversation_id)
            return record.model_copy(deep=True) if record else None

    async def get_recent_conversations(self, user_id: str, organization_id: str,
                                       limit: int = 10) -> List[ConversationRecord]:
        with self._lock:
            matching = [
                record for record in self._conversations.values()
                if record.user_id == user_id and record.organization_id == organization_id
            ]
        matching.sort(key=lambda record: record.updated_at, reverse=True)
        return matching[:limit]

    async def clear_session(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


class SessionMemory:
    """Records the messages of a request and persists the conversation."""

    TITLE_LENGTH = 50

    def __init__(self, store: SessionStore, logger: logging.Logger):
        self.store = store
        self.logger = logger

    async def record_user_message(self, session_id: str, content: str,
                                  context: Optional[Dict[str, Any]] = None) -> None:
        message = SessionMessage(role="user", content=content, metadata={"context": context or {}})
        await self.store.append_message(session_id, message)

    async def record_assistant_message(self, session_id: str, content: str, agent: str,
                                       tools_used: Optional[List[str]] = None) -> None:
        message = SessionMessage(role="assistant", content=content,
                                 metadata={"agent": agent, "tools_used": list(tools_used or [])})
        await self.store.append_message(session_id, message)

    async def history(self, session_id: str) -> List[SessionMessage]:
        """Messages recorded so far for a session, oldest first."""
        return await self.store.get_messages(session_id)

    async def persist(self, session_id: str, conversation_id: Optional[str], user_id: str,
                      organization_id: str, project_id: Optional[str], first_message: str,
                      agent: str) -> str:
        """Create or extend the conversation record; returns its id."""
        messages = await self.store.get_messages(session_id)

        if conversation_id:
            await self.store.update_conversation(conversation_id, messages[-2:])
            self.logger.info(f"Updated conversation {conversation_id} with {len(messages[-2:])} messages")
            return conversation_id

        record = ConversationRecord(
            user_id=user_id,
            organization_id=organization_id,
            project_id=project_id,
            messages=messages,
            title=first_message[:self.TITLE_LENGTH],
            tags=[agent]
        )
        new_id = await self.store.save_conversation(record)
        self.logger.info(f"Saved conversation {new_id}")
        return new_id

    async def clear(self, session_id: str) -> None:
        await self.store.clear_session(session_id)

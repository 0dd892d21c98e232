"""
Chat message store.

Bounded, thread-safe history of listener chat messages:
- FIFO eviction when capacity is reached
- Seeded with a system welcome message
- Messages validated before they are stored
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from radiobox.errors import ChatError

logger = logging.getLogger(__name__)

SYSTEM_USER_NAME = "Sistema"
WELCOME_MESSAGE = "Welcome to the radio chat! Be respectful and have fun."


@dataclass(frozen=True)
class ChatUser:
    """Message author."""
    id: str
    name: str
    avatar: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ChatUser":
        """
        Build a user from a client payload.

        Raises:
            ChatError: If the payload has no usable name
        """
        if not isinstance(data, Mapping):
            raise ChatError("User information is required")
        name = str(data.get("name") or "").strip()
        if not name:
            raise ChatError("User name is required")
        user_id = str(data.get("id") or "").strip() or uuid.uuid4().hex
        avatar = data.get("avatar")
        return cls(id=user_id, name=name, avatar=str(avatar) if avatar else None)

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "name": self.name}
        if self.avatar:
            data["avatar"] = self.avatar
        return data


@dataclass(frozen=True)
class ChatMessage:
    """A stored chat message."""
    id: str
    content: str
    user: ChatUser
    timestamp: float = field(default_factory=time.time)
    is_system: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "user": self.user.to_dict(),
            "timestamp": int(self.timestamp * 1000),
            "isSystem": self.is_system,
        }


class ChatService:
    """Thread-safe bounded chat history."""

    def __init__(self, capacity: int = 100, recent_limit: int = 50, max_length: int = 500):
        """
        Args:
            capacity: Maximum number of messages kept
            recent_limit: Default number of messages returned to new clients
            max_length: Longest accepted message (characters, after trimming)
        """
        self.capacity = capacity
        self.recent_limit = recent_limit
        self.max_length = max_length
        self._messages: deque[ChatMessage] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._messages.append(ChatMessage(
            id=uuid.uuid4().hex,
            content=WELCOME_MESSAGE,
            user=ChatUser(id="system", name=SYSTEM_USER_NAME),
            is_system=True,
        ))

    def save_message(self, user: ChatUser, content: str) -> ChatMessage:
        """
        Validate and store a message.

        Args:
            user: Author
            content: Message text (trimmed before storing)

        Returns:
            The stored ChatMessage

        Raises:
            ChatError: Empty content, missing user name, or content too long
        """
        if user is None or not user.name.strip():
            raise ChatError("User name is required")
        text = (content or "").strip() if isinstance(content, str) else ""
        if not text:
            raise ChatError("Message content is required")
        if len(text) > self.max_length:
            raise ChatError(f"Message too long (max {self.max_length} characters)")

        message = ChatMessage(id=uuid.uuid4().hex, content=text, user=user)
        with self._lock:
            self._messages.append(message)
        logger.debug(f"[CHAT] {user.name}: {text}")
        return message

    def get_recent_messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        """Newest `limit` messages (default recent_limit), oldest first."""
        if limit is None:
            limit = self.recent_limit
        if limit <= 0:
            return []
        with self._lock:
            messages = list(self._messages)
        return messages[-limit:]

    def size(self) -> int:
        with self._lock:
            return len(self._messages)

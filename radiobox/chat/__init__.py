"""
Listener chat for radiobox.

- ChatService: bounded message history
- ChatBroadcaster: non-blocking fan-out to connected clients
"""

from radiobox.chat.chat_broadcaster import ChatBroadcaster, Subscription
from radiobox.chat.chat_service import ChatMessage, ChatService, ChatUser

__all__ = [
    "ChatBroadcaster",
    "ChatMessage",
    "ChatService",
    "ChatUser",
    "Subscription",
]

"""Models package initialization"""
from app.models.user import User
from app.models.chat import Chat, ChatParticipant
from app.models.message import (
    Message,
    MessageAttachment,
    MessageRead,
    MessageReaction,
    MessageEdit,
)

__all__ = [
    "User",
    "Chat",
    "ChatParticipant",
    "Message",
    "MessageAttachment",
    "MessageRead",
    "MessageReaction",
    "MessageEdit",
]

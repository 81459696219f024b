"""
App package initialization - SQLAlchemy models
"""
from app.database import Base
from app.models.user import User
from app.models.chat import Chat, ChatParticipant
from app.models.message import Message

__all__ = ["Base", "User", "Chat", "ChatParticipant", "Message"]

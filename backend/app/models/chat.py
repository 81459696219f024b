"""
Chat model - a direct or group conversation and its participants
"""
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid, UniqueConstraint, Integer
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.message import utcnow


class Chat(Base):
    """A conversation that messages are posted to"""

    __tablename__ = "chats"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chat_type = Column(String(20), nullable=False, default="direct")  # direct, group
    name = Column(String(100), nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)

    # Denormalised pointer to the newest message; not a foreign key to keep chats/messages acyclic
    last_message_id = Column(Uuid(as_uuid=True), nullable=True)
    last_activity = Column(DateTime, default=utcnow, index=True)

    created_at = Column(DateTime, default=utcnow)

    # Relationships
    participants = relationship(
        "ChatParticipant", back_populates="chat", cascade="all, delete-orphan", lazy="selectin",
    )
    messages = relationship("Message", back_populates="chat")

    @property
    def participant_ids(self):
        return [p.user_id for p in self.participants]


class ChatParticipant(Base):
    """Membership of a user in a chat"""

    __tablename__ = "chat_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(Uuid(as_uuid=True), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime, default=utcnow)

    chat = relationship("Chat", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("chat_id", "user_id", name="uq_chat_participant"),
    )

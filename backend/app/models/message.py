"""
Message model - chat message with receipts, reactions, edits and soft deletion
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, Text, Integer, Boolean, ForeignKey, JSON, Uuid,
    Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from app.database import Base


MESSAGE_TYPES = ("text", "image", "file", "system", "audio", "video")
ATTACHMENT_TYPES = ("image", "file", "audio", "video")
DELIVERY_STATUSES = ("sent", "delivered", "failed")
SYSTEM_ACTIONS = (
    "user_joined", "user_left", "chat_created", "chat_updated", "user_added", "user_removed",
)
PRIORITIES = ("normal", "high", "urgent")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Message(Base):
    """A single message posted to a chat"""

    __tablename__ = "messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    chat_id = Column(Uuid(as_uuid=True), ForeignKey("chats.id"), nullable=False, index=True)
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Message content
    content = Column(Text, nullable=False, default="")
    content_search = Column(Text, nullable=False, default="")  # casefolded copy of content for search
    message_type = Column(String(20), nullable=False, default="text")  # text, image, file, system, audio, video

    # Delivery
    status = Column(String(20), nullable=False, default="sent")  # sent, delivered, failed
    priority = Column(String(20), nullable=False, default="normal")  # normal, high, urgent

    # Threading
    reply_to_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id"), nullable=True, index=True)
    forwarded_from_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id"), nullable=True)
    forwarded_from_sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    # Editing
    is_edited = Column(Boolean, nullable=False, default=False)

    # Soft deletion
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    # System message data (join/leave notifications, etc.)
    system_action = Column(String(30), nullable=True)
    system_target_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    system_metadata = Column(JSON, nullable=True)

    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    temp_id = Column(String(100), nullable=True)  # client-side optimistic update id

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id])
    forwarded_from_sender = relationship("User", foreign_keys=[forwarded_from_sender_id])
    reply_to = relationship("Message", remote_side=[id], foreign_keys=[reply_to_id])
    forwarded_from = relationship("Message", remote_side=[id], foreign_keys=[forwarded_from_id])

    attachments = relationship(
        "MessageAttachment", back_populates="message", order_by="MessageAttachment.position",
        cascade="all, delete-orphan", lazy="selectin",
    )
    read_by = relationship(
        "MessageRead", back_populates="message", order_by="MessageRead.id",
        cascade="all, delete-orphan", lazy="selectin",
    )
    reactions = relationship(
        "MessageReaction", back_populates="message", order_by="MessageReaction.id",
        cascade="all, delete-orphan", lazy="selectin",
    )
    edit_history = relationship(
        "MessageEdit", back_populates="message", order_by="MessageEdit.id",
        cascade="all, delete-orphan", lazy="selectin",
    )

    __table_args__ = (
        Index("ix_messages_chat_timestamp", "chat_id", "timestamp"),
        Index("ix_messages_sender_timestamp", "sender_id", "timestamp"),
        Index("ix_messages_deleted_timestamp", "is_deleted", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Message {self.id} in chat {self.chat_id} by {self.sender_id}>"


class MessageAttachment(Base):
    """File or media attached to a message, kept in upload order"""

    __tablename__ = "message_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    type = Column(String(20), nullable=False)  # image, file, audio, video
    url = Column(Text, nullable=True)
    filename = Column(String(255), nullable=True)
    original_name = Column(String(255), nullable=True)
    size = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    uploaded_at = Column(DateTime, default=utcnow)

    message = relationship("Message", back_populates="attachments")


class MessageRead(Base):
    """Read receipt: one per (message, user)"""

    __tablename__ = "message_reads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    read_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", back_populates="read_by")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read_user"),
    )


class MessageReaction(Base):
    """Emoji reaction: a user holds each emoji at most once per message"""

    __tablename__ = "message_reactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    emoji = Column(String(50), nullable=False)
    reacted_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reaction_user_emoji"),
    )


class MessageEdit(Base):
    """Prior content of an edited message; rows are only ever appended"""

    __tablename__ = "message_edits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    edited_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", back_populates="edit_history")

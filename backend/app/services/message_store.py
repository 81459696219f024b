"""
Message Store
Validation, state transitions and chat-scoped queries for persisted messages
"""
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from app.config import Settings, get_settings
from app.errors import (
    InvalidStatusTransition,
    NotAParticipant,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.models import (
    Chat,
    Message,
    MessageAttachment,
    MessageEdit,
    MessageRead,
    MessageReaction,
    User,
)
from app.models.message import DELIVERY_STATUSES, utcnow
from app.schemas.message import MediaMessageCreate, MessageCreate, SystemMessageCreate
from app.services.events import MessageEvent, Notifier
from app.services.participants import ParticipantDirectory, SqlParticipantDirectory
from app.services.validation import (
    fold_for_search,
    normalize_content,
    validate_content,
    validate_emoji,
    validate_pagination,
    validate_system_action,
)

logger = logging.getLogger(__name__)


# Delivery status moves forward only; a failed send may be retried
STATUS_TRANSITIONS = {
    "sent": {"delivered", "failed"},
    "failed": {"sent"},
    "delivered": set(),
}

_SEARCH_TOKEN = re.compile(r"\w+", re.UNICODE)


@dataclass
class ReadStatus:
    """Read progress of one message across the chat's other participants"""
    read_by_all: bool
    unread_count: int
    read_count: int


def _as_naive_utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC; aware values are converted first"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MessageStore:
    """
    Repository for chat messages

    Every mutating operation validates its input, applies its change in a
    single transaction, commits, and only then hands a MessageEvent to the
    notifier. Read queries never return soft-deleted messages, except
    get_message which looks a message up by id.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        participants: Optional[ParticipantDirectory] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.notifier = notifier
        self.participants = participants or SqlParticipantDirectory(db)
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Plumbing

    @contextmanager
    def _write(self, action: str):
        """Run one all-or-nothing unit of work"""
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("%s rolled back: %s", action, exc)
            raise PersistenceError(f"{action} failed") from exc
        except Exception:
            self.db.rollback()
            raise

    @contextmanager
    def _read(self, action: str):
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("%s query failed: %s", action, exc)
            raise PersistenceError(f"{action} failed") from exc

    def _emit(self, kind: str, message: Message, user_id: Optional[UUID] = None, **payload) -> None:
        if self.notifier is None:
            return
        event = MessageEvent(
            kind=kind,
            message_id=message.id,
            chat_id=message.chat_id,
            user_id=user_id,
            payload=payload,
        )
        try:
            self.notifier(event)
        except Exception:
            # The write is already durable; a broken subscriber must not undo it
            logger.exception("Notifier failed for %s event on message %s", kind, message.id)

    def _load_for_update(self, message_id: UUID) -> Message:
        stmt = (
            select(Message)
            .where(Message.id == message_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        message = self.db.scalars(stmt).first()
        if message is None:
            raise NotFoundError("message", message_id)
        return message

    def _check_member(self, chat_id: UUID, user_id: UUID) -> None:
        if user_id not in self.participants.participants(chat_id):
            raise NotAParticipant(chat_id, user_id)

    def _visible_in_chat(self, chat_id: UUID):
        return select(Message).where(
            Message.chat_id == chat_id,
            Message.is_deleted.is_(False),
        )

    # ------------------------------------------------------------------
    # Creation

    def send(self, chat_id: UUID, sender_id: UUID, payload: MessageCreate) -> Message:
        """
        Validate and persist a new message with status 'sent'

        The sender must belong to the chat and starts out as a reader of
        their own message.

        Raises:
            ContentRequired, ContentTooLong, SystemActionRequired: invalid payload
            NotFoundError: chat, sender or reply target does not exist
            NotAParticipant: the sender is not a member of the chat
            PersistenceError: the write failed
        """
        content = normalize_content(payload.content)
        validate_content(content, payload.message_type)

        system_data = payload.system_data if isinstance(payload, SystemMessageCreate) else None
        validate_system_action(payload.message_type, system_data.action if system_data else None)

        now = self.clock()
        timestamp = _as_naive_utc(payload.timestamp) if payload.timestamp else now

        with self._write("send"):
            chat = self.db.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError("chat", chat_id)
            if self.db.get(User, sender_id) is None:
                raise NotFoundError("user", sender_id)
            self._check_member(chat_id, sender_id)
            if payload.reply_to_id is not None:
                reply_to = self.db.get(Message, payload.reply_to_id)
                if reply_to is None or reply_to.chat_id != chat_id:
                    raise NotFoundError("message", payload.reply_to_id)

            duplicate = None
            if payload.timestamp is None:
                duplicate = self._find_recent_duplicate(chat_id, sender_id, payload, content, now)

            if duplicate is None:
                message = Message(
                    chat_id=chat_id,
                    sender_id=sender_id,
                    content=content,
                    content_search=fold_for_search(content),
                    message_type=payload.message_type,
                    status="sent",
                    priority=payload.priority,
                    reply_to_id=payload.reply_to_id,
                    temp_id=payload.temp_id,
                    timestamp=timestamp,
                )
                if system_data is not None:
                    message.system_action = system_data.action
                    message.system_target_user_id = system_data.target_user_id
                    message.system_metadata = system_data.metadata
                if isinstance(payload, MediaMessageCreate):
                    for position, attachment in enumerate(payload.attachments):
                        message.attachments.append(MessageAttachment(
                            position=position,
                            type=attachment.type,
                            url=attachment.url,
                            filename=attachment.filename,
                            original_name=attachment.original_name,
                            size=attachment.size,
                            mime_type=attachment.mime_type,
                            uploaded_at=_as_naive_utc(attachment.uploaded_at) if attachment.uploaded_at else now,
                        ))
                message.read_by.append(MessageRead(user_id=sender_id, read_at=now))
                self.db.add(message)
                self.db.flush()

                # Backfilled messages older than the current last one leave the chat pointer alone
                last = self.db.get(Message, chat.last_message_id) if chat.last_message_id else None
                if last is None or timestamp >= last.timestamp:
                    chat.last_message_id = message.id
                    chat.last_activity = timestamp

        if duplicate is not None:
            logger.info("Duplicate send suppressed in chat %s by %s", chat_id, sender_id)
            return duplicate

        logger.info("Message %s sent in chat %s by %s", message.id, chat_id, sender_id)
        self._emit("sent", message, sender_id, temp_id=message.temp_id)
        return message

    def _find_recent_duplicate(
        self, chat_id: UUID, sender_id: UUID, payload: MessageCreate, content: str, now: datetime,
    ) -> Optional[Message]:
        """
        The sender's identical message from strictly less than the window ago

        Identical means same content, type, reply target, attachments and
        system action; anything else is a new message.
        """
        window = self.settings.duplicate_send_window_seconds
        if window <= 0 or not content:
            return None
        stmt = (
            self._visible_in_chat(chat_id)
            .where(
                Message.sender_id == sender_id,
                Message.content == content,
                Message.message_type == payload.message_type,
                Message.reply_to_id == payload.reply_to_id,
                Message.timestamp > now - timedelta(seconds=window),
            )
            .order_by(Message.timestamp.desc())
            .limit(1)
        )
        candidate = self.db.scalars(stmt).first()
        if candidate is None:
            return None

        attachments = payload.attachments if isinstance(payload, MediaMessageCreate) else []
        if [(a.type, a.url, a.filename) for a in candidate.attachments] != [
            (a.type, a.url, a.filename) for a in attachments
        ]:
            return None
        if isinstance(payload, SystemMessageCreate):
            action = (payload.system_data.action, payload.system_data.target_user_id)
            if (candidate.system_action, candidate.system_target_user_id) != action:
                return None
        return candidate

    def forward(self, message_id: UUID, target_chat_id: UUID, sender_id: UUID) -> Message:
        """
        Copy a message into another chat, remembering where it came from

        The forwarding user must belong to both the source and the target chat.
        """
        now = self.clock()
        with self._write("forward"):
            original = self.db.get(Message, message_id)
            if original is None or original.is_deleted:
                raise NotFoundError("message", message_id)
            chat = self.db.get(Chat, target_chat_id)
            if chat is None:
                raise NotFoundError("chat", target_chat_id)
            if self.db.get(User, sender_id) is None:
                raise NotFoundError("user", sender_id)
            self._check_member(original.chat_id, sender_id)
            self._check_member(target_chat_id, sender_id)

            message = Message(
                chat_id=target_chat_id,
                sender_id=sender_id,
                content=original.content,
                content_search=fold_for_search(original.content),
                message_type=original.message_type,
                status="sent",
                priority=original.priority,
                system_action=original.system_action,
                system_target_user_id=original.system_target_user_id,
                system_metadata=original.system_metadata,
                # A forward of a forward still credits the first author
                forwarded_from_id=original.forwarded_from_id or original.id,
                forwarded_from_sender_id=original.forwarded_from_sender_id or original.sender_id,
                timestamp=now,
            )
            for attachment in original.attachments:
                message.attachments.append(MessageAttachment(
                    position=attachment.position,
                    type=attachment.type,
                    url=attachment.url,
                    filename=attachment.filename,
                    original_name=attachment.original_name,
                    size=attachment.size,
                    mime_type=attachment.mime_type,
                    uploaded_at=attachment.uploaded_at,
                ))
            message.read_by.append(MessageRead(user_id=sender_id, read_at=now))
            self.db.add(message)
            self.db.flush()
            chat.last_message_id = message.id
            chat.last_activity = now

        logger.info("Message %s forwarded to chat %s as %s", message_id, target_chat_id, message.id)
        self._emit("sent", message, sender_id, forwarded_from=str(message.forwarded_from_id))
        return message

    # ------------------------------------------------------------------
    # Mutations

    def mark_as_read(self, message_id: UUID, user_id: UUID) -> Message:
        """Record a read receipt; repeated calls for the same user change nothing"""
        added = False
        try:
            with self._write("mark_as_read"):
                message = self._load_for_update(message_id)
                if not any(read.user_id == user_id for read in message.read_by):
                    message.read_by.append(MessageRead(user_id=user_id, read_at=self.clock()))
                    added = True
        except PersistenceError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            # Another writer recorded the same receipt first
            logger.debug("Concurrent read receipt for message %s by %s", message_id, user_id)
            return self.get_message(message_id)

        if added:
            self._emit("read", message, user_id)
        else:
            logger.debug("Message %s already read by %s", message_id, user_id)
        return message

    def add_reaction(self, message_id: UUID, user_id: UUID, emoji: str) -> Message:
        """Set the user's reaction with this emoji, replacing any earlier one"""
        emoji = validate_emoji(emoji)
        with self._write("add_reaction"):
            message = self._load_for_update(message_id)
            for reaction in [r for r in message.reactions if r.user_id == user_id and r.emoji == emoji]:
                message.reactions.remove(reaction)
            # Delete the old row before inserting its replacement
            self.db.flush()
            message.reactions.append(MessageReaction(user_id=user_id, emoji=emoji, reacted_at=self.clock()))

        self._emit("reaction_added", message, user_id, emoji=emoji)
        return message

    def remove_reaction(self, message_id: UUID, user_id: UUID, emoji: str) -> Message:
        """Drop the user's reaction with this emoji; a missing reaction is not an error"""
        emoji = validate_emoji(emoji)
        removed = False
        with self._write("remove_reaction"):
            message = self._load_for_update(message_id)
            for reaction in [r for r in message.reactions if r.user_id == user_id and r.emoji == emoji]:
                message.reactions.remove(reaction)
                removed = True

        if removed:
            self._emit("reaction_removed", message, user_id, emoji=emoji)
        else:
            logger.debug("No %s reaction by %s on message %s", emoji, user_id, message_id)
        return message

    def edit_content(self, message_id: UUID, new_content: str) -> Message:
        """
        Replace a message's content, keeping the old content in its edit history

        Raises:
            ContentRequired, ContentTooLong: new content breaks the rules for the message type
            NotFoundError: no such message
        """
        content = normalize_content(new_content)
        with self._write("edit_content"):
            message = self._load_for_update(message_id)
            validate_content(content, message.message_type)
            message.edit_history.append(MessageEdit(content=message.content or "", edited_at=self.clock()))
            message.content = content
            message.content_search = fold_for_search(content)
            message.is_edited = True

        logger.info("Message %s edited (%d prior versions)", message_id, len(message.edit_history))
        self._emit("edited", message, message.sender_id, content=content)
        return message

    def soft_delete(self, message_id: UUID, deleter_user_id: UUID) -> Message:
        """
        Hide a message from every chat query; the row stays

        Authorization is the caller's job (see can_modify). Deleting an
        already deleted message keeps the original deleter and time.
        """
        deleted = False
        with self._write("soft_delete"):
            message = self._load_for_update(message_id)
            if not message.is_deleted:
                message.is_deleted = True
                message.deleted_at = self.clock()
                message.deleted_by = deleter_user_id
                deleted = True

        if deleted:
            logger.info("Message %s deleted by %s", message_id, deleter_user_id)
            self._emit("deleted", message, deleter_user_id)
        return message

    def update_status(self, message_id: UUID, status: str) -> Message:
        """Move a message along sent -> delivered / failed"""
        if status not in DELIVERY_STATUSES:
            raise ValidationError(f"Unknown delivery status '{status}'")

        changed = False
        with self._write("update_status"):
            message = self._load_for_update(message_id)
            if message.status != status:
                if status not in STATUS_TRANSITIONS.get(message.status, set()):
                    raise InvalidStatusTransition(message.status, status)
                message.status = status
                changed = True

        if changed:
            self._emit("status_changed", message, status=status)
        return message

    @staticmethod
    def can_modify(message: Message, user_id: UUID) -> bool:
        """Only the sender may edit, delete or otherwise change their message"""
        return str(message.sender_id) == str(user_id)

    # ------------------------------------------------------------------
    # Queries

    def get_message(self, message_id: UUID) -> Message:
        """Look up a message by id, deleted or not"""
        with self._read("get_message"):
            message = self.db.get(Message, message_id)
        if message is None:
            raise NotFoundError("message", message_id)
        return message

    def require_participant(self, chat_id: UUID, user_id: UUID) -> None:
        """
        Make sure a user may read a chat

        Raises:
            NotFoundError: no such chat
            NotAParticipant: the user is not a member
        """
        with self._read("require_participant"):
            if self.db.get(Chat, chat_id) is None:
                raise NotFoundError("chat", chat_id)
            self._check_member(chat_id, user_id)

    def _unread_for(self, chat_id: UUID, user_id: UUID):
        receipt = select(MessageRead.id).where(
            MessageRead.message_id == Message.id,
            MessageRead.user_id == user_id,
        )
        return self._visible_in_chat(chat_id).where(~receipt.exists())

    def get_unread_in_chat(self, chat_id: UUID, user_id: UUID) -> List[Message]:
        """Messages in the chat the user has no read receipt for, oldest first"""
        stmt = self._unread_for(chat_id, user_id).order_by(Message.timestamp.asc(), Message.created_at.asc())
        with self._read("get_unread_in_chat"):
            return list(self.db.scalars(stmt).all())

    def count_unread_in_chat(self, chat_id: UUID, user_id: UUID) -> int:
        """Number of messages get_unread_in_chat would return, for chat list badges"""
        stmt = select(func.count()).select_from(self._unread_for(chat_id, user_id).subquery())
        with self._read("count_unread_in_chat"):
            return self.db.scalar(stmt) or 0

    def get_paginated_messages(
        self, chat_id: UUID, page: int = 1, page_size: Optional[int] = None,
    ) -> List[Message]:
        """One page of the chat, newest first, with sender and reply-to loaded"""
        if page_size is None:
            page_size = self.settings.default_page_size
        validate_pagination(page, page_size)
        page_size = min(page_size, self.settings.max_page_size)

        stmt = (
            self._visible_in_chat(chat_id)
            .options(joinedload(Message.sender), selectinload(Message.reply_to))
            .order_by(Message.timestamp.desc(), Message.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        with self._read("get_paginated_messages"):
            return list(self.db.scalars(stmt).all())

    def search_in_chat(self, chat_id: UUID, query: str, limit: Optional[int] = None) -> List[Message]:
        """
        Case-insensitive word search over message content

        A message matches when it contains any query word. Results are
        ranked by how many distinct query words they contain, then by
        recency.
        """
        if limit is None:
            limit = self.settings.default_search_limit
        if limit < 1:
            raise ValidationError(f"Search limit must be 1 or greater (got {limit})")

        terms = list(dict.fromkeys(_SEARCH_TOKEN.findall(fold_for_search(query))))
        if not terms:
            return []

        # content_search is stored casefolded, so terms are folded the same way
        score = None
        for term in terms:
            hit = case((Message.content_search.contains(term, autoescape=True), 1), else_=0)
            score = hit if score is None else score + hit

        stmt = (
            self._visible_in_chat(chat_id)
            .options(joinedload(Message.sender))
            .where(score > 0)
            .order_by(score.desc(), Message.timestamp.desc())
            .limit(limit)
        )
        with self._read("search_in_chat"):
            return list(self.db.scalars(stmt).all())

    def get_latest_in_chat(self, chat_id: UUID) -> Optional[Message]:
        stmt = (
            self._visible_in_chat(chat_id)
            .options(joinedload(Message.sender))
            .order_by(Message.timestamp.desc(), Message.created_at.desc())
            .limit(1)
        )
        with self._read("get_latest_in_chat"):
            return self.db.scalars(stmt).first()

    def get_user_messages(self, sender_id: UUID, limit: Optional[int] = None) -> List[Message]:
        """A user's own non-deleted messages across all chats, newest first"""
        if limit is None:
            limit = self.settings.default_page_size
        limit = max(1, min(limit, self.settings.max_page_size))
        stmt = (
            select(Message)
            .where(Message.sender_id == sender_id, Message.is_deleted.is_(False))
            .order_by(Message.timestamp.desc())
            .limit(limit)
        )
        with self._read("get_user_messages"):
            return list(self.db.scalars(stmt).all())

    def get_replies(self, message_id: UUID) -> List[Message]:
        message = self.get_message(message_id)
        stmt = (
            self._visible_in_chat(message.chat_id)
            .where(Message.reply_to_id == message_id)
            .order_by(Message.timestamp.asc())
        )
        with self._read("get_replies"):
            return list(self.db.scalars(stmt).all())

    def get_read_status(self, message_id: UUID) -> ReadStatus:
        """
        Compare a message's receipts with the chat roster

        The sender never needs to read their own message. A message is read
        by all once every other participant has a receipt; a chat with no
        other participants never counts as read by all.
        """
        message = self.get_message(message_id)
        recipients = self.participants.participants(message.chat_id) - {message.sender_id}
        readers = {read.user_id for read in message.read_by}
        unread = recipients - readers
        return ReadStatus(
            read_by_all=bool(recipients) and not unread,
            unread_count=len(unread),
            read_count=len(readers & recipients),
        )

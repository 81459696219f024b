"""
Chat directory - users, direct chats and group chats
"""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import NotFoundError, PersistenceError, ValidationError
from app.models import Chat, ChatParticipant, User

logger = logging.getLogger(__name__)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("%s rolled back: %s", action, exc)
        raise PersistenceError(f"{action} failed") from exc


def create_user(db: Session, username: str, profile_picture: Optional[str] = None) -> User:
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username is required")
    if db.scalars(select(User).where(User.username == username)).first() is not None:
        raise ValidationError(f"Username already taken: {username}")

    user = User(username=username, profile_picture=profile_picture)
    db.add(user)
    _commit(db, "create_user")
    db.refresh(user)
    return user


def get_chat(db: Session, chat_id: UUID) -> Chat:
    chat = db.get(Chat, chat_id)
    if chat is None:
        raise NotFoundError("chat", chat_id)
    return chat


def _require_users(db: Session, user_ids: Iterable[UUID]) -> None:
    for user_id in user_ids:
        if db.get(User, user_id) is None:
            raise NotFoundError("user", user_id)


def open_direct_chat(db: Session, user_id: UUID, participant_id: UUID) -> Chat:
    """Return the direct chat between two users, creating it on first contact"""
    if user_id == participant_id:
        raise ValidationError("Cannot open a direct chat with yourself")
    _require_users(db, [user_id, participant_id])

    # Direct chats have exactly these two members
    stmt = (
        select(Chat)
        .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
        .where(Chat.chat_type == "direct", ChatParticipant.user_id.in_([user_id, participant_id]))
        .group_by(Chat.id)
        .having(func.count(ChatParticipant.id) == 2)
    )
    existing = db.scalars(stmt).first()
    if existing is not None:
        logger.debug("Found existing chat %s", existing.id)
        return existing

    chat = Chat(chat_type="direct", created_by=user_id)
    chat.participants = [ChatParticipant(user_id=user_id), ChatParticipant(user_id=participant_id)]
    db.add(chat)
    _commit(db, "open_direct_chat")
    db.refresh(chat)
    logger.info("Created direct chat %s", chat.id)
    return chat


def create_group_chat(
    db: Session, created_by: UUID, participant_ids: Iterable[UUID], name: Optional[str] = None,
) -> Chat:
    members = list(dict.fromkeys([created_by, *participant_ids]))
    if len(members) < 2:
        raise ValidationError("A group chat needs at least one other participant")
    if name is not None and len(name.strip()) > 100:
        raise ValidationError("Group name cannot exceed 100 characters")
    _require_users(db, members)

    chat = Chat(chat_type="group", name=name.strip() if name else None, created_by=created_by)
    chat.participants = [ChatParticipant(user_id=member) for member in members]
    db.add(chat)
    _commit(db, "create_group_chat")
    db.refresh(chat)
    logger.info("Created group chat %s with %d participants", chat.id, len(members))
    return chat

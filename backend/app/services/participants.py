"""
Chat participant directory - who belongs to a chat
"""
from abc import ABC, abstractmethod
from typing import Set
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import ChatParticipant


class ParticipantDirectory(ABC):
    """Source of truth for chat membership"""

    @abstractmethod
    def participants(self, chat_id: UUID) -> Set[UUID]:
        """Return the ids of every user in the chat"""
        pass


class SqlParticipantDirectory(ParticipantDirectory):
    """Reads membership from the chat_participants table"""

    def __init__(self, db: Session):
        self.db = db

    def participants(self, chat_id: UUID) -> Set[UUID]:
        stmt = select(ChatParticipant.user_id).where(ChatParticipant.chat_id == chat_id)
        return set(self.db.scalars(stmt).all())


class StaticParticipantDirectory(ParticipantDirectory):
    """Fixed membership map, for callers that already hold the roster"""

    def __init__(self, rosters=None):
        self.rosters = {chat_id: set(users) for chat_id, users in (rosters or {}).items()}

    def participants(self, chat_id: UUID) -> Set[UUID]:
        return set(self.rosters.get(chat_id, set()))

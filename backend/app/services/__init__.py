"""Services package initialization"""
from app.services.message_store import MessageStore, ReadStatus
from app.services.events import MessageEvent, EventCollector, log_event
from app.services.participants import (
    ParticipantDirectory,
    SqlParticipantDirectory,
    StaticParticipantDirectory,
)

__all__ = [
    "MessageStore",
    "ReadStatus",
    "MessageEvent",
    "EventCollector",
    "log_event",
    "ParticipantDirectory",
    "SqlParticipantDirectory",
    "StaticParticipantDirectory",
]

"""
Post-commit message events

The store hands one MessageEvent to its notifier after each successful
write. Whatever pushes updates to connected clients subscribes here.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

logger = logging.getLogger(__name__)


EVENT_KINDS = (
    "sent",
    "edited",
    "deleted",
    "read",
    "reaction_added",
    "reaction_removed",
    "status_changed",
)


@dataclass(frozen=True)
class MessageEvent:
    """A committed change to one message"""
    kind: str
    message_id: UUID
    chat_id: UUID
    user_id: Optional[UUID] = None
    payload: Dict[str, Any] = field(default_factory=dict)


Notifier = Callable[[MessageEvent], None]


class EventCollector:
    """Notifier that keeps every event it receives, in order"""

    def __init__(self):
        self.events: List[MessageEvent] = []

    def __call__(self, event: MessageEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]

    def clear(self) -> None:
        self.events = []


def log_event(event: MessageEvent) -> None:
    """Default notifier: record the event for whatever tails the logs"""
    logger.debug(
        "message event %s message=%s chat=%s user=%s",
        event.kind, event.message_id, event.chat_id, event.user_id,
    )

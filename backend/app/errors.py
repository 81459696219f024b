"""
Message store error taxonomy
"""
from typing import Optional


class MessageStoreError(Exception):
    """Base class for every error raised by the message store"""


class ValidationError(MessageStoreError):
    """Input rejected before anything was written"""

    code = "validation_error"


class ContentRequired(ValidationError):
    code = "content_required"

    def __init__(self, message: str = "Text messages must have content"):
        super().__init__(message)


class ContentTooLong(ValidationError):
    code = "content_too_long"

    def __init__(self, length: int, limit: int):
        super().__init__(f"Message content cannot exceed {limit} characters (got {length})")
        self.length = length
        self.limit = limit


class SystemActionRequired(ValidationError):
    code = "system_action_required"

    def __init__(self, message: str = "System messages must have action data"):
        super().__init__(message)


class InvalidStatusTransition(ValidationError):
    code = "invalid_status_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change delivery status from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class NotFoundError(MessageStoreError):
    """A referenced message, chat or user does not exist"""

    def __init__(self, kind: str, identifier: Optional[object] = None):
        detail = f"{kind.capitalize()} not found"
        if identifier is not None:
            detail = f"{detail}: {identifier}"
        super().__init__(detail)
        self.kind = kind
        self.identifier = identifier


class NotAParticipant(MessageStoreError):
    """The acting user is not a member of the chat"""

    def __init__(self, chat_id: object, user_id: object):
        super().__init__(f"Access denied to chat {chat_id}")
        self.chat_id = chat_id
        self.user_id = user_id


class PersistenceError(MessageStoreError):
    """The underlying store failed; the transaction was rolled back"""

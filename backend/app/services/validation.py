"""
Message validation rules, run before anything is written
"""
from typing import Optional

from app.errors import ContentRequired, ContentTooLong, SystemActionRequired, ValidationError

MAX_CONTENT_LENGTH = 2000


def normalize_content(content: Optional[str]) -> str:
    """Content is stored trimmed; None is treated as empty"""
    return (content or "").strip()


def fold_for_search(content: Optional[str]) -> str:
    """Caseless form of content, matched by search; str.casefold covers non-ASCII letters"""
    return (content or "").casefold()


def validate_content(content: str, message_type: str) -> None:
    """
    Check already-normalized content against the rules for its message type

    Raises:
        ContentTooLong: more than MAX_CONTENT_LENGTH characters
        ContentRequired: a text message with nothing in it
    """
    if len(content) > MAX_CONTENT_LENGTH:
        raise ContentTooLong(len(content), MAX_CONTENT_LENGTH)
    if message_type == "text" and not content:
        raise ContentRequired()


def validate_system_action(message_type: str, action: Optional[str]) -> None:
    if message_type == "system" and not action:
        raise SystemActionRequired()


def validate_emoji(emoji: Optional[str]) -> str:
    emoji = (emoji or "").strip()
    if not emoji:
        raise ValidationError("Reaction emoji is required")
    if len(emoji) > 50:
        raise ValidationError("Reaction emoji cannot exceed 50 characters")
    return emoji


def validate_pagination(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError(f"Page must be 1 or greater (got {page})")
    if page_size < 1:
        raise ValidationError(f"Page size must be 1 or greater (got {page_size})")

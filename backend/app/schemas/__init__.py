"""Schemas package initialization"""
from app.schemas.message import (
    AttachmentIn,
    SystemData,
    TextMessageCreate,
    MediaMessageCreate,
    SystemMessageCreate,
    MessageCreate,
)

__all__ = [
    "AttachmentIn",
    "SystemData",
    "TextMessageCreate",
    "MediaMessageCreate",
    "SystemMessageCreate",
    "MessageCreate",
]

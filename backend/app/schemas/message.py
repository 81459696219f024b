"""
Message creation payloads - one variant per message kind, discriminated on message_type
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field


Priority = Literal["normal", "high", "urgent"]
SystemAction = Literal[
    "user_joined", "user_left", "chat_created", "chat_updated", "user_added", "user_removed",
]
MediaType = Literal["image", "file", "audio", "video"]


class AttachmentIn(BaseModel):
    type: MediaType
    url: Optional[str] = None
    filename: Optional[str] = None
    original_name: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class SystemData(BaseModel):
    # Optional here so the store reports a missing action as SystemActionRequired
    action: Optional[SystemAction] = None
    target_user_id: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = None


class _MessageCreateBase(BaseModel):
    reply_to_id: Optional[UUID] = None
    priority: Priority = "normal"
    temp_id: Optional[str] = None
    timestamp: Optional[datetime] = None  # backfill/import only; defaults to now


class TextMessageCreate(_MessageCreateBase):
    message_type: Literal["text"] = "text"
    content: str = ""


class MediaMessageCreate(_MessageCreateBase):
    message_type: MediaType
    content: str = ""  # optional caption
    attachments: List[AttachmentIn] = []


class SystemMessageCreate(_MessageCreateBase):
    message_type: Literal["system"]
    content: str = ""
    system_data: Optional[SystemData] = None


MessageCreate = Annotated[
    Union[TextMessageCreate, MediaMessageCreate, SystemMessageCreate],
    Field(discriminator="message_type"),
]

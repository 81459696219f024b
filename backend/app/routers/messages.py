"""
Messages Router - API endpoints for sending, reading and changing chat messages
"""
from uuid import UUID
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from app.errors import MessageStoreError
from app.routers.deps import get_store, http_error
from app.schemas.message import MessageCreate
from app.services.message_store import MessageStore


router = APIRouter()


# Pydantic Schemas
class UserSummary(BaseModel):
    id: UUID
    username: str
    profile_picture: Optional[str]

    class Config:
        from_attributes = True


class ReplySummary(BaseModel):
    id: UUID
    sender_id: UUID
    content: str
    is_deleted: bool

    class Config:
        from_attributes = True


class AttachmentResponse(BaseModel):
    type: str
    url: Optional[str]
    filename: Optional[str]
    original_name: Optional[str]
    size: Optional[int]
    mime_type: Optional[str]
    uploaded_at: Optional[datetime]

    class Config:
        from_attributes = True


class ReadReceiptResponse(BaseModel):
    user_id: UUID
    read_at: datetime

    class Config:
        from_attributes = True


class ReactionResponse(BaseModel):
    user_id: UUID
    emoji: str
    reacted_at: datetime

    class Config:
        from_attributes = True


class EditResponse(BaseModel):
    content: str
    edited_at: datetime

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: UUID
    chat_id: UUID
    sender_id: UUID
    sender: Optional[UserSummary]
    content: str
    message_type: str
    status: str
    priority: str
    attachments: List[AttachmentResponse] = []
    read_by: List[ReadReceiptResponse] = []
    reactions: List[ReactionResponse] = []
    reply_to_id: Optional[UUID]
    reply_to: Optional[ReplySummary]
    forwarded_from_id: Optional[UUID]
    forwarded_from_sender_id: Optional[UUID]
    is_edited: bool
    edit_history: List[EditResponse] = []
    is_deleted: bool
    deleted_at: Optional[datetime]
    deleted_by: Optional[UUID]
    system_action: Optional[str]
    system_target_user_id: Optional[UUID]
    system_metadata: Optional[Dict[str, Any]]
    timestamp: datetime
    temp_id: Optional[str]

    class Config:
        from_attributes = True


class SendRequest(BaseModel):
    sender_id: UUID
    message: MessageCreate


class EditRequest(BaseModel):
    user_id: UUID
    content: str


class UserAction(BaseModel):
    user_id: UUID


class ReactionRequest(BaseModel):
    user_id: UUID
    emoji: str


class StatusRequest(BaseModel):
    status: Literal["sent", "delivered", "failed"]


class ForwardRequest(BaseModel):
    user_id: UUID
    chat_id: UUID


class ReadStatusResponse(BaseModel):
    message_id: UUID
    read_by_all: bool
    unread_count: int
    read_count: int


class UnreadCountResponse(BaseModel):
    chat_id: UUID
    user_id: UUID
    unread_count: int


def _require_owner(store: MessageStore, message_id: UUID, user_id: UUID):
    """Load a message and make sure the acting user sent it"""
    try:
        message = store.get_message(message_id)
    except MessageStoreError as exc:
        raise http_error(exc)
    if not store.can_modify(message, user_id):
        raise HTTPException(status_code=403, detail="Only the sender can modify this message")
    return message


# Chat-scoped endpoints
@router.post("/chats/{chat_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    chat_id: UUID,
    request: SendRequest,
    store: MessageStore = Depends(get_store),
):
    """
    Send a message to a chat

    The message body is one of the text, media or system variants,
    selected by its message_type.
    """
    try:
        return store.send(chat_id, request.sender_id, request.message)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.get("/chats/{chat_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    chat_id: UUID,
    user_id: UUID,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    store: MessageStore = Depends(get_store),
):
    """Get one page of a chat's messages, newest first; members only"""
    try:
        store.require_participant(chat_id, user_id)
        return store.get_paginated_messages(chat_id, page=page, page_size=limit)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.get("/chats/{chat_id}/messages/unread", response_model=List[MessageResponse])
async def list_unread(
    chat_id: UUID,
    user_id: UUID,
    store: MessageStore = Depends(get_store),
):
    """Messages in the chat the user has not read yet, oldest first"""
    try:
        store.require_participant(chat_id, user_id)
        return store.get_unread_in_chat(chat_id, user_id)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.get("/chats/{chat_id}/messages/unread/count", response_model=UnreadCountResponse)
async def count_unread(
    chat_id: UUID,
    user_id: UUID,
    store: MessageStore = Depends(get_store),
):
    """Unread badge for the chat list"""
    try:
        store.require_participant(chat_id, user_id)
        count = store.count_unread_in_chat(chat_id, user_id)
    except MessageStoreError as exc:
        raise http_error(exc)
    return UnreadCountResponse(chat_id=chat_id, user_id=user_id, unread_count=count)


@router.get("/chats/{chat_id}/messages/search", response_model=List[MessageResponse])
async def search_messages(
    chat_id: UUID,
    user_id: UUID,
    q: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1),
    store: MessageStore = Depends(get_store),
):
    try:
        store.require_participant(chat_id, user_id)
        return store.search_in_chat(chat_id, q, limit=limit)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.get("/chats/{chat_id}/messages/latest", response_model=Optional[MessageResponse])
async def latest_message(chat_id: UUID, user_id: UUID, store: MessageStore = Depends(get_store)):
    try:
        store.require_participant(chat_id, user_id)
        return store.get_latest_in_chat(chat_id)
    except MessageStoreError as exc:
        raise http_error(exc)


# Message endpoints
@router.get("/messages/{message_id}", response_model=MessageResponse)
async def get_message(message_id: UUID, store: MessageStore = Depends(get_store)):
    try:
        return store.get_message(message_id)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: UUID,
    request: EditRequest,
    store: MessageStore = Depends(get_store),
):
    """Edit a message's content; only its sender may do this"""
    _require_owner(store, message_id, request.user_id)
    try:
        return store.edit_content(message_id, request.content)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.delete("/messages/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: UUID,
    user_id: UUID,
    store: MessageStore = Depends(get_store),
):
    """Soft delete a message; only its sender may do this"""
    _require_owner(store, message_id, user_id)
    try:
        return store.soft_delete(message_id, user_id)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.post("/messages/{message_id}/read", response_model=MessageResponse)
async def mark_read(
    message_id: UUID,
    request: UserAction,
    store: MessageStore = Depends(get_store),
):
    try:
        return store.mark_as_read(message_id, request.user_id)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.post("/messages/{message_id}/reactions", response_model=MessageResponse)
async def add_reaction(
    message_id: UUID,
    request: ReactionRequest,
    store: MessageStore = Depends(get_store),
):
    try:
        return store.add_reaction(message_id, request.user_id, request.emoji)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.delete("/messages/{message_id}/reactions", response_model=MessageResponse)
async def remove_reaction(
    message_id: UUID,
    user_id: UUID,
    emoji: str,
    store: MessageStore = Depends(get_store),
):
    try:
        return store.remove_reaction(message_id, user_id, emoji)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.post("/messages/{message_id}/status", response_model=MessageResponse)
async def update_status(
    message_id: UUID,
    request: StatusRequest,
    store: MessageStore = Depends(get_store),
):
    """Report delivery progress (sent, delivered, failed)"""
    try:
        return store.update_status(message_id, request.status)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.post("/messages/{message_id}/forward", response_model=MessageResponse, status_code=201)
async def forward_message(
    message_id: UUID,
    request: ForwardRequest,
    store: MessageStore = Depends(get_store),
):
    try:
        return store.forward(message_id, request.chat_id, request.user_id)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.get("/messages/{message_id}/read-status", response_model=ReadStatusResponse)
async def read_status(message_id: UUID, store: MessageStore = Depends(get_store)):
    """Whether every other chat participant has read the message"""
    try:
        status = store.get_read_status(message_id)
    except MessageStoreError as exc:
        raise http_error(exc)
    return ReadStatusResponse(
        message_id=message_id,
        read_by_all=status.read_by_all,
        unread_count=status.unread_count,
        read_count=status.read_count,
    )


@router.get("/messages/{message_id}/replies", response_model=List[MessageResponse])
async def list_replies(message_id: UUID, store: MessageStore = Depends(get_store)):
    try:
        return store.get_replies(message_id)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.get("/users/{user_id}/messages", response_model=List[MessageResponse])
async def list_user_messages(
    user_id: UUID,
    limit: Optional[int] = Query(None, ge=1),
    store: MessageStore = Depends(get_store),
):
    try:
        return store.get_user_messages(user_id, limit=limit)
    except MessageStoreError as exc:
        raise http_error(exc)

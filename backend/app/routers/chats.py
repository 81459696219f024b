"""
Chats Router - API endpoints for users and chat membership
"""
from uuid import UUID
from typing import List, Literal, Optional
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel

from app.database import get_db
from app.errors import MessageStoreError, ValidationError
from app.routers.deps import http_error
from app.services import chat_directory


router = APIRouter()


# Pydantic Schemas
class UserCreate(BaseModel):
    username: str
    profile_picture: Optional[str] = None


class UserResponse(BaseModel):
    id: UUID
    username: str
    profile_picture: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ChatCreate(BaseModel):
    created_by: UUID
    participant_ids: List[UUID]
    chat_type: Literal["direct", "group"] = "direct"
    name: Optional[str] = None


class ChatResponse(BaseModel):
    id: UUID
    chat_type: str
    name: Optional[str]
    created_by: UUID
    participant_ids: List[UUID]
    last_message_id: Optional[UUID]
    last_activity: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


# Endpoints
@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(request: UserCreate, db: Session = Depends(get_db)):
    try:
        return chat_directory.create_user(db, request.username, request.profile_picture)
    except MessageStoreError as exc:
        raise http_error(exc)


@router.post("/chats", response_model=ChatResponse, status_code=201)
async def create_chat(request: ChatCreate, db: Session = Depends(get_db)):
    """
    Open a chat

    A direct chat takes exactly one other participant and is reused if the
    two users already share one. A group chat takes any number.
    """
    try:
        if request.chat_type == "direct":
            if len(request.participant_ids) != 1:
                raise ValidationError("A direct chat takes exactly one other participant")
            return chat_directory.open_direct_chat(db, request.created_by, request.participant_ids[0])
        return chat_directory.create_group_chat(
            db, request.created_by, request.participant_ids, name=request.name,
        )
    except MessageStoreError as exc:
        raise http_error(exc)


@router.get("/chats/{chat_id}", response_model=ChatResponse)
async def get_chat(chat_id: UUID, db: Session = Depends(get_db)):
    try:
        return chat_directory.get_chat(db, chat_id)
    except MessageStoreError as exc:
        raise http_error(exc)

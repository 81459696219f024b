"""
User model - the sender identity attached to messages
"""
import uuid
from sqlalchemy import Column, String, DateTime, Text, Uuid
from app.database import Base
from app.models.message import utcnow


class User(Base):
    """Minimal user record; accounts and auth live elsewhere"""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    username = Column(String(50), nullable=False, unique=True)
    profile_picture = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)

"""
Shared fixtures: in-memory database, seeded users and chat, message store
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.database import Base
from app.models import User, Chat, ChatParticipant, Message  # noqa: F401
from app.services import chat_directory
from app.services.events import EventCollector
from app.services.message_store import MessageStore
from app.schemas.message import TextMessageCreate


class FakeClock:
    """Clock that moves forward one second every time it is read"""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return EventCollector()


@pytest.fixture
def settings():
    return Settings(duplicate_send_window_seconds=0)


@pytest.fixture
def store(db, events, settings, clock):
    return MessageStore(db, notifier=events, settings=settings, clock=clock)


@pytest.fixture
def alice(db):
    return chat_directory.create_user(db, "alice")


@pytest.fixture
def bob(db):
    return chat_directory.create_user(db, "bob")


@pytest.fixture
def carol(db):
    return chat_directory.create_user(db, "carol")


@pytest.fixture
def chat(db, alice, bob, carol):
    return chat_directory.create_group_chat(db, alice.id, [bob.id, carol.id], name="weekend")


@pytest.fixture
def other_chat(db, alice, bob):
    return chat_directory.open_direct_chat(db, alice.id, bob.id)


@pytest.fixture
def send_text(store, chat, alice):
    """Send a text message to the shared chat, by alice unless told otherwise"""

    def _send(content: str, sender=None, chat_id=None, **kwargs) -> Message:
        payload = TextMessageCreate(content=content, **kwargs)
        return store.send(chat_id or chat.id, (sender or alice).id, payload)

    return _send

"""
Unit tests for MessageStore writes
"""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.config import Settings
from app.errors import (
    ContentRequired,
    ContentTooLong,
    InvalidStatusTransition,
    NotAParticipant,
    NotFoundError,
    PersistenceError,
    SystemActionRequired,
    ValidationError,
)
from app.models import Message, MessageReaction
from app.schemas.message import (
    AttachmentIn,
    MediaMessageCreate,
    SystemData,
    SystemMessageCreate,
    TextMessageCreate,
)
from app.services import chat_directory
from app.services.message_store import MessageStore
from app.services.participants import StaticParticipantDirectory


def _message_count(db):
    return db.scalar(select(func.count(Message.id)))


class TestSend:
    """Test suite for creating messages"""

    def test_send_text_message(self, send_text, events, alice, chat):
        """Test a plain text message is stored trimmed with status sent"""
        message = send_text("  Hello everyone  ")

        assert message.content == "Hello everyone"
        assert message.message_type == "text"
        assert message.status == "sent"
        assert message.priority == "normal"
        assert message.sender_id == alice.id
        assert message.chat_id == chat.id
        assert message.is_edited is False
        assert message.is_deleted is False
        assert events.kinds() == ["sent"]

    @pytest.mark.parametrize("content", ["", "   ", "\n\t "])
    def test_blank_text_rejected(self, send_text, db, events, content):
        """Test blank text messages fail with ContentRequired and write nothing"""
        with pytest.raises(ContentRequired):
            send_text(content)

        assert _message_count(db) == 0
        assert events.events == []

    def test_content_too_long(self, send_text, db):
        """Test content over 2000 characters is rejected"""
        with pytest.raises(ContentTooLong) as excinfo:
            send_text("a" * 2001)

        assert excinfo.value.limit == 2000
        assert _message_count(db) == 0

    def test_content_at_limit_accepted(self, send_text):
        message = send_text("a" * 2000)
        assert len(message.content) == 2000

    def test_system_message_requires_action(self, store, chat, alice, db):
        """Test system messages without an action fail with SystemActionRequired"""
        with pytest.raises(SystemActionRequired):
            store.send(chat.id, alice.id, SystemMessageCreate(message_type="system", content="bob joined"))

        with pytest.raises(SystemActionRequired):
            store.send(chat.id, alice.id, SystemMessageCreate(
                message_type="system", content="bob joined", system_data=SystemData(),
            ))

        assert _message_count(db) == 0

    def test_system_message_with_action(self, store, chat, alice, bob):
        payload = SystemMessageCreate(
            message_type="system",
            content="bob joined the chat",
            system_data=SystemData(action="user_joined", target_user_id=bob.id, metadata={"via": "invite"}),
        )
        message = store.send(chat.id, alice.id, payload)

        assert message.message_type == "system"
        assert message.system_action == "user_joined"
        assert message.system_target_user_id == bob.id
        assert message.system_metadata == {"via": "invite"}

    def test_media_message_without_caption(self, store, chat, alice):
        """Test media messages may omit content and keep attachment order"""
        payload = MediaMessageCreate(
            message_type="image",
            attachments=[
                AttachmentIn(type="image", url="/uploads/a.jpg", filename="a.jpg", size=1024, mime_type="image/jpeg"),
                AttachmentIn(type="image", url="/uploads/b.png", filename="b.png", size=2048, mime_type="image/png"),
            ],
        )
        message = store.send(chat.id, alice.id, payload)

        assert message.content == ""
        assert [a.filename for a in message.attachments] == ["a.jpg", "b.png"]
        assert message.attachments[0].mime_type == "image/jpeg"
        assert message.attachments[1].uploaded_at is not None

    def test_unknown_chat(self, store, alice, db):
        with pytest.raises(NotFoundError) as excinfo:
            store.send(uuid.uuid4(), alice.id, TextMessageCreate(content="hello?"))
        assert excinfo.value.kind == "chat"
        assert _message_count(db) == 0

    def test_unknown_sender(self, store, chat):
        with pytest.raises(NotFoundError) as excinfo:
            store.send(chat.id, uuid.uuid4(), TextMessageCreate(content="hello?"))
        assert excinfo.value.kind == "user"

    def test_reply_must_be_in_same_chat(self, send_text, other_chat, store, chat, bob):
        """Test a reply target from another chat is treated as missing"""
        elsewhere = send_text("in the direct chat", chat_id=other_chat.id)

        with pytest.raises(NotFoundError):
            store.send(chat.id, bob.id, TextMessageCreate(content="reply", reply_to_id=elsewhere.id))

    def test_reply_to_message(self, send_text, bob):
        original = send_text("Dinner at 8?")
        reply = send_text("Works for me", sender=bob, reply_to_id=original.id)

        assert reply.reply_to_id == original.id
        assert reply.reply_to.content == "Dinner at 8?"

    def test_send_updates_chat_last_message(self, send_text, chat, db):
        first = send_text("first")
        second = send_text("second")
        db.refresh(chat)

        assert chat.last_message_id == second.id
        assert chat.last_activity == second.timestamp
        assert first.id != second.id

    def test_temp_id_kept(self, send_text, events):
        message = send_text("optimistic", temp_id="tmp-42")

        assert message.temp_id == "tmp-42"
        assert events.events[0].payload["temp_id"] == "tmp-42"

    def test_duplicate_send_suppressed(self, db, events, clock, chat, alice):
        """Test identical content resent within the window returns the first message"""
        store = MessageStore(
            db, notifier=events, settings=Settings(duplicate_send_window_seconds=2.0), clock=clock,
        )
        first = store.send(chat.id, alice.id, TextMessageCreate(content="hello"))
        again = store.send(chat.id, alice.id, TextMessageCreate(content="hello"))
        different = store.send(chat.id, alice.id, TextMessageCreate(content="hello again"))

        assert again.id == first.id
        assert different.id != first.id
        assert _message_count(db) == 2
        assert events.kinds() == ["sent", "sent"]

    def test_duplicate_outside_window_stored(self, db, events, clock, chat, alice):
        store = MessageStore(
            db, notifier=events, settings=Settings(duplicate_send_window_seconds=2.0), clock=clock,
        )
        first = store.send(chat.id, alice.id, TextMessageCreate(content="hello"))
        clock()
        clock()
        clock()
        later = store.send(chat.id, alice.id, TextMessageCreate(content="hello"))

        assert later.id != first.id

    def test_duplicate_window_end_is_exclusive(self, db, events, clock, chat, alice):
        """Test a resend exactly one window later is stored as a new message"""
        store = MessageStore(
            db, notifier=events, settings=Settings(duplicate_send_window_seconds=2.0), clock=clock,
        )
        first = store.send(chat.id, alice.id, TextMessageCreate(content="hello"))
        clock()
        later = store.send(chat.id, alice.id, TextMessageCreate(content="hello"))

        assert later.timestamp - first.timestamp == timedelta(seconds=2)
        assert later.id != first.id

    def test_same_text_to_different_reply_targets(self, db, events, clock, chat, alice):
        """Test identical text replying to a different message is not a duplicate"""
        store = MessageStore(
            db, notifier=events, settings=Settings(duplicate_send_window_seconds=2.0), clock=clock,
        )
        q1 = store.send(chat.id, alice.id, TextMessageCreate(content="Pizza?"))
        q2 = store.send(chat.id, alice.id, TextMessageCreate(content="Sushi?"))

        yes_to_q1 = store.send(chat.id, alice.id, TextMessageCreate(content="yes", reply_to_id=q1.id))
        yes_to_q2 = store.send(chat.id, alice.id, TextMessageCreate(content="yes", reply_to_id=q2.id))
        again = store.send(chat.id, alice.id, TextMessageCreate(content="yes", reply_to_id=q2.id))

        assert yes_to_q2.id != yes_to_q1.id
        assert yes_to_q2.reply_to_id == q2.id
        assert again.id == yes_to_q2.id
        assert _message_count(db) == 4

    def test_same_caption_different_attachment(self, db, events, clock, chat, alice):
        store = MessageStore(
            db, notifier=events, settings=Settings(duplicate_send_window_seconds=2.0), clock=clock,
        )

        def photo(filename):
            return MediaMessageCreate(
                message_type="image", content="look",
                attachments=[AttachmentIn(type="image", url=f"/uploads/{filename}", filename=filename)],
            )

        first = store.send(chat.id, alice.id, photo("a.jpg"))
        second = store.send(chat.id, alice.id, photo("b.jpg"))

        assert second.id != first.id
        assert [a.filename for a in second.attachments] == ["b.jpg"]

    def test_same_caption_as_text_and_image(self, db, events, clock, chat, alice):
        store = MessageStore(
            db, notifier=events, settings=Settings(duplicate_send_window_seconds=2.0), clock=clock,
        )
        text = store.send(chat.id, alice.id, TextMessageCreate(content="look"))
        image = store.send(chat.id, alice.id, MediaMessageCreate(
            message_type="image", content="look", attachments=[AttachmentIn(type="image", filename="c.jpg")],
        ))

        assert image.id != text.id
        assert image.message_type == "image"

    def test_sender_has_read_own_message(self, send_text, store, chat, alice, bob):
        """Test the sender holds a receipt from the moment a message is sent"""
        message = send_text("my own message")

        assert [r.user_id for r in message.read_by] == [alice.id]
        assert message.read_by[0].read_at == message.timestamp
        assert store.get_unread_in_chat(chat.id, alice.id) == []
        assert [m.id for m in store.get_unread_in_chat(chat.id, bob.id)] == [message.id]

    def test_sender_must_be_member(self, store, other_chat, carol, db, events):
        """Test a user outside the chat cannot post to it"""
        with pytest.raises(NotAParticipant):
            store.send(other_chat.id, carol.id, TextMessageCreate(content="let me in"))

        assert _message_count(db) == 0
        assert events.events == []


class TestReadReceipts:
    """Test suite for mark_as_read"""

    def test_mark_as_read_is_idempotent(self, send_text, store, bob, events):
        """Test marking twice leaves exactly one receipt for the user"""
        message = send_text("read me")

        store.mark_as_read(message.id, bob.id)
        message = store.mark_as_read(message.id, bob.id)

        receipts = [r for r in message.read_by if r.user_id == bob.id]
        assert len(receipts) == 1
        assert events.kinds() == ["sent", "read"]

    def test_multiple_readers(self, send_text, store, alice, bob, carol):
        message = send_text("read me")

        store.mark_as_read(message.id, bob.id)
        message = store.mark_as_read(message.id, carol.id)

        assert [r.user_id for r in message.read_by] == [alice.id, bob.id, carol.id]

    def test_mark_missing_message(self, store, bob):
        with pytest.raises(NotFoundError):
            store.mark_as_read(uuid.uuid4(), bob.id)

    def test_failed_commit_rolls_back(self, send_text, store, db, alice, bob, monkeypatch):
        """Test a store failure surfaces as PersistenceError and leaves no receipt"""
        message = send_text("read me")

        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(PersistenceError):
            store.mark_as_read(message.id, bob.id)
        monkeypatch.undo()

        assert [r.user_id for r in store.get_message(message.id).read_by] == [alice.id]


class TestReactions:
    """Test suite for add_reaction / remove_reaction"""

    def test_same_emoji_replaces_timestamp(self, send_text, store, bob):
        """Test re-reacting with the same emoji keeps one entry with the later time"""
        message = send_text("nice photo")

        message = store.add_reaction(message.id, bob.id, "👍")
        first_time = message.reactions[0].reacted_at
        message = store.add_reaction(message.id, bob.id, "👍")

        assert len(message.reactions) == 1
        assert message.reactions[0].emoji == "👍"
        assert message.reactions[0].reacted_at > first_time

    def test_distinct_emojis_coexist(self, send_text, store, bob, carol):
        message = send_text("nice photo")

        store.add_reaction(message.id, bob.id, "👍")
        store.add_reaction(message.id, bob.id, "❤️")
        message = store.add_reaction(message.id, carol.id, "👍")

        pairs = sorted((str(r.user_id), r.emoji) for r in message.reactions)
        assert len(pairs) == 3
        assert len(set(pairs)) == 3

    def test_remove_reaction(self, send_text, store, bob, events):
        message = send_text("nice photo")
        store.add_reaction(message.id, bob.id, "👍")
        store.add_reaction(message.id, bob.id, "😂")

        message = store.remove_reaction(message.id, bob.id, "👍")

        assert [r.emoji for r in message.reactions] == ["😂"]
        assert events.kinds()[-1] == "reaction_removed"

    def test_remove_missing_reaction_is_noop(self, send_text, store, bob, events, db):
        """Test removing a reaction that was never added does nothing"""
        message = send_text("nice photo")

        message = store.remove_reaction(message.id, bob.id, "🎉")

        assert message.reactions == []
        assert "reaction_removed" not in events.kinds()
        assert db.scalar(select(func.count(MessageReaction.id))) == 0

    def test_blank_emoji_rejected(self, send_text, store, bob):
        message = send_text("nice photo")

        with pytest.raises(ValidationError):
            store.add_reaction(message.id, bob.id, "  ")
        with pytest.raises(ValidationError):
            store.remove_reaction(message.id, bob.id, "")


class TestEditing:
    """Test suite for edit_content"""

    def test_edit_appends_history(self, send_text, store, events):
        """Test an edit records the prior content and replaces the field"""
        message = send_text("See you at 7")

        message = store.edit_content(message.id, "See you at 8")

        assert message.content == "See you at 8"
        assert message.is_edited is True
        assert len(message.edit_history) == 1
        assert message.edit_history[0].content == "See you at 7"
        assert events.kinds() == ["sent", "edited"]

    def test_history_is_ordered(self, send_text, store):
        message = send_text("v1")

        store.edit_content(message.id, "v2")
        message = store.edit_content(message.id, "v3")

        assert [e.content for e in message.edit_history] == ["v1", "v2"]
        assert message.edit_history[0].edited_at < message.edit_history[1].edited_at
        assert message.content == "v3"

    def test_invalid_edit_changes_nothing(self, send_text, store):
        """Test a blank edit of a text message fails and leaves the message untouched"""
        message = send_text("keep me")

        with pytest.raises(ContentRequired):
            store.edit_content(message.id, "   ")
        with pytest.raises(ContentTooLong):
            store.edit_content(message.id, "x" * 2001)

        message = store.get_message(message.id)
        assert message.content == "keep me"
        assert message.is_edited is False
        assert message.edit_history == []

    def test_media_caption_can_be_cleared(self, store, chat, alice):
        message = store.send(chat.id, alice.id, MediaMessageCreate(
            message_type="file", content="report", attachments=[AttachmentIn(type="file", filename="q3.pdf")],
        ))

        message = store.edit_content(message.id, "")

        assert message.content == ""
        assert [e.content for e in message.edit_history] == ["report"]


class TestSoftDelete:
    """Test suite for soft_delete and can_modify"""

    def test_soft_delete_marks_message(self, send_text, store, alice, events):
        message = send_text("oops")

        message = store.soft_delete(message.id, alice.id)

        assert message.is_deleted is True
        assert message.deleted_by == alice.id
        assert message.deleted_at is not None
        assert events.kinds() == ["sent", "deleted"]

    def test_deleted_message_still_readable_by_id(self, send_text, store, alice):
        message = send_text("oops")
        store.soft_delete(message.id, alice.id)

        fetched = store.get_message(message.id)

        assert fetched.id == message.id
        assert fetched.content == "oops"

    def test_second_delete_keeps_first_stamp(self, send_text, store, alice, bob, events):
        message = send_text("oops")
        first = store.soft_delete(message.id, alice.id)
        deleted_at = first.deleted_at

        again = store.soft_delete(message.id, bob.id)

        assert again.deleted_at == deleted_at
        assert again.deleted_by == alice.id
        assert events.kinds().count("deleted") == 1

    def test_can_modify(self, send_text, store, alice, bob):
        message = send_text("mine")

        assert store.can_modify(message, alice.id) is True
        assert store.can_modify(message, str(alice.id)) is True
        assert store.can_modify(message, bob.id) is False


class TestDeliveryStatus:
    """Test suite for delivery status transitions"""

    def test_sent_to_delivered(self, send_text, store, events):
        message = send_text("ping")

        message = store.update_status(message.id, "delivered")

        assert message.status == "delivered"
        assert events.kinds() == ["sent", "status_changed"]

    def test_failed_can_be_retried(self, send_text, store):
        message = send_text("ping")

        store.update_status(message.id, "failed")
        message = store.update_status(message.id, "sent")

        assert message.status == "sent"

    def test_delivered_is_final(self, send_text, store):
        message = send_text("ping")
        store.update_status(message.id, "delivered")

        with pytest.raises(InvalidStatusTransition):
            store.update_status(message.id, "failed")
        assert store.get_message(message.id).status == "delivered"

    def test_unknown_status(self, send_text, store):
        message = send_text("ping")

        with pytest.raises(ValidationError):
            store.update_status(message.id, "read")


class TestForwarding:
    """Test suite for forwarding messages between chats"""

    def test_forward_keeps_origin(self, send_text, store, other_chat, alice, bob):
        original = send_text("Look at this")

        forwarded = store.forward(original.id, other_chat.id, bob.id)

        assert forwarded.chat_id == other_chat.id
        assert forwarded.sender_id == bob.id
        assert forwarded.content == "Look at this"
        assert forwarded.forwarded_from_id == original.id
        assert forwarded.forwarded_from_sender_id == alice.id

    def test_forward_of_forward_credits_first_author(self, send_text, store, other_chat, chat, alice, bob):
        original = send_text("Look at this")
        once = store.forward(original.id, other_chat.id, bob.id)

        twice = store.forward(once.id, chat.id, bob.id)

        assert twice.forwarded_from_id == original.id
        assert twice.forwarded_from_sender_id == alice.id

    def test_forward_copies_attachments(self, store, chat, other_chat, alice, bob):
        original = store.send(chat.id, alice.id, MediaMessageCreate(
            message_type="video", attachments=[AttachmentIn(type="video", filename="clip.mp4", size=9000)],
        ))

        forwarded = store.forward(original.id, other_chat.id, bob.id)

        assert forwarded.message_type == "video"
        assert [a.filename for a in forwarded.attachments] == ["clip.mp4"]

    def test_deleted_message_cannot_be_forwarded(self, send_text, store, other_chat, alice, bob):
        original = send_text("gone")
        store.soft_delete(original.id, alice.id)

        with pytest.raises(NotFoundError):
            store.forward(original.id, other_chat.id, bob.id)

    def test_forwarder_has_read_the_copy(self, send_text, store, other_chat, bob):
        original = send_text("Look at this")

        forwarded = store.forward(original.id, other_chat.id, bob.id)

        assert [r.user_id for r in forwarded.read_by] == [bob.id]
        assert store.get_unread_in_chat(other_chat.id, bob.id) == []

    def test_forward_requires_membership(self, send_text, store, db, chat, other_chat, alice, bob, carol):
        """Test forwarding needs membership of both the source and the target chat"""
        private = send_text("just between us", chat_id=other_chat.id)
        with pytest.raises(NotAParticipant):
            store.forward(private.id, chat.id, carol.id)

        with_carol = chat_directory.open_direct_chat(db, alice.id, carol.id)
        public = send_text("group news")
        with pytest.raises(NotAParticipant):
            store.forward(public.id, with_carol.id, bob.id)

        assert _message_count(db) == 2


class TestReadStatus:
    """Test suite for read-by-all against the chat roster"""

    def test_read_by_all_follows_roster(self, send_text, store, bob, carol):
        message = send_text("everyone read this")

        status = store.get_read_status(message.id)
        assert status.read_by_all is False
        assert status.unread_count == 2

        store.mark_as_read(message.id, bob.id)
        status = store.get_read_status(message.id)
        assert status.unread_count == 1
        assert status.read_count == 1

        store.mark_as_read(message.id, carol.id)
        status = store.get_read_status(message.id)
        assert status.read_by_all is True
        assert status.unread_count == 0

    def test_sender_receipt_does_not_count(self, send_text, store, alice):
        message = send_text("note to self")
        store.mark_as_read(message.id, alice.id)

        status = store.get_read_status(message.id)

        assert status.read_count == 0
        assert status.unread_count == 2

    def test_static_directory(self, db, events, settings, clock, chat, alice, bob):
        store = MessageStore(
            db,
            notifier=events,
            participants=StaticParticipantDirectory({chat.id: [alice.id, bob.id]}),
            settings=settings,
            clock=clock,
        )
        message = store.send(chat.id, alice.id, TextMessageCreate(content="just us"))
        store.mark_as_read(message.id, bob.id)

        assert store.get_read_status(message.id).read_by_all is True

    def test_no_other_participants(self, db, events, settings, clock, chat, alice):
        store = MessageStore(
            db,
            notifier=events,
            participants=StaticParticipantDirectory({chat.id: [alice.id]}),
            settings=settings,
            clock=clock,
        )
        message = store.send(chat.id, alice.id, TextMessageCreate(content="anyone?"))

        status = store.get_read_status(message.id)

        assert status.read_by_all is False
        assert status.unread_count == 0


class TestNotifier:
    """Test suite for post-commit notifications"""

    def test_notifier_failure_does_not_undo_write(self, db, settings, clock, chat, alice):
        def broken_notifier(event):
            raise RuntimeError("socket gone")

        store = MessageStore(db, notifier=broken_notifier, settings=settings, clock=clock)
        message = store.send(chat.id, alice.id, TextMessageCreate(content="still saved"))

        assert store.get_message(message.id).content == "still saved"

    def test_event_carries_ids(self, send_text, store, events, bob, chat):
        message = send_text("hi")
        store.add_reaction(message.id, bob.id, "👋")

        event = events.events[-1]
        assert event.kind == "reaction_added"
        assert event.message_id == message.id
        assert event.chat_id == chat.id
        assert event.user_id == bob.id
        assert event.payload == {"emoji": "👋"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

import random
from datetime import timedelta

import pytest
from sqlalchemy import select

from chatcore.core.exceptions import ForbiddenException, NotFoundException, ValidationException
from chatcore.models.message import Message, MessageType, LastMessage
from chatcore.schemas.message import MessageCursor
from chatcore.services.conversation_service import ConversationService
from chatcore.services.message_service import MessageService


async def _last_message(db, conversation_id):
    result = await db.execute(
        select(LastMessage)
        .where(LastMessage.conversation_id == conversation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _newest_live(db, conversation_id):
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id, Message.deleted_at.is_(None))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


@pytest.fixture
async def direct(db, make_user):
    """Direct conversation between alice and bob: (conversation_id, alice, bob)."""
    alice = await make_user("alice")
    bob = await make_user("bob")
    conversation = await ConversationService(db).create_direct_conversation(alice, bob)
    return conversation.id, alice, bob


async def test_hi_hey_scenario(db, direct):
    conversation_id, alice, bob = direct
    messages = MessageService(db)
    conversations = ConversationService(db)

    hi = await messages.send_message(conversation_id, alice, content="hi")
    hey = await messages.send_message(conversation_id, bob, content="hey")
    hi_id, hey_id = hi.id, hey.id

    last = await _last_message(db, conversation_id)
    assert last.content == "hey"
    assert last.sender_id == bob
    alice_row = await conversations.get_participant(conversation_id, alice)
    bob_row = await conversations.get_participant(conversation_id, bob)
    assert alice_row.unread_count == 1
    assert alice_row.last_seen_message_id == hi_id
    assert bob_row.unread_count == 0
    assert bob_row.last_seen_message_id == hey_id


async def test_last_message_tracks_newest_through_sends_and_deletes(db, direct):
    conversation_id, alice, bob = direct
    service = MessageService(db)
    rng = random.Random(7)
    sent = []

    for i in range(30):
        if sent and rng.random() < 0.3:
            message_id, sender = sent.pop(rng.randrange(len(sent)))
            await service.delete_message(message_id, sender)
        else:
            sender = rng.choice([alice, bob])
            message = await service.send_message(conversation_id, sender, content=f"message {i}")
            sent.append((message.id, sender))

        newest = await _newest_live(db, conversation_id)
        last = await _last_message(db, conversation_id)
        if newest is None:
            assert last is None
        else:
            assert last.message_id == newest.id
            assert last.content == newest.content


async def test_delete_mirrored_message_falls_back_to_older(db, direct):
    conversation_id, alice, bob = direct
    service = MessageService(db)
    older = await service.send_message(conversation_id, alice, content="older")
    newer = await service.send_message(conversation_id, bob, content="newer")
    older_id, newer_id = older.id, newer.id

    await service.delete_message(newer_id, bob)

    last = await _last_message(db, conversation_id)
    assert last.message_id == older_id
    assert last.content == "older"
    assert last.sender_id == alice


async def test_delete_only_message_clears_last_message(db, direct):
    conversation_id, alice, _ = direct
    service = MessageService(db)
    message = await service.send_message(conversation_id, alice, content="only")

    await service.delete_message(message.id, alice)

    assert await _last_message(db, conversation_id) is None


async def test_delete_older_message_keeps_last_message(db, direct):
    conversation_id, alice, _ = direct
    service = MessageService(db)
    older = await service.send_message(conversation_id, alice, content="older")
    newer = await service.send_message(conversation_id, alice, content="newer")
    older_id, newer_id = older.id, newer.id

    await service.delete_message(older_id, alice)

    assert (await _last_message(db, conversation_id)).message_id == newer_id


async def test_older_message_never_replaces_newer(db, direct):
    conversation_id, alice, _ = direct
    service = MessageService(db)
    newer = await service.send_message(conversation_id, alice, content="newer")
    newer_id = newer.id

    late = Message(
        conversation_id=conversation_id,
        sender_id=alice,
        content="delivered late",
        created_at=newer.created_at - timedelta(seconds=5),
    )
    db.add(late)
    await db.flush()
    await service._advance_last_message(late)
    await db.commit()

    assert (await _last_message(db, conversation_id)).message_id == newer_id


async def test_unread_counts_messages_after_last_seen(db, direct):
    conversation_id, alice, bob = direct
    messages = MessageService(db)
    conversations = ConversationService(db)

    first = await messages.send_message(conversation_id, alice, content="1")
    first_id = first.id
    await messages.send_message(conversation_id, bob, content="2")
    await messages.send_message(conversation_id, alice, content="3")
    await messages.send_message(conversation_id, alice, content="4")

    assert (await conversations.get_participant(conversation_id, bob)).unread_count == 2

    participant = await conversations.mark_conversation_read(conversation_id, bob)
    assert participant.unread_count == 0
    assert participant.last_seen_message_id != first_id

    await messages.send_message(conversation_id, alice, content="5")
    assert (await conversations.get_participant(conversation_id, bob)).unread_count == 1
    assert (await conversations.get_participant(conversation_id, alice)).unread_count == 0


async def test_send_updates_conversation_activity(db, direct):
    conversation_id, alice, _ = direct
    conversations = ConversationService(db)
    before = (await conversations.get_conversation(conversation_id)).updated_at

    await MessageService(db).send_message(conversation_id, alice, content="ping")

    detail = await conversations.get_conversation(conversation_id, viewer_id=alice)
    assert detail.updated_at >= before
    assert detail.last_message.content == "ping"


async def test_send_requires_participant(db, direct, make_user):
    conversation_id, _, _ = direct
    mallory = await make_user("mallory")

    with pytest.raises(ValidationException, match="not a participant"):
        await MessageService(db).send_message(conversation_id, mallory, content="let me in")

    assert await _last_message(db, conversation_id) is None


async def test_send_to_unknown_conversation(db, make_user):
    alice = await make_user("alice")

    with pytest.raises(NotFoundException):
        await MessageService(db).send_message(alice, alice, content="hello?")


async def test_payload_must_match_type(db, direct):
    conversation_id, alice, _ = direct
    service = MessageService(db)

    with pytest.raises(ValidationException, match="content"):
        await service.send_message(conversation_id, alice, content="   ")
    with pytest.raises(ValidationException, match="file_url"):
        await service.send_message(conversation_id, alice, type=MessageType.IMAGE)

    message = await service.send_message(
        conversation_id, alice, type=MessageType.IMAGE, file_url="/uploads/cat.png"
    )
    assert message.type == MessageType.IMAGE
    assert (await _last_message(db, conversation_id)).type == MessageType.IMAGE


async def test_reply_must_stay_in_conversation(db, direct, make_user):
    conversation_id, alice, bob = direct
    carol = await make_user("carol")
    conversations = ConversationService(db)
    service = MessageService(db)
    other = await conversations.create_direct_conversation(alice, carol)
    other_id = other.id
    elsewhere = await service.send_message(other_id, alice, content="elsewhere")
    original = await service.send_message(conversation_id, alice, content="question?")
    elsewhere_id, original_id = elsewhere.id, original.id

    reply = await service.send_message(conversation_id, bob, content="answer", reply_to_id=original_id)
    assert reply.reply_to_id == original_id

    with pytest.raises(ValidationException, match="another conversation"):
        await service.send_message(conversation_id, bob, content="nope", reply_to_id=elsewhere_id)


async def test_reply_survives_soft_delete_of_original(db, direct):
    conversation_id, alice, bob = direct
    service = MessageService(db)
    original = await service.send_message(conversation_id, alice, content="original")
    reply = await service.send_message(conversation_id, bob, content="reply", reply_to_id=original.id)
    original_id, reply_id = original.id, reply.id

    await service.delete_message(original_id, alice)

    assert (await service.get_message(reply_id)).reply_to_id == original_id
    with pytest.raises(NotFoundException):
        await service.get_message(original_id)


async def test_edit_message(db, direct):
    conversation_id, alice, bob = direct
    service = MessageService(db)
    message = await service.send_message(conversation_id, alice, content="helo")
    message_id = message.id

    with pytest.raises(ForbiddenException):
        await service.edit_message(message_id, bob, "hijacked")
    with pytest.raises(ValidationException):
        await service.edit_message(message_id, alice, "   ")

    edited = await service.edit_message(message_id, alice, "hello")

    assert edited.is_edited
    assert edited.content == "hello"
    assert (await _last_message(db, conversation_id)).content == "hello"


async def test_delete_permissions(db, direct):
    conversation_id, alice, bob = direct
    service = MessageService(db)
    message = await service.send_message(conversation_id, alice, content="mine")
    message_id = message.id

    with pytest.raises(ForbiddenException):
        await service.delete_message(message_id, bob)

    await service.delete_message(message_id, alice)
    with pytest.raises(NotFoundException):
        await service.delete_message(message_id, alice)
    with pytest.raises(NotFoundException):
        await service.edit_message(message_id, alice, "too late")


async def test_list_messages_pages_newest_first(db, direct):
    conversation_id, alice, bob = direct
    service = MessageService(db)
    ids = []
    for i in range(7):
        message = await service.send_message(conversation_id, alice if i % 2 else bob, content=str(i))
        ids.append(message.id)
    await service.delete_message(ids[3], alice)
    expected = [m for m in reversed(ids) if m != ids[3]]

    first = await service.list_messages(conversation_id, limit=4)
    assert [m.id for m in first.messages] == expected[:4]
    assert first.has_more

    second = await service.list_messages(conversation_id, before=first.next_cursor, limit=4)
    assert [m.id for m in second.messages] == expected[4:]
    assert not second.has_more
    assert second.next_cursor is None


async def test_list_messages_accepts_cursor_object(db, direct):
    conversation_id, alice, _ = direct
    service = MessageService(db)
    first = await service.send_message(conversation_id, alice, content="first")
    second = await service.send_message(conversation_id, alice, content="second")
    first_id = first.id

    page = await service.list_messages(
        conversation_id,
        before=MessageCursor(created_at=second.created_at, id=second.id),
    )

    assert [m.id for m in page.messages] == [first_id]


async def test_list_messages_rejects_bad_input(db, direct):
    conversation_id, _, _ = direct
    service = MessageService(db)

    with pytest.raises(ValidationException, match="cursor"):
        await service.list_messages(conversation_id, before="garbage")
    with pytest.raises(ValidationException):
        await service.list_messages(conversation_id, limit=0)


async def test_iter_messages_walks_full_history(db, direct):
    conversation_id, alice, _ = direct
    service = MessageService(db)
    ids = []
    for i in range(5):
        message = await service.send_message(conversation_id, alice, content=str(i))
        ids.append(message.id)

    walked = [m.id async for m in service.iter_messages(conversation_id, page_size=2)]
    again = [m.id async for m in service.iter_messages(conversation_id, page_size=3)]

    assert walked == list(reversed(ids))
    assert again == walked


async def test_refresh_last_message_repairs_projection(db, direct):
    conversation_id, alice, _ = direct
    service = MessageService(db)
    message = await service.send_message(conversation_id, alice, content="real")
    message_id = message.id

    last = await _last_message(db, conversation_id)
    await db.delete(last)
    await db.commit()

    newest = await service.refresh_last_message(conversation_id)

    assert newest.id == message_id
    assert (await _last_message(db, conversation_id)).message_id == message_id

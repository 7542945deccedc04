import pytest
from sqlalchemy import delete, select, func
from sqlalchemy.exc import IntegrityError

from chatcore.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from chatcore.models.conversation import Conversation, ConversationType, Participant
from chatcore.models.message import Message
from chatcore.services.conversation_service import ConversationService
from chatcore.services.message_service import MessageService
from chatcore.services.user_service import UserService


async def test_create_direct_conversation(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    service = ConversationService(db)

    conversation = await service.create_direct_conversation(alice, bob)

    assert conversation.type == ConversationType.DIRECT
    participants = await service.list_participants(conversation.id)
    assert {p.user_id for p in participants} == {alice, bob}
    assert all(p.unread_count == 0 for p in participants)


async def test_duplicate_direct_conversation_is_rejected(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    service = ConversationService(db)
    conversation = await service.create_direct_conversation(alice, bob)
    conversation_id = conversation.id

    with pytest.raises(ConflictException):
        await service.create_direct_conversation(bob, alice)

    existing = await service.get_or_create_direct_conversation(bob, alice)
    assert existing.id == conversation_id


async def test_get_or_create_reuses_conversation_created_after_first_lookup(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    service = ConversationService(db)
    conversation = await service.create_direct_conversation(alice, bob)
    conversation_id = conversation.id

    # The unlocked lookup misses, as if a concurrent create committed right after it
    lookup = service.find_direct_between_users
    calls = []

    async def stale_first_lookup(user1_id, user2_id):
        calls.append((user1_id, user2_id))
        if len(calls) == 1:
            return None
        return await lookup(user1_id, user2_id)

    service.find_direct_between_users = stale_first_lookup

    existing = await service.get_or_create_direct_conversation(alice, bob)

    assert existing.id == conversation_id
    assert len(calls) == 2
    assert (await db.execute(select(func.count()).select_from(Conversation))).scalar_one() == 1


async def test_direct_conversation_validation(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await UserService(db).delete_user(bob)
    service = ConversationService(db)

    with pytest.raises(ValidationException):
        await service.create_direct_conversation(alice, alice)
    with pytest.raises(NotFoundException):
        await service.create_direct_conversation(alice, bob)


async def test_create_group(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    service = ConversationService(db)

    conversation = await service.create_group_conversation(alice, "  Weekend  ", [bob, carol, bob])

    detail = await service.get_conversation(conversation.id, viewer_id=alice)
    assert detail.type == ConversationType.GROUP
    assert detail.group.name == "Weekend"
    assert detail.group.created_by == alice
    assert detail.last_message is None
    assert {p.user_id for p in detail.participants} == {alice, bob, carol}


async def test_group_with_invalid_member_rolls_back(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    ghost = await make_user("ghost")
    await UserService(db).delete_user(ghost)

    with pytest.raises(NotFoundException):
        await ConversationService(db).create_group_conversation(alice, "Team", [bob, ghost])

    assert (await db.execute(select(func.count()).select_from(Conversation))).scalar_one() == 0
    assert (await db.execute(select(func.count()).select_from(Participant))).scalar_one() == 0


async def test_group_name_is_required(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")

    with pytest.raises(ValidationException, match="name"):
        await ConversationService(db).create_group_conversation(alice, "   ", [bob])


async def test_remove_then_readd_participant_reuses_row(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    service = ConversationService(db)
    conversation = await service.create_group_conversation(alice, "Team", [bob, carol])
    conversation_id = conversation.id

    await service.remove_participant(conversation_id, carol)
    assert not await service.is_participant(conversation_id, carol)
    with pytest.raises(NotFoundException):
        await service.remove_participant(conversation_id, carol)

    participant = await service.add_participant(conversation_id, carol)
    assert participant.deleted_at is None
    assert participant.unread_count == 0

    with pytest.raises(ConflictException):
        await service.add_participant(conversation_id, carol)

    rows = await db.execute(
        select(func.count()).select_from(Participant).where(
            Participant.conversation_id == conversation_id,
            Participant.user_id == carol,
        )
    )
    assert rows.scalar_one() == 1


async def test_cannot_add_to_direct_conversation(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    service = ConversationService(db)
    conversation = await service.create_direct_conversation(alice, bob)
    conversation_id = conversation.id

    with pytest.raises(ValidationException):
        await service.add_participant(conversation_id, carol)


async def test_removed_participant_stops_receiving_unread(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    conversations = ConversationService(db)
    messages = MessageService(db)
    conversation = await conversations.create_group_conversation(alice, "Team", [bob, carol])
    conversation_id = conversation.id

    await conversations.remove_participant(conversation_id, carol)
    await messages.send_message(conversation_id, alice, content="hello")

    assert (await conversations.get_participant(conversation_id, bob)).unread_count == 1
    removed = await conversations.get_participant(conversation_id, carol, include_deleted=True)
    assert removed.unread_count == 0


async def test_mark_read(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    conversations = ConversationService(db)
    messages = MessageService(db)
    conversation = await conversations.create_direct_conversation(alice, bob)
    conversation_id = conversation.id

    await messages.send_message(conversation_id, alice, content="one")
    second = await messages.send_message(conversation_id, alice, content="two")
    second_id = second.id
    assert (await conversations.get_participant(conversation_id, bob)).unread_count == 2

    participant = await conversations.mark_read(conversation_id, bob, second_id)

    assert participant.unread_count == 0
    assert participant.last_seen_message_id == second_id


async def test_mark_read_errors(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    conversations = ConversationService(db)
    messages = MessageService(db)
    first = await conversations.create_direct_conversation(alice, bob)
    other = await conversations.create_direct_conversation(alice, carol)
    first_id, other_id = first.id, other.id
    message = await messages.send_message(other_id, alice, content="hi carol")
    message_id = message.id

    with pytest.raises(ValidationException):
        await conversations.mark_read(first_id, bob, message_id)
    with pytest.raises(ForbiddenException):
        await conversations.mark_read(other_id, bob, message_id)
    with pytest.raises(NotFoundException):
        await conversations.mark_read(other_id, carol, first_id)


async def test_mark_conversation_read(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    conversations = ConversationService(db)
    messages = MessageService(db)
    conversation = await conversations.create_direct_conversation(alice, bob)
    conversation_id = conversation.id

    # Nothing to read yet
    participant = await conversations.mark_conversation_read(conversation_id, bob)
    assert participant.last_seen_message_id is None

    await messages.send_message(conversation_id, alice, content="one")
    last = await messages.send_message(conversation_id, alice, content="two")
    last_id = last.id

    participant = await conversations.mark_conversation_read(conversation_id, bob)
    assert participant.unread_count == 0
    assert participant.last_seen_message_id == last_id


async def test_list_user_conversations_newest_activity_first(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    conversations = ConversationService(db)
    messages = MessageService(db)

    with_bob = await conversations.create_direct_conversation(alice, bob)
    with_carol = await conversations.create_direct_conversation(alice, carol)
    group = await conversations.create_group_conversation(alice, "All", [bob, carol])
    with_bob_id, with_carol_id, group_id = with_bob.id, with_carol.id, group.id

    await messages.send_message(with_carol_id, carol, content="first")
    await messages.send_message(with_bob_id, bob, content="latest")

    listed = await conversations.list_user_conversations(alice)

    assert [c.id for c in listed] == [with_bob_id, with_carol_id, group_id]
    assert listed[0].last_message.content == "latest"
    assert listed[0].unread_count == 1
    assert listed[2].group.name == "All"
    assert [c.id for c in await conversations.list_user_conversations(carol)] == [with_carol_id, group_id]


async def test_last_seen_message_cannot_be_hard_deleted(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    conversations = ConversationService(db)
    conversation = await conversations.create_direct_conversation(alice, bob)
    conversation_id = conversation.id
    message = await MessageService(db).send_message(conversation_id, alice, content="keep me")
    message_id = message.id
    await conversations.mark_read(conversation_id, bob, message_id)

    with pytest.raises(IntegrityError):
        await db.execute(
            delete(Message)
            .where(Message.id == message_id)
            .execution_options(synchronize_session=False)
        )
    await db.rollback()

    participant = await conversations.get_participant(conversation_id, bob)
    assert participant.last_seen_message_id == message_id
    assert (await db.execute(select(Message.id).where(Message.id == message_id))).scalar_one() == message_id

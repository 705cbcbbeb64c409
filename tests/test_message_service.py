"""
Ediens Backend — Message Service Unit Tests
=============================================

What:  Sending, reading, editing and deleting direct messages.
"""

import uuid

import pytest

from ediens.exceptions import NotFoundError, UnauthorizedError, ValidationError
from ediens.models.message import Message
from ediens.schemas.message import EditMessageRequest, SendMessageRequest
from ediens.services.message_service import message_service


async def send(session_factory, sender, receiver, content="Is the bread still there?", **fields):
    async with session_factory() as session:
        async with session.begin():
            return await message_service.send_message(
                session,
                sender.id,
                SendMessageRequest(receiver_id=receiver.id, content=content, **fields),
            )


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_send(self, session_factory, owner, claimant, post):
        sent = await send(session_factory, claimant, owner, "  Hello!  ", food_post_id=post.id)
        assert sent.content == "Hello!"
        assert sent.food_post_id == post.id
        assert sent.is_read is False

    @pytest.mark.asyncio
    async def test_cannot_message_yourself(self, session_factory, owner):
        with pytest.raises(ValidationError, match="yourself"):
            await send(session_factory, owner, owner)

    @pytest.mark.asyncio
    async def test_unknown_receiver(self, session_factory, owner):
        with pytest.raises(NotFoundError):
            async with session_factory() as session:
                await message_service.send_message(
                    session, owner.id, SendMessageRequest(receiver_id=uuid.uuid4(), content="Hi")
                )

    def test_location_needs_coordinates(self):
        with pytest.raises(ValueError):
            SendMessageRequest(receiver_id=uuid.uuid4(), content="Here", message_type="location")


class TestReading:

    @pytest.mark.asyncio
    async def test_conversation_marks_incoming_read(self, session_factory, owner, claimant):
        await send(session_factory, claimant, owner, "First")
        await send(session_factory, claimant, owner, "Second")
        await send(session_factory, owner, claimant, "Reply")

        async with session_factory() as session:
            async with session.begin():
                assert await message_service.unread_count(session, owner.id) == 2
                conversation = await message_service.get_conversation(session, owner.id, claimant.id)
            assert await message_service.unread_count(session, owner.id) == 0
            # The reply is still unread on the other side
            assert await message_service.unread_count(session, claimant.id) == 1

        assert conversation.total_count == 3
        assert [m.content for m in conversation.messages] == ["First", "Second", "Reply"]

    @pytest.mark.asyncio
    async def test_conversation_list(self, session_factory, owner, claimant, other_claimant):
        await send(session_factory, claimant, owner, "From Carl")
        await send(session_factory, other_claimant, owner, "From Sana")

        async with session_factory() as session:
            result = await message_service.list_conversations(session, owner.id)

        partners = [c.partner.id for c in result.conversations]
        assert partners == [other_claimant.id, claimant.id]
        assert all(c.unread_count == 1 for c in result.conversations)

    @pytest.mark.asyncio
    async def test_conversation_list_skips_deleted(self, session_factory, owner, claimant, other_claimant):
        await send(session_factory, claimant, owner, "Still available?")
        retracted = await send(session_factory, claimant, owner, "Never mind")
        gone = await send(session_factory, other_claimant, owner, "Wrong person")
        for sender, message in ((claimant, retracted), (other_claimant, gone)):
            async with session_factory() as session:
                async with session.begin():
                    await message_service.delete_message(session, sender.id, message.id)

        async with session_factory() as session:
            result = await message_service.list_conversations(session, owner.id)

        assert [c.partner.id for c in result.conversations] == [claimant.id]
        summary = result.conversations[0]
        assert summary.last_message.content == "Still available?"
        assert summary.unread_count == 1

    @pytest.mark.asyncio
    async def test_conversation_list_counts_only_incoming_unread(self, session_factory, owner, claimant):
        await send(session_factory, claimant, owner, "Hello")
        await send(session_factory, claimant, owner, "Are you there?")
        await send(session_factory, owner, claimant, "Yes, come by at 5")

        async with session_factory() as session:
            for_owner = await message_service.list_conversations(session, owner.id)
            for_claimant = await message_service.list_conversations(session, claimant.id)

        assert for_owner.conversations[0].unread_count == 2
        assert for_owner.conversations[0].last_message.content == "Yes, come by at 5"
        assert for_claimant.conversations[0].unread_count == 1



class TestEditAndDelete:

    @pytest.mark.asyncio
    async def test_edit_keeps_original(self, session_factory, owner, claimant):
        sent = await send(session_factory, claimant, owner, "Pickup at 5")
        async with session_factory() as session:
            async with session.begin():
                await message_service.edit_message(session, claimant.id, sent.id, EditMessageRequest(content="Pickup at 6"))
                edited = await message_service.edit_message(
                    session, claimant.id, sent.id, EditMessageRequest(content="Pickup at 7")
                )
            stored = await session.get(Message, sent.id)

        assert edited.content == "Pickup at 7 (edited)"
        assert stored.original_content == "Pickup at 5"

    @pytest.mark.asyncio
    async def test_only_sender_edits(self, session_factory, owner, claimant):
        sent = await send(session_factory, claimant, owner)
        with pytest.raises(UnauthorizedError):
            async with session_factory() as session:
                await message_service.edit_message(session, owner.id, sent.id, EditMessageRequest(content="Mine"))

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, session_factory, owner, claimant):
        sent = await send(session_factory, claimant, owner)
        async with session_factory() as session:
            async with session.begin():
                await message_service.delete_message(session, claimant.id, sent.id)
            conversation = await message_service.get_conversation(session, claimant.id, owner.id)

        assert conversation.messages[0].content == "[Message deleted]"
        assert conversation.messages[0].is_deleted is True

    @pytest.mark.asyncio
    async def test_deleted_message_cannot_be_edited(self, session_factory, owner, claimant):
        sent = await send(session_factory, claimant, owner)
        with pytest.raises(ValidationError):
            async with session_factory() as session:
                await message_service.delete_message(session, claimant.id, sent.id)
                await message_service.edit_message(session, claimant.id, sent.id, EditMessageRequest(content="Undo"))

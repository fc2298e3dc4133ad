"""Tests for MessageStream scoping, mutations and reload ordering."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from chatgenius.core.exceptions import MessageError
from chatgenius.services.assistant import AssistantClient
from chatgenius.services.client import ChatClient
from chatgenius.services.identity_storage import IdentityStorage
from tests.fakes.fake_store_gateway import FakeStoreGateway


def memory_storage():
    storage = MagicMock(spec=IdentityStorage)
    storage.load.return_value = None
    return storage


async def logged_in_client(gateway: FakeStoreGateway, name: str = "Ava") -> ChatClient:
    """A client logged in as ``name`` with #general active."""
    client = ChatClient(gateway, memory_storage(), assistant=AssistantClient(""), persist_debounce=0.01)
    await client.start()
    await client.session.login(name)
    await client.directory.set_active_channel(client.directory.channels[0])
    return client


def contents(client: ChatClient) -> list[str]:
    return [message.content for message in client.messages.messages]


class TestSendAndReceive:
    """Tests for sending and observing messages across clients."""

    @pytest.mark.asyncio
    async def test_send_appears_locally_at_once(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)

        message = await ava.messages.send_message("hello")

        assert contents(ava) == ["hello"]
        assert message.user_name == "Ava"
        assert message.user_id == ava.session.user_id
        await ava.close()

    @pytest.mark.asyncio
    async def test_other_member_receives(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway, "Ava")
        bo = await logged_in_client(gateway, "Bo")

        await ava.messages.send_message("hello")
        await gateway.drain()

        assert contents(bo) == ["hello"]
        assert bo.messages.messages[0].user_name == "Ava"
        # Not duplicated on the sender by the change-triggered reload
        assert contents(ava) == ["hello"]
        await ava.close()
        await bo.close()

    @pytest.mark.asyncio
    async def test_duplicate_notifications_are_harmless(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        bo = await logged_in_client(gateway, "Bo")
        await ava.messages.send_message("once")
        await gateway.drain()
        row = gateway.rows("messages")[0]

        payload = {"eventType": "INSERT", "table": "messages", "new": row}
        await gateway.publish_raw("messages", payload)
        await gateway.publish_raw("messages", payload)
        await gateway.drain()

        assert contents(bo) == ["once"]
        assert contents(ava) == ["once"]
        await ava.close()
        await bo.close()

    @pytest.mark.asyncio
    async def test_only_active_channel_messages(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        random = await ava.directory.create_channel("random")
        await gateway.drain()

        await ava.messages.send_message("in general")
        await ava.directory.set_active_channel(random)
        await ava.messages.send_message("in random")
        await gateway.drain()

        assert contents(ava) == ["in random"]
        assert ava.messages.key == (ava.session.user_id, random.id)
        assert [s.filter for s in ava.messages.subscriptions] == [("channel_id", random.id)]
        await ava.close()

    @pytest.mark.asyncio
    async def test_send_requires_active_channel(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        await ava.directory.set_active_channel(None)

        with pytest.raises(MessageError):
            await ava.messages.send_message("nowhere")

        assert not gateway.was_called("insert", "messages")
        assert ava.messages.messages == []
        await ava.close()

    @pytest.mark.asyncio
    async def test_send_failure_raises(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        gateway.fail_next("insert", "messages")

        with pytest.raises(MessageError, match="Failed to send message"):
            await ava.messages.send_message("lost")

        assert contents(ava) == []
        await ava.close()


class TestEditAndDelete:
    """Tests for edits and soft deletes."""

    @pytest.mark.asyncio
    async def test_edit_own_message(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        bo = await logged_in_client(gateway, "Bo")
        message = await ava.messages.send_message("helo")

        await ava.messages.edit_message(message.id, "hello")
        assert contents(ava) == ["hello"]

        await gateway.drain()
        assert contents(bo) == ["hello"]
        await ava.close()
        await bo.close()

    @pytest.mark.asyncio
    async def test_cannot_touch_other_users_messages(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        bo = await logged_in_client(gateway, "Bo")
        message = await ava.messages.send_message("mine")
        await gateway.drain()

        await bo.messages.edit_message(message.id, "hijacked")
        await bo.messages.delete_message(message.id)
        await gateway.drain()

        row = gateway.rows("messages")[0]
        assert row["content"] == "mine"
        assert row["deleted_at"] is None
        assert contents(ava) == ["mine"]
        assert contents(bo) == ["mine"]
        await ava.close()
        await bo.close()

    @pytest.mark.asyncio
    async def test_delete_is_soft(self):
        """Deleted messages stay in ``messages`` and drop out of ``visible_messages``."""
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        keep = await ava.messages.send_message("keep")
        gone = await ava.messages.send_message("gone")

        await ava.messages.delete_message(gone.id)
        assert [m.id for m in ava.messages.visible_messages] == [keep.id]

        await ava.messages.reload()
        assert [m.id for m in ava.messages.messages] == [keep.id, gone.id]
        assert ava.messages.messages[1].is_deleted
        assert [m.id for m in ava.messages.visible_messages] == [keep.id]
        await ava.close()

    @pytest.mark.asyncio
    async def test_edit_failure_raises(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        message = await ava.messages.send_message("text")
        gateway.fail_next("update", "messages")

        with pytest.raises(MessageError, match="Failed to edit message"):
            await ava.messages.edit_message(message.id, "new")
        await ava.close()

    @pytest.mark.asyncio
    async def test_mutations_require_user(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        message = await ava.messages.send_message("text")
        await ava.session.logout()

        with pytest.raises(MessageError):
            await ava.messages.edit_message(message.id, "new")
        with pytest.raises(MessageError):
            await ava.messages.delete_message(message.id)
        assert ava.messages.messages == []
        await ava.close()


class TestReloadOrdering:
    """Tests for ordering and stale response handling."""

    @settings(max_examples=25, deadline=None)
    @given(st.lists(st.integers(min_value=0, max_value=4), min_size=1, max_size=10))
    def test_ordered_by_created_at(self, offsets):
        """Ascending created_at; equal timestamps keep store order."""

        async def scenario():
            gateway = FakeStoreGateway()
            ava = await logged_in_client(gateway)
            base = datetime(2026, 1, 1, tzinfo=UTC)
            channel_id = ava.directory.active_channel.id
            for index, offset in enumerate(offsets):
                await gateway.insert("messages", {
                    "channel_id": channel_id,
                    "user_id": ava.session.user_id,
                    "content": str(index),
                    "created_at": base + timedelta(seconds=offset),
                })
            await gateway.drain()
            await ava.messages.reload()
            loaded = [int(m.content) for m in ava.messages.messages]
            await ava.close()
            return loaded

        loaded = asyncio.run(scenario())
        expected = [index for index, _ in sorted(enumerate(offsets), key=lambda pair: pair[1])]
        assert loaded == expected

    @pytest.mark.asyncio
    async def test_stale_response_is_discarded(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        general = ava.directory.active_channel
        random = await ava.directory.create_channel("random")
        await gateway.drain()
        await ava.messages.send_message("in general")
        await ava.directory.set_active_channel(random)
        await ava.messages.send_message("in random")
        await ava.directory.set_active_channel(general)

        hold = gateway.hold_next_select("messages")
        stale = asyncio.create_task(ava.messages.reload())
        await asyncio.sleep(0)
        await ava.directory.set_active_channel(random)
        assert contents(ava) == ["in random"]

        hold.set()
        await stale

        assert contents(ava) == ["in random"]
        assert ava.messages.key[1] == random.id
        await ava.close()

    @pytest.mark.asyncio
    async def test_load_failure_sets_error(self):
        gateway = FakeStoreGateway()
        ava = await logged_in_client(gateway)
        gateway.fail_next("select", "messages")

        await ava.messages.reload()

        assert ava.messages.error == "Failed to load messages"
        await ava.messages.reload()
        assert ava.messages.error is None
        await ava.close()


class TestAuthors:
    @pytest.mark.asyncio
    async def test_grouped_and_sorted_by_name(self):
        gateway = FakeStoreGateway()
        zed = await logged_in_client(gateway, "zed")
        ava = await logged_in_client(gateway, "Ava")
        await zed.messages.send_message("one")
        await ava.messages.send_message("two")
        await zed.messages.send_message("three")
        await gateway.drain()

        authors = ava.messages.authors()

        assert [a.name for a in authors] == ["Ava", "zed"]
        assert [m.content for m in authors[1].messages] == ["one", "three"]
        assert authors[1].id == zed.session.user_id
        await ava.close()
        await zed.close()

"""Tests for SessionStore login, persistence and presence."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from chatgenius.core.exceptions import AuthError
from chatgenius.models.channel import GENERAL_CHANNEL_ID
from chatgenius.models.user import UserStatus
from chatgenius.services.identity_storage import IdentityStorage
from chatgenius.services.session_store import (
    ANONYMOUS_ANIMALS,
    SessionState,
    SessionStore,
    generate_anonymous_name,
)
from tests.fakes.fake_store_gateway import FakeStoreGateway

FAST = {"online_delay": 0.02, "away_delay": 0.02, "persist_debounce": 0.02}


def make_store(tmp_path, gateway=None, **timers):
    gateway = gateway or FakeStoreGateway()
    storage = IdentityStorage(tmp_path / "chatgenius_user.json")
    store = SessionStore(gateway, storage, **{**FAST, **timers})
    return store, gateway, storage


def status_writes(gateway, status: UserStatus) -> int:
    return sum(
        1
        for call in gateway.calls
        if call.method == "update" and call.table == "users"
        and call.args["values"].get("status") == status.value
    )


class TestAnonymousNames:
    def test_one_of_the_animals(self):
        name = generate_anonymous_name()
        assert name.startswith("Anonymous ")
        assert name.removeprefix("Anonymous ") in ANONYMOUS_ANIMALS

    def test_alphabet_of_animals(self):
        assert len(ANONYMOUS_ANIMALS) == 26
        assert [animal[0] for animal in ANONYMOUS_ANIMALS] == [chr(c) for c in range(ord("A"), ord("Z") + 1)]


class TestInitialize:
    """Tests for restoring the persisted identity."""

    @pytest.mark.asyncio
    async def test_no_stored_user(self, tmp_path):
        store, _, _ = make_store(tmp_path)
        listener = AsyncMock()
        store.add_listener(listener)

        assert store.is_loading
        await store.initialize()

        assert store.state == SessionState.ANONYMOUS
        assert store.user is None
        assert not store.is_loading
        listener.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_restores_stored_user(self, tmp_path):
        store, gateway, storage = make_store(tmp_path)
        storage.save(json.dumps({"id": "u1", "name": "Ava", "isGuest": True, "status": "away"}))

        await store.initialize()

        assert store.is_authenticated
        assert store.user.id == "u1"
        assert store.user.status == UserStatus.AWAY
        assert gateway.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        ["{not json", json.dumps({"name": "Ava"}), json.dumps({"id": "u1"})],
    )
    async def test_malformed_payload_is_discarded(self, tmp_path, payload):
        store, _, storage = make_store(tmp_path)
        storage.save(payload)

        await store.initialize()

        assert store.state == SessionState.ANONYMOUS
        assert store.user is None
        assert storage.load() is None


class TestLogin:
    """Tests for find-or-create login."""

    @pytest.mark.asyncio
    async def test_new_guest_joins_general(self, tmp_path):
        store, gateway, storage = make_store(tmp_path)
        await store.initialize()

        user = await store.login("Ava")

        users = gateway.rows("users")
        assert len(users) == 1
        assert users[0]["name"] == "Ava"
        assert users[0]["is_guest"] is True
        assert users[0]["status"] == "online"
        assert gateway.rows("channel_members") == [
            {"channel_id": GENERAL_CHANNEL_ID, "user_id": users[0]["id"],
             "created_at": gateway.rows("channel_members")[0]["created_at"]}
        ]
        assert [c["name"] for c in gateway.rows("channels")] == ["general"]
        assert user.id == users[0]["id"]
        assert store.is_authenticated

        await asyncio.sleep(0.1)
        persisted = json.loads(storage.load())
        assert persisted == {"id": user.id, "name": "Ava", "isGuest": True, "status": "online"}

    @pytest.mark.asyncio
    async def test_existing_user_is_reused_and_set_online(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)
        existing = await gateway.insert("users", {"name": "Ava", "status": "offline"})

        user = await store.login("Ava")

        assert user.id == existing["id"]
        assert user.status == UserStatus.ONLINE
        assert len(gateway.rows("users")) == 1
        assert gateway.rows("users")[0]["status"] == "online"
        assert [m["channel_id"] for m in gateway.rows("channel_members")] == [GENERAL_CHANNEL_ID]
        await store.close()

    @pytest.mark.asyncio
    async def test_relogin_does_not_duplicate_membership(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)

        await store.login("Ava")
        await store.logout()
        await store.login("Ava")

        assert gateway.call_count("insert", "channel_members") == 1
        assert len(gateway.rows("channel_members")) == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_failed_first_join_is_repaired_on_next_login(self, tmp_path):
        """Every active user ends up in #general, even after a failed first login."""
        store, gateway, _ = make_store(tmp_path)
        gateway.fail_next("insert", "channel_members")

        with pytest.raises(AuthError):
            await store.login("Ava")
        assert len(gateway.rows("users")) == 1
        assert gateway.rows("channel_members") == []

        user = await store.login("Ava")

        assert len(gateway.rows("users")) == 1
        assert [(m["channel_id"], m["user_id"]) for m in gateway.rows("channel_members")] == [
            (GENERAL_CHANNEL_ID, user.id)
        ]
        await store.close()

    @pytest.mark.asyncio
    async def test_concurrent_join_is_tolerated(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)
        existing = await gateway.insert("users", {"name": "Ava"})
        gateway.fail_next("insert", "channel_members", code="23505")

        user = await store.login("Ava")

        assert user.id == existing["id"]
        assert store.is_authenticated
        await store.close()

    @pytest.mark.asyncio
    async def test_general_channel_created_once(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)

        await store.login("Ava")
        await store.logout()
        await store.login("Bo")

        assert len(gateway.rows("channels")) == 1
        assert len(gateway.rows("channel_members")) == 2
        await store.close()

    @pytest.mark.asyncio
    async def test_general_channel_race_is_tolerated(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)
        gateway.fail_next("insert", "channels", code="23505")

        await store.login("Ava")

        assert len(gateway.rows("channel_members")) == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_default_name_is_anonymous_animal(self, tmp_path):
        store, _, _ = make_store(tmp_path)

        user = await store.login("   ")

        assert user.name.startswith("Anonymous ")
        await store.close()

    @pytest.mark.asyncio
    async def test_storage_failure_raises_auth_error(self, tmp_path):
        store, gateway, storage = make_store(tmp_path)
        await store.initialize()
        gateway.fail_next("select", "users")

        with pytest.raises(AuthError):
            await store.login("Ava")

        assert store.state == SessionState.ANONYMOUS
        assert store.user is None
        assert storage.load() is None


class TestLogout:
    """Tests for logout."""

    @pytest.mark.asyncio
    async def test_marks_offline_and_clears_storage(self, tmp_path):
        store, gateway, storage = make_store(tmp_path)
        await store.login("Ava")
        await asyncio.sleep(0.1)
        assert storage.load() is not None

        await store.logout()

        assert gateway.rows("users")[0]["status"] == "offline"
        assert storage.load() is None
        assert store.state == SessionState.ANONYMOUS
        assert store.user_id is None

    @pytest.mark.asyncio
    async def test_offline_write_is_best_effort(self, tmp_path):
        store, gateway, storage = make_store(tmp_path)
        await store.login("Ava")
        gateway.fail_next("update", "users")

        await store.logout()

        assert store.state == SessionState.ANONYMOUS
        assert storage.load() is None

    @pytest.mark.asyncio
    async def test_pending_persist_is_dropped(self, tmp_path):
        store, _, storage = make_store(tmp_path, persist_debounce=0.05)
        await store.login("Ava")

        await store.logout()
        await asyncio.sleep(0.1)

        assert storage.load() is None


class TestPresence:
    """Tests for focus/blur debounced presence."""

    @pytest.mark.asyncio
    async def test_set_status_writes_once(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)
        await store.login("Ava")

        await store.set_status(UserStatus.AWAY)
        await store.set_status(UserStatus.AWAY)

        assert status_writes(gateway, UserStatus.AWAY) == 1
        assert store.user.status == UserStatus.AWAY
        assert gateway.rows("users")[0]["status"] == "away"
        await store.close()

    @pytest.mark.asyncio
    async def test_set_status_without_user_is_noop(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)

        await store.set_status(UserStatus.AWAY)

        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_focus_goes_online_after_delay(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)
        await store.login("Ava")
        await store.set_status(UserStatus.AWAY)

        store.on_focus()
        assert store.user.status == UserStatus.AWAY
        await asyncio.sleep(0.1)

        assert store.user.status == UserStatus.ONLINE
        await store.close()

    @pytest.mark.asyncio
    async def test_focus_then_quick_blur_never_goes_online(self, tmp_path):
        store, gateway, _ = make_store(tmp_path, online_delay=0.05, away_delay=0.05)
        await store.login("Ava")
        await store.set_status(UserStatus.AWAY)

        store.on_focus()
        await asyncio.sleep(0.01)
        store.on_blur()
        await asyncio.sleep(0.15)

        # Only the login write set the user online
        assert status_writes(gateway, UserStatus.ONLINE) == 0
        assert store.user.status == UserStatus.AWAY
        await store.close()

    @pytest.mark.asyncio
    async def test_blur_goes_away_after_delay(self, tmp_path):
        store, gateway, _ = make_store(tmp_path)
        await store.login("Ava")

        store.on_blur()
        await asyncio.sleep(0.1)

        assert store.user.status == UserStatus.AWAY
        assert gateway.rows("users")[0]["status"] == "away"
        await store.close()


class TestPersistence:
    """Tests for debounced, deduplicated identity writes."""

    @pytest.mark.asyncio
    async def test_no_redundant_writes(self, tmp_path):
        store, _, storage = make_store(tmp_path)
        await store.login("Ava")
        await asyncio.sleep(0.1)

        with patch.object(storage, "save", wraps=storage.save) as mock_save:
            # Flips back to the persisted state before the debounce fires
            await store.set_status(UserStatus.AWAY)
            await store.set_status(UserStatus.ONLINE)
            await asyncio.sleep(0.1)

        mock_save.assert_not_called()
        await store.close()

    @pytest.mark.asyncio
    async def test_burst_of_changes_written_once(self, tmp_path):
        store, _, storage = make_store(tmp_path)
        await store.login("Ava")
        await asyncio.sleep(0.1)

        with patch.object(storage, "save", wraps=storage.save) as mock_save:
            await store.set_status(UserStatus.AWAY)
            await store.set_status(UserStatus.OFFLINE)
            await asyncio.sleep(0.1)

        mock_save.assert_called_once()
        assert json.loads(storage.load())["status"] == "offline"
        await store.close()

    @pytest.mark.asyncio
    async def test_close_flushes_pending_persist(self, tmp_path):
        store, _, storage = make_store(tmp_path, persist_debounce=10)
        await store.login("Ava")
        assert storage.load() is None

        await store.close()

        assert json.loads(storage.load())["name"] == "Ava"

    def test_persist_now_is_idempotent(self, tmp_path):
        store, _, storage = make_store(tmp_path)

        assert store.persist_now() is False
        assert storage.load() is None

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(self, tmp_path, caplog):
        store, _, storage = make_store(tmp_path)

        with patch.object(storage, "save", side_effect=OSError("disk full")):
            await store.login("Ava")
            await asyncio.sleep(0.1)

        assert store.is_authenticated
        assert storage.load() is None
        assert "Could not persist user to storage: disk full" in caplog.text
        await store.close()

    @pytest.mark.asyncio
    async def test_close_tolerates_write_failure(self, tmp_path, caplog):
        store, _, storage = make_store(tmp_path, persist_debounce=10)
        await store.login("Ava")

        with patch.object(storage, "save", side_effect=OSError("read-only")):
            await store.close()

        assert storage.load() is None
        assert "Could not persist user to storage: read-only" in caplog.text

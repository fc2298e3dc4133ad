"""Chat client: the services wired together in dependency order."""

import logging

from chatgenius.core.config import Settings, get_settings
from chatgenius.services.assistant import AssistantClient
from chatgenius.services.channel_directory import ChannelDirectory
from chatgenius.services.channel_roster import ChannelRoster
from chatgenius.services.identity_storage import IdentityStorage
from chatgenius.services.message_stream import MessageStream
from chatgenius.services.session_store import SessionStore
from chatgenius.services.store_gateway import StoreGateway

logger = logging.getLogger(__name__)


class ChatClient:
    """Session -> channel directory -> message stream / roster.

    Usage:
        client = ChatClient.from_settings()
        await client.start()
        await client.session.login("Ava")
        ...
        await client.close()
    """

    def __init__(
        self,
        gateway: StoreGateway,
        storage: IdentityStorage,
        assistant: AssistantClient | None = None,
        online_delay: float = 2.0,
        away_delay: float = 5.0,
        persist_debounce: float = 1.0,
    ):
        self.gateway = gateway
        self.session = SessionStore(
            gateway,
            storage,
            online_delay=online_delay,
            away_delay=away_delay,
            persist_debounce=persist_debounce,
        )
        self.directory = ChannelDirectory(self.session, gateway)
        self.messages = MessageStream(self.session, self.directory, gateway)
        self.roster = ChannelRoster(self.session, self.directory, gateway)
        self.assistant = assistant or AssistantClient("")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ChatClient":
        """Build a client from settings.

        Raises:
            pydantic.ValidationError: If DATABASE_URL or REDIS_URL is missing.
        """
        settings = settings or get_settings()
        return cls(
            gateway=StoreGateway.from_settings(settings),
            storage=IdentityStorage(settings.identity_file),
            assistant=AssistantClient(
                settings.assistant_api_url,
                timeout=settings.assistant_timeout_seconds,
            ),
            online_delay=settings.presence_online_delay_seconds,
            away_delay=settings.presence_away_delay_seconds,
            persist_debounce=settings.persist_debounce_seconds,
        )

    async def start(self) -> None:
        """Restore the session; dependents load through their listeners."""
        await self.session.initialize()
        logger.info(f"Chat client started (session {self.session.state.value})")

    async def close(self) -> None:
        """Stop every subscription, flush persistence and release connections."""
        await self.roster.close()
        await self.messages.close()
        await self.directory.close()
        await self.session.close()
        await self.gateway.close()
        logger.info("Chat client closed")

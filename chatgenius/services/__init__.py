"""Client-side synchronization services."""

from chatgenius.services.assistant import AssistantClient
from chatgenius.services.channel_directory import ChannelDirectory
from chatgenius.services.channel_roster import ChannelRoster
from chatgenius.services.client import ChatClient
from chatgenius.services.field_mapper import from_storage_fields, to_storage_fields
from chatgenius.services.identity_storage import IdentityStorage
from chatgenius.services.message_stream import MessageStream
from chatgenius.services.session_store import SessionState, SessionStore
from chatgenius.services.store_gateway import StoreGateway
from chatgenius.services.subscription import Subscription

__all__ = [
    "AssistantClient",
    "ChannelDirectory",
    "ChannelRoster",
    "ChatClient",
    "IdentityStorage",
    "MessageStream",
    "SessionState",
    "SessionStore",
    "StoreGateway",
    "Subscription",
    "from_storage_fields",
    "to_storage_fields",
]

"""Services package."""

from tokenhub.services.encryption_service import EncryptionService
from tokenhub.services.channel_service import ChannelService
from tokenhub.services.channel_select import ChannelSelector
from tokenhub.services.channel_store import ChannelStore, DatabaseChannelStore, InMemoryChannelStore
from tokenhub.services.group_settings import GroupSettings, group_settings
from tokenhub.services.request_context import ContextKey, RequestContext
from tokenhub.services.token_service import TokenRequest, TokenService

__all__ = [
    "EncryptionService",
    "ChannelService",
    "ChannelSelector",
    "ChannelStore",
    "DatabaseChannelStore",
    "InMemoryChannelStore",
    "GroupSettings",
    "group_settings",
    "ContextKey",
    "RequestContext",
    "TokenRequest",
    "TokenService",
]

"""Database models package."""

from tokenhub.models.user import User
from tokenhub.models.token import Token, TokenStatus, GroupPriority
from tokenhub.models.channel import Channel, ChannelStatus

__all__ = [
    "User",
    "Token",
    "TokenStatus",
    "GroupPriority",
    "Channel",
    "ChannelStatus",
]

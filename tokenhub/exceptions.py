"""Error types raised by the token and channel-selection services."""

from enum import Enum
from typing import Optional


class TokenHubError(Exception):
    """Base class for all tokenhub errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class PriorityListErrorReason(str, Enum):
    """Why a group priority list was rejected."""

    EMPTY_GROUP = "empty_group"
    NON_POSITIVE_PRIORITY = "non_positive_priority"
    DUPLICATE_GROUP = "duplicate_group"
    TOO_MANY_GROUPS = "too_many_groups"


class InvalidPriorityListError(TokenHubError, ValueError):
    """A proposed priority list failed validation."""

    def __init__(self, reason: PriorityListErrorReason, message: str, group: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.group = group


class MalformedPriorityListError(TokenHubError, ValueError):
    """The stored priority list could not be parsed."""

    def __init__(self, raw: str, cause: Optional[Exception] = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"invalid group priorities{detail}")
        self.raw = raw
        self.cause = cause


class UnauthorizedGroupError(TokenHubError):
    """The caller referenced a group outside their usable set."""

    def __init__(self, group: str):
        super().__init__(f"无权访问分组: {group}")
        self.group = group


class ChannelSelectionError(TokenHubError):
    """Base class for selector failures returned after the full walk."""


class AutoGroupsDisabledError(ChannelSelectionError):
    """The auto sentinel was used while no auto groups are configured."""

    def __init__(self):
        super().__init__("auto groups is not enabled")


class AllGroupsFailedError(ChannelSelectionError):
    """Every attempted group yielded no channel."""

    def __init__(self):
        super().__init__("all configured groups failed")


class NoAvailableFallbackGroupError(ChannelSelectionError):
    """Ratio fallback found no eligible candidate group."""

    def __init__(self):
        super().__init__("no available fallback group")


class ChannelStoreError(TokenHubError):
    """The channel store failed to answer a query."""


class NoChannelAvailableError(ChannelStoreError):
    """No enabled channel serves the model in the group."""

    def __init__(self, group: str, model: str):
        super().__init__(f"no available channel for model {model} under group {group}")
        self.group = group
        self.model = model


class TokenValidationError(TokenHubError, ValueError):
    """A token write was rejected; the message is shown to the user."""

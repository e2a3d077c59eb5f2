"""Token database model and group priority list codec."""

import json
import logging
from enum import IntEnum
from typing import Iterable, List, Optional
from pydantic import BaseModel, StrictInt, StrictStr, ValidationError
from sqlalchemy import Column, Integer, String, Boolean, Text, BigInteger, ForeignKey
from sqlalchemy.orm import relationship, backref

from tokenhub.config import settings
from tokenhub.database.database import Base
from tokenhub.exceptions import (
    InvalidPriorityListError,
    MalformedPriorityListError,
    PriorityListErrorReason,
)

logger = logging.getLogger(__name__)

NEVER_EXPIRES = -1


class TokenStatus(IntEnum):
    """Token lifecycle states."""

    ENABLED = 1
    DISABLED = 2
    EXPIRED = 3
    EXHAUSTED = 4


class GroupPriority(BaseModel):
    """One entry of a token's group preference list.

    ``priority`` is a rank: lower values are tried first.
    """

    group: StrictStr
    priority: StrictInt


def normalize_group_priorities(
    priorities: Iterable[GroupPriority],
    max_groups: Optional[int] = None
) -> List[GroupPriority]:
    """Trim, validate and stable-sort a proposed priority list.

    Args:
        priorities: Entries in caller order.
        max_groups: Upper bound on list length. Defaults to
            ``settings.max_group_priorities``.

    Returns:
        New list sorted ascending by priority; ties keep input order.

    Raises:
        InvalidPriorityListError: On an empty group name, a priority below 1,
            a duplicate group, or too many entries.
    """
    limit = settings.max_group_priorities if max_groups is None else max_groups
    items = list(priorities)

    if len(items) > limit:
        raise InvalidPriorityListError(
            PriorityListErrorReason.TOO_MANY_GROUPS,
            f"分组数量不能超过 {limit} 个",
        )

    seen = set()
    normalized = []
    for item in items:
        group = item.group.strip()
        if not group:
            raise InvalidPriorityListError(
                PriorityListErrorReason.EMPTY_GROUP,
                "分组名称不能为空",
            )
        if item.priority < 1:
            raise InvalidPriorityListError(
                PriorityListErrorReason.NON_POSITIVE_PRIORITY,
                f"分组 {group} 的优先级必须大于等于 1",
                group=group,
            )
        if group in seen:
            raise InvalidPriorityListError(
                PriorityListErrorReason.DUPLICATE_GROUP,
                f"分组重复: {group}",
                group=group,
            )
        seen.add(group)
        normalized.append(GroupPriority(group=group, priority=item.priority))

    # list.sort is stable
    normalized.sort(key=lambda p: p.priority)
    return normalized


def serialize_group_priorities(priorities: List[GroupPriority]) -> str:
    """Encode a priority list as the compact JSON array stored on the token row."""
    if not priorities:
        return ""
    return json.dumps(
        [{"group": p.group, "priority": p.priority} for p in priorities],
        ensure_ascii=False,
        separators=(",", ":"),
    )


def parse_group_priorities(raw: str) -> List[GroupPriority]:
    """Decode a stored priority list, sorted ascending by priority.

    Raises:
        MalformedPriorityListError: If ``raw`` is not a JSON array of
            ``{"group", "priority"}`` objects.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedPriorityListError(raw, e)

    if not isinstance(data, list):
        raise MalformedPriorityListError(raw, TypeError("expected a JSON array"))

    try:
        priorities = [GroupPriority.model_validate(item) for item in data]
    except ValidationError as e:
        raise MalformedPriorityListError(raw, e)

    priorities.sort(key=lambda p: p.priority)
    return priorities


class Token(Base):
    """API key owned by a user, with its group routing preferences."""

    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(48), nullable=False, unique=True, index=True)
    status = Column(Integer, nullable=False, default=TokenStatus.ENABLED)
    name = Column(String, nullable=False, default="", index=True)
    created_time = Column(BigInteger, nullable=False, default=0)
    accessed_time = Column(BigInteger, nullable=False, default=0)
    expired_time = Column(BigInteger, nullable=False, default=NEVER_EXPIRES)
    remain_quota = Column(Integer, nullable=False, default=0)
    used_quota = Column(Integer, nullable=False, default=0)
    unlimited_quota = Column(Boolean, nullable=False, default=False)
    model_limits_enabled = Column(Boolean, nullable=False, default=False)
    model_limits = Column(String, nullable=False, default="")
    allow_ips = Column(String, nullable=True)
    group = Column(String, nullable=False, default="")
    group_priorities = Column(Text, nullable=False, default="")
    auto_smart_group = Column(Boolean, nullable=False, default=False)

    user = relationship("User", backref=backref("tokens", cascade="all, delete-orphan", passive_deletes=True))

    def set_group_priorities(
        self,
        priorities: Iterable[GroupPriority],
        max_groups: Optional[int] = None
    ) -> None:
        """Validate and store a priority list, syncing ``group`` to its first entry.

        An empty list clears ``group_priorities`` and leaves ``group`` as is.
        Nothing is modified when validation fails.

        Raises:
            InvalidPriorityListError: See ``normalize_group_priorities``.
        """
        normalized = normalize_group_priorities(priorities, max_groups)
        if not normalized:
            self.group_priorities = ""
            return
        self.group_priorities = serialize_group_priorities(normalized)
        self.group = normalized[0].group

    def get_group_priorities(self) -> List[GroupPriority]:
        """Return the priority list sorted ascending by priority.

        Tokens without a stored list fall back to ``[(group, 1)]``, or to an
        empty list when ``group`` is empty too.

        Raises:
            MalformedPriorityListError: If the stored JSON cannot be parsed.
        """
        if not self.group_priorities:
            if self.group:
                return [GroupPriority(group=self.group, priority=1)]
            return []
        return parse_group_priorities(self.group_priorities)

    def stored_group_priorities(self) -> List[GroupPriority]:
        """Parsed stored list without the ``group`` fallback; empty when unreadable."""
        if not self.group_priorities:
            return []
        try:
            return parse_group_priorities(self.group_priorities)
        except MalformedPriorityListError as e:
            logger.error(f"Token {self.id} has malformed group priorities: {e}")
            return []

    def model_limits_map(self) -> dict:
        """Model limits as a ``{model: True}`` mapping."""
        if not self.model_limits:
            return {}
        return {name.strip(): True for name in self.model_limits.split(",") if name.strip()}

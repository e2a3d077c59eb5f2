"""Channel database model."""

from enum import IntEnum
from typing import List
from sqlalchemy import Column, Integer, String, Index
from tokenhub.database.database import Base


class ChannelStatus(IntEnum):
    """Channel availability states."""

    ENABLED = 1
    MANUALLY_DISABLED = 2
    AUTO_DISABLED = 3


def split_csv(value: str) -> List[str]:
    """Split a comma-separated column into trimmed, non-empty names."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Channel(Base):
    """Upstream provider binding serving a set of models for a set of groups."""

    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    channel_type = Column(String, nullable=False, default="openai")
    base_url = Column(String, nullable=False, default="")
    api_key_encrypted = Column(String, nullable=False)
    status = Column(Integer, nullable=False, default=ChannelStatus.ENABLED)
    group = Column(String, nullable=False, default="default")  # comma-separated
    models = Column(String, nullable=False, default="")  # comma-separated
    priority = Column(Integer, nullable=False, default=0)
    weight = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_channels_status", "status"),
    )

    def group_list(self) -> List[str]:
        return split_csv(self.group)

    def model_list(self) -> List[str]:
        return split_csv(self.models)

    def serves(self, group: str, model: str) -> bool:
        """Whether this channel can answer ``model`` for ``group``."""
        return group in self.group_list() and model in self.model_list()

    def __repr__(self) -> str:
        return f"<Channel id={self.id} name={self.name!r} group={self.group!r}>"

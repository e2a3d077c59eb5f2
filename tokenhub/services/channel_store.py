"""Channel stores answering "give me a channel for this group and model"."""

import logging
import random
from typing import Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenhub.exceptions import ChannelStoreError
from tokenhub.models.channel import Channel, ChannelStatus

logger = logging.getLogger(__name__)

# Added to every weight so zero-weight channels can still be picked
WEIGHT_SMOOTHING = 10


class ChannelStore(Protocol):
    """The only store operation channel selection depends on."""

    def random_satisfied_channel(self, group: str, model: str, retry: int) -> Optional[Channel]:
        """Pick a channel serving ``model`` in ``group``, or ``None``.

        Raises:
            ChannelStoreError: If the backend cannot answer.
        """
        ...


def pick_weighted(channels: List[Channel], retry: int, rng: random.Random) -> Optional[Channel]:
    """Pick from the ``retry``-th priority tier, weighted by channel weight.

    Tiers are distinct priorities sorted highest first; a retry past the last
    tier stays on the last one.
    """
    if not channels:
        return None

    priorities = sorted({c.priority or 0 for c in channels}, reverse=True)
    tier = priorities[min(max(retry, 0), len(priorities) - 1)]
    candidates = [c for c in channels if (c.priority or 0) == tier]

    weights = [max(c.weight or 0, 0) + WEIGHT_SMOOTHING for c in candidates]
    return rng.choices(candidates, weights=weights, k=1)[0]


class DatabaseChannelStore:
    """Channel store backed by the ``channels`` table."""

    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        """Initialize the store.

        Args:
            db: Database session.
            rng: Random source for the weighted pick (seedable in tests).
        """
        self.db = db
        self.rng = rng or random.Random()

    def list_satisfied_channels(self, group: str, model: str) -> List[Channel]:
        """Enabled channels whose group and model lists contain the given names."""
        try:
            # Coarse LIKE filter in SQL, exact match on the split lists below
            rows = self.db.query(Channel).filter(
                Channel.status == ChannelStatus.ENABLED,
                Channel.group.contains(group),
                Channel.models.contains(model),
            ).order_by(Channel.id).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to query channels for group {group}, model {model}: {e}")
            raise ChannelStoreError(f"channel query failed: {e}")
        return [channel for channel in rows if channel.serves(group, model)]

    def random_satisfied_channel(self, group: str, model: str, retry: int) -> Optional[Channel]:
        channels = self.list_satisfied_channels(group, model)
        channel = pick_weighted(channels, retry, self.rng)
        if channel is None:
            logger.debug(f"No channel for model {model} in group {group}")
        return channel


class InMemoryChannelStore:
    """Channel store over a fixed ``{(group, model): [channels]}`` mapping."""

    def __init__(
        self,
        channels: Optional[Dict[Tuple[str, str], List[Channel]]] = None,
        rng: Optional[random.Random] = None
    ):
        self.channels: Dict[Tuple[str, str], List[Channel]] = dict(channels or {})
        self.rng = rng or random.Random()

    def add(self, channel: Channel) -> None:
        """Index ``channel`` under every (group, model) pair it serves."""
        for group in channel.group_list():
            for model in channel.model_list():
                self.channels.setdefault((group, model), []).append(channel)

    def random_satisfied_channel(self, group: str, model: str, retry: int) -> Optional[Channel]:
        enabled = [
            c for c in self.channels.get((group, model), [])
            if c.status in (None, ChannelStatus.ENABLED)
        ]
        return pick_weighted(enabled, retry, self.rng)

"""Channel service for managing upstream channels."""

import logging
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from tokenhub.models.channel import Channel, ChannelStatus, split_csv
from tokenhub.services.encryption_service import EncryptionService, mask_secret

logger = logging.getLogger(__name__)


def join_csv(values: Iterable[str]) -> str:
    """Join names into the comma-separated column format, dropping blanks and repeats."""
    result = []
    for value in values:
        name = value.strip()
        if name and name not in result:
            result.append(name)
    return ",".join(result)


class ChannelService:
    """Service for managing upstream channels."""

    def __init__(self, encryption_service: EncryptionService):
        """Initialize channel service.

        Args:
            encryption_service: Service for encrypting/decrypting API keys.
        """
        self.encryption_service = encryption_service

    def add_channel(
        self,
        db: Session,
        name: str,
        api_key: str,
        groups: List[str],
        models: List[str],
        base_url: str = "",
        channel_type: str = "openai",
        priority: int = 0,
        weight: int = 0
    ) -> Channel:
        """Add a channel with an encrypted API key.

        Args:
            db: Database session.
            name: Channel name.
            api_key: Upstream API key (will be encrypted).
            groups: Groups the channel serves.
            models: Models the channel serves.
            base_url: Upstream base URL.
            channel_type: Upstream API flavour.
            priority: Tier for retries; higher is tried first.
            weight: Relative weight within a tier.

        Returns:
            The created Channel instance.

        Raises:
            ValueError: If no group or no model is given, or the weight is negative.
        """
        group_csv = join_csv(groups)
        model_csv = join_csv(models)
        if not group_csv:
            raise ValueError("Channel must belong to at least one group")
        if not model_csv:
            raise ValueError("Channel must serve at least one model")
        if weight < 0:
            raise ValueError("Channel weight must not be negative")

        channel = Channel(
            name=name,
            channel_type=channel_type,
            base_url=base_url,
            api_key_encrypted=self.encryption_service.encrypt(api_key),
            status=ChannelStatus.ENABLED,
            group=group_csv,
            models=model_csv,
            priority=priority,
            weight=weight,
        )

        try:
            db.add(channel)
            db.commit()
            db.refresh(channel)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to add channel '{name}': {e}")
            raise
        logger.info(f"Channel '{name}' added for groups {group_csv}")
        return channel

    def get_channel(self, db: Session, channel_id: int) -> Optional[Channel]:
        return db.query(Channel).filter(Channel.id == channel_id).first()

    def list_channels(self, db: Session) -> List[dict]:
        """List all channels with masked API keys."""
        result = []
        for channel in db.query(Channel).order_by(Channel.id).all():
            try:
                masked_key = mask_secret(self.encryption_service.decrypt(channel.api_key_encrypted))
            except Exception as e:
                logger.error(f"Failed to decrypt API key for channel {channel.id}: {e}")
                masked_key = "***ERROR***"
            result.append({
                "id": channel.id,
                "name": channel.name,
                "channel_type": channel.channel_type,
                "base_url": channel.base_url,
                "api_key_masked": masked_key,
                "status": channel.status,
                "groups": split_csv(channel.group),
                "models": split_csv(channel.models),
                "priority": channel.priority,
                "weight": channel.weight,
            })
        return result

    def get_decrypted_key(self, db: Session, channel_id: int) -> Optional[str]:
        """Decrypted upstream key for a channel, or None if the channel doesn't exist."""
        channel = self.get_channel(db, channel_id)
        if not channel:
            return None
        return self.encryption_service.decrypt(channel.api_key_encrypted)

    def set_status(self, db: Session, channel_id: int, status: ChannelStatus) -> Optional[Channel]:
        channel = self.get_channel(db, channel_id)
        if not channel:
            return None
        channel.status = status
        try:
            db.commit()
            db.refresh(channel)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to update channel {channel_id} status: {e}")
            raise
        logger.info(f"Channel {channel_id} status set to {status.name}")
        return channel

    def delete_channel(self, db: Session, channel_id: int) -> bool:
        """Delete a channel.

        Returns:
            True if deleted, False if channel not found.
        """
        channel = self.get_channel(db, channel_id)
        if not channel:
            return False
        try:
            db.delete(channel)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to delete channel {channel_id}: {e}")
            raise
        logger.info(f"Channel {channel_id} deleted successfully")
        return True

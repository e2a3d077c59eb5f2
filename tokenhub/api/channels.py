"""Channel admin API endpoints."""

from typing import List
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tokenhub.database.database import get_db
from tokenhub.models.channel import ChannelStatus
from tokenhub.services.channel_service import ChannelService
from tokenhub.services.encryption_service import EncryptionService

router = APIRouter(prefix="/api/channel", tags=["channels"])


class ChannelCreate(BaseModel):
    """Channel creation request."""

    name: str
    api_key: str
    groups: List[str]
    models: List[str]
    base_url: str = ""
    channel_type: str = "openai"
    priority: int = 0
    weight: int = Field(0, ge=0)


class ChannelStatusUpdate(BaseModel):
    """Channel status change request."""

    status: ChannelStatus


class ChannelResponse(BaseModel):
    """Channel response."""

    id: int
    name: str
    channel_type: str
    base_url: str
    api_key_masked: str
    status: int
    groups: List[str]
    models: List[str]
    priority: int
    weight: int


def get_channel_service() -> ChannelService:
    """Get channel service instance."""
    return ChannelService(EncryptionService())


@router.post("", response_model=ChannelResponse, status_code=201)
async def create_channel(
    channel: ChannelCreate,
    db: Session = Depends(get_db),
    service: ChannelService = Depends(get_channel_service)
):
    """Create a channel. The upstream API key is encrypted at rest."""
    try:
        created = service.add_channel(
            db,
            name=channel.name,
            api_key=channel.api_key,
            groups=channel.groups,
            models=channel.models,
            base_url=channel.base_url,
            channel_type=channel.channel_type,
            priority=channel.priority,
            weight=channel.weight,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create channel: {str(e)}")

    listed = next((c for c in service.list_channels(db) if c["id"] == created.id), None)
    if listed is None:
        raise HTTPException(status_code=500, detail="Channel disappeared after creation")
    return ChannelResponse(**listed)


@router.get("", response_model=List[ChannelResponse])
async def list_channels(
    db: Session = Depends(get_db),
    service: ChannelService = Depends(get_channel_service)
):
    """List all channels with masked API keys."""
    try:
        return [ChannelResponse(**c) for c in service.list_channels(db)]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list channels: {str(e)}")


@router.put("/{channel_id}/status", response_model=ChannelResponse)
async def update_channel_status(
    channel_id: int,
    update: ChannelStatusUpdate,
    db: Session = Depends(get_db),
    service: ChannelService = Depends(get_channel_service)
):
    """Enable or disable a channel."""
    channel = service.set_status(db, channel_id, update.status)
    if not channel:
        raise HTTPException(status_code=404, detail=f"Channel {channel_id} not found")
    listed = next(c for c in service.list_channels(db) if c["id"] == channel_id)
    return ChannelResponse(**listed)


@router.delete("/{channel_id}", status_code=204)
async def delete_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    service: ChannelService = Depends(get_channel_service)
):
    """Delete a channel."""
    try:
        deleted = service.delete_channel(db, channel_id)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete channel: {str(e)}")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Channel {channel_id} not found")
    return None

"""Tests for channel service."""

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tokenhub.database.database import Base
from tokenhub.models.channel import Channel, ChannelStatus
from tokenhub.services.channel_service import ChannelService, join_csv
from tokenhub.services.encryption_service import EncryptionService


@pytest.fixture
def test_db():
    """Create a test database."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()


@pytest.fixture
def encryption_service():
    """Create encryption service with test key."""
    return EncryptionService(key=Fernet.generate_key().decode())


@pytest.fixture
def channel_service(encryption_service):
    """Create channel service."""
    return ChannelService(encryption_service)


def test_add_channel(test_db, channel_service, encryption_service):
    """Test adding a channel with encrypted API key."""
    channel = channel_service.add_channel(
        test_db,
        name="openai-main",
        api_key="sk-test-key-123",
        groups=["default", " vip "],
        models=["gpt-4o", "gpt-4o-mini"],
        base_url="https://api.openai.com/v1",
        priority=5,
        weight=10,
    )

    assert channel.id is not None
    assert channel.group == "default,vip"
    assert channel.models == "gpt-4o,gpt-4o-mini"
    assert channel.status == ChannelStatus.ENABLED
    assert channel.api_key_encrypted != "sk-test-key-123"
    assert encryption_service.decrypt(channel.api_key_encrypted) == "sk-test-key-123"


def test_add_channel_requires_group(test_db, channel_service):
    """Test a channel without groups is rejected."""
    with pytest.raises(ValueError, match="at least one group"):
        channel_service.add_channel(test_db, name="c", api_key="k", groups=[" "], models=["gpt-4o"])


def test_add_channel_requires_model(test_db, channel_service):
    """Test a channel without models is rejected."""
    with pytest.raises(ValueError, match="at least one model"):
        channel_service.add_channel(test_db, name="c", api_key="k", groups=["default"], models=[])


def test_add_channel_rejects_negative_weight(test_db, channel_service):
    """Test a negative weight is rejected before anything is stored."""
    with pytest.raises(ValueError, match="weight must not be negative"):
        channel_service.add_channel(
            test_db, name="c", api_key="k", groups=["default"], models=["gpt-4o"], weight=-10
        )

    assert channel_service.list_channels(test_db) == []


def test_list_channels_masks_keys(test_db, channel_service):
    """Test listed channels show masked keys."""
    channel_service.add_channel(
        test_db, name="c", api_key="sk-1234567890abcdef", groups=["default"], models=["gpt-4o"]
    )

    channels = channel_service.list_channels(test_db)

    assert len(channels) == 1
    assert channels[0]["api_key_masked"] == "sk-" + "*" * 15 + "cdef"
    assert channels[0]["groups"] == ["default"]
    assert channels[0]["models"] == ["gpt-4o"]


def test_list_channels_undecryptable_key(test_db, channel_service):
    """Test a key encrypted with another key is reported, not raised."""
    test_db.add(Channel(name="broken", api_key_encrypted="garbage", group="default", models="gpt-4o"))
    test_db.commit()

    channels = channel_service.list_channels(test_db)

    assert channels[0]["api_key_masked"] == "***ERROR***"


def test_get_decrypted_key(test_db, channel_service):
    """Test retrieving the plaintext upstream key."""
    channel = channel_service.add_channel(
        test_db, name="c", api_key="sk-upstream", groups=["default"], models=["gpt-4o"]
    )

    assert channel_service.get_decrypted_key(test_db, channel.id) == "sk-upstream"
    assert channel_service.get_decrypted_key(test_db, 999) is None


def test_set_status(test_db, channel_service):
    """Test disabling a channel."""
    channel = channel_service.add_channel(
        test_db, name="c", api_key="k", groups=["default"], models=["gpt-4o"]
    )

    updated = channel_service.set_status(test_db, channel.id, ChannelStatus.MANUALLY_DISABLED)

    assert updated.status == ChannelStatus.MANUALLY_DISABLED
    assert channel_service.set_status(test_db, 999, ChannelStatus.ENABLED) is None


def test_delete_channel(test_db, channel_service):
    """Test deleting a channel."""
    channel = channel_service.add_channel(
        test_db, name="c", api_key="k", groups=["default"], models=["gpt-4o"]
    )

    assert channel_service.delete_channel(test_db, channel.id) is True
    assert channel_service.delete_channel(test_db, channel.id) is False


def test_join_csv_drops_blanks_and_repeats():
    """Test CSV joining trims and de-duplicates in order."""
    assert join_csv([" vip", "default", "", "vip "]) == "vip,default"

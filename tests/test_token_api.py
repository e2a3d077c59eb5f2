"""Tests for the token, usage, group and channel API endpoints."""

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tokenhub.api.channels import get_channel_service
from tokenhub.database.database import Base, get_db
from tokenhub.main import app
from tokenhub.models.channel import Channel, ChannelStatus
from tokenhub.models.token import Token
from tokenhub.models.user import User
from tokenhub.services.channel_service import ChannelService
from tokenhub.services.encryption_service import EncryptionService


@pytest.fixture
def test_db():
    """Create a test database shared across request threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()


@pytest.fixture
def client(test_db):
    """Test client with the database and channel service overridden."""
    channel_service = ChannelService(EncryptionService(key=Fernet.generate_key().decode()))

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_channel_service] = lambda: channel_service
    # No context manager: startup would validate the real encryption key
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user(test_db):
    user = User(username="alice", group="default")
    test_db.add(user)
    test_db.commit()
    return user


@pytest.fixture
def headers(user):
    return {"X-User-Id": str(user.id)}


def create_token(client, headers, **fields):
    payload = {"name": "api-token"}
    payload.update(fields)
    return client.post("/api/token/", json=payload, headers=headers).json()


def only_token(test_db):
    return test_db.query(Token).one()


class TestTokenEndpoints:
    """Test token CRUD endpoints."""

    def test_requires_user(self, client):
        """Test requests without a user id are rejected."""
        response = client.get("/api/token/")

        assert response.status_code == 401

    def test_create_with_priorities(self, client, headers, test_db):
        """Test creating a token with a priority array."""
        body = create_token(
            client, headers,
            group_priorities_array=[{"group": "vip", "priority": 2}, {"group": "default", "priority": 1}],
        )

        assert body["success"] is True
        token = only_token(test_db)
        assert token.group == "default"
        assert token.group_priorities == '[{"group":"default","priority":1},{"group":"vip","priority":2}]'

    def test_create_unauthorized_group(self, client, headers, test_db):
        """Test an unusable group is named in the rejection."""
        body = create_token(client, headers, group_priorities_array=[{"group": "unknown", "priority": 1}])

        assert body == {"success": False, "message": "无权访问分组: unknown", "data": None}
        assert test_db.query(Token).count() == 0

    def test_create_invalid_priorities_prefixed(self, client, headers):
        """Test validation failures carry the priority error prefix."""
        body = create_token(
            client, headers,
            group_priorities_array=[{"group": "vip", "priority": 1}, {"group": "vip", "priority": 2}],
        )

        assert body["success"] is False
        assert body["message"].startswith("分组优先级设置失败: ")

    def test_create_malformed_serialized_list(self, client, headers):
        """Test an unparseable serialized list is rejected with the prefix."""
        body = create_token(client, headers, group_priorities="not json")

        assert body["success"] is False
        assert body["message"].startswith("分组优先级设置失败: ")

    def test_create_name_too_long(self, client, headers):
        """Test long names are rejected."""
        body = create_token(client, headers, name="n" * 31)

        assert body["message"] == "令牌名称过长"

    def test_update_clears_priorities(self, client, headers, test_db):
        """Test an explicit empty serialized list clears the stored list."""
        create_token(client, headers, group_priorities_array=[{"group": "vip", "priority": 1}])
        token = only_token(test_db)

        response = client.put("/api/token/", json={
            "id": token.id,
            "name": token.name,
            "group": "vip",
            "group_priorities": "",
        }, headers=headers)

        body = response.json()
        assert body["success"] is True
        assert body["data"]["group_priorities"] == ""
        assert body["data"]["group_priorities_array"] == []
        assert body["data"]["group"] == "vip"

    def test_update_without_priorities_keeps_list(self, client, headers, test_db):
        """Test omitting priority fields leaves the stored list alone."""
        create_token(client, headers, group_priorities_array=[{"group": "vip", "priority": 1}])
        token = only_token(test_db)

        body = client.put("/api/token/", json={"id": token.id, "name": "renamed"}, headers=headers).json()

        assert body["data"]["name"] == "renamed"
        assert body["data"]["group_priorities_array"] == [{"group": "vip", "priority": 1}]
        assert body["data"]["group"] == "vip"

    def test_update_status_only(self, client, headers, test_db):
        """Test status-only updates."""
        create_token(client, headers)
        token = only_token(test_db)

        body = client.put(
            "/api/token/?status_only=true",
            json={"id": token.id, "status": 2},
            headers=headers,
        ).json()

        assert body["success"] is True
        assert body["data"]["status"] == 2
        assert body["data"]["name"] == "api-token"

    def test_create_rejects_non_integer_rank(self, client, headers, test_db):
        """Test a boolean or string rank in the array is a request error."""
        for priority in (True, "1"):
            response = client.post("/api/token/", json={
                "name": "t",
                "group_priorities_array": [{"group": "vip", "priority": priority}],
            }, headers=headers)

            assert response.status_code == 422

        assert test_db.query(Token).count() == 0

    def test_create_rejects_quoted_rank_in_serialized_list(self, client, headers, test_db):
        """Test a serialized list with a quoted rank is malformed."""
        body = create_token(client, headers, group_priorities='[{"group":"vip","priority":"1"}]')

        assert body["success"] is False
        assert body["message"].startswith("分组优先级设置失败: ")
        assert test_db.query(Token).count() == 0

    def test_status_only_requires_status(self, client, headers, test_db):
        """Test a status-only update without a status is rejected."""
        create_token(client, headers)
        token = only_token(test_db)

        body = client.put("/api/token/?status_only=true", json={"id": token.id}, headers=headers).json()

        assert body == {"success": False, "message": "令牌状态无效", "data": None}
        test_db.refresh(token)
        assert token.status == 1

    def test_status_outside_known_states(self, client, headers, test_db):
        """Test an unknown status value is a request error."""
        create_token(client, headers)
        token = only_token(test_db)

        response = client.put("/api/token/?status_only=true", json={"id": token.id, "status": 9}, headers=headers)

        assert response.status_code == 422

    def test_update_missing_token(self, client, headers):
        """Test updating an unknown token."""
        body = client.put("/api/token/", json={"id": 42, "name": "x"}, headers=headers).json()

        assert body == {"success": False, "message": "令牌不存在", "data": None}

    def test_list_and_get(self, client, headers, test_db):
        """Test listing pages and reading a single token."""
        for i in range(3):
            create_token(client, headers, name=f"t{i}")

        page = client.get("/api/token/?p=1&page_size=2", headers=headers).json()["data"]

        assert page["total"] == 3
        assert [item["name"] for item in page["items"]] == ["t2", "t1"]

        token_id = page["items"][0]["id"]
        single = client.get(f"/api/token/{token_id}", headers=headers).json()
        assert single["data"]["name"] == "t2"

    def test_search(self, client, headers):
        """Test searching by name prefix."""
        create_token(client, headers, name="alpha")
        create_token(client, headers, name="beta")

        body = client.get("/api/token/search?keyword=be", headers=headers).json()

        assert [item["name"] for item in body["data"]] == ["beta"]

    def test_delete_and_batch(self, client, headers, test_db):
        """Test single and batch deletion."""
        for i in range(3):
            create_token(client, headers, name=f"t{i}")
        ids = [t.id for t in test_db.query(Token).order_by(Token.id).all()]

        assert client.delete(f"/api/token/{ids[0]}", headers=headers).json()["success"] is True
        batch = client.post("/api/token/batch", json={"ids": ids[1:]}, headers=headers).json()

        assert batch == {"success": True, "message": "", "data": 2}
        assert test_db.query(Token).count() == 0

    def test_batch_requires_ids(self, client, headers):
        """Test an empty batch is a parameter error."""
        body = client.post("/api/token/batch", json={"ids": []}, headers=headers).json()

        assert body["message"] == "参数错误"


class TestUsageEndpoints:
    """Test bearer-authenticated usage endpoints."""

    def test_missing_header(self, client):
        response = client.get("/api/usage/token")

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "No Authorization header"}

    def test_empty_header(self, client):
        response = client.get("/api/usage/token", headers={"Authorization": ""})

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "No Authorization header"}

    def test_bad_format(self, client):
        response = client.get("/api/usage/token", headers={"Authorization": "Token abc"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid Bearer token"

    def test_unknown_key(self, client):
        response = client.get("/api/usage/token", headers={"Authorization": "Bearer sk-nope"})

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "令牌不存在"}

    def test_token_usage(self, client, headers, test_db):
        """Test usage for a key with the sk- prefix."""
        create_token(client, headers, remain_quota=500)
        token = only_token(test_db)

        body = client.get("/api/usage/token", headers={"Authorization": f"Bearer sk-{token.key}"}).json()

        assert body["code"] is True
        assert body["data"]["total_available"] == 500
        assert body["data"]["expires_at"] == 0

    def test_credit_summary(self, client, headers, test_db):
        """Test the credit summary reports expiry in milliseconds."""
        create_token(client, headers, remain_quota=200, expired_time=1900000000)
        token = only_token(test_db)

        body = client.get(
            "/dashboard/billing/credit_summary",
            headers={"Authorization": f"Bearer {token.key}"},
        ).json()

        assert body["object"] == "credit_summary"
        assert body["total_granted"] == 200
        assert body["expires_at"] == 1900000000000


class TestGroupEndpoint:
    """Test the usable groups listing."""

    def test_lists_usable_groups_with_auto(self, client, headers):
        body = client.get("/api/user/self/groups", headers=headers).json()

        groups = body["data"]
        assert "default" in groups
        assert groups["default"]["ratio"] == 1
        assert groups["auto"] == {"ratio": "自动", "desc": "自动选择"}


class TestChannelEndpoints:
    """Test channel admin endpoints and the routing preview."""

    def test_create_and_list_channel(self, client):
        response = client.post("/api/channel", json={
            "name": "openai-main",
            "api_key": "sk-1234567890abcdef",
            "groups": ["default"],
            "models": ["gpt-4o"],
        })

        assert response.status_code == 201
        assert response.json()["api_key_masked"] == "sk-" + "*" * 15 + "cdef"
        assert len(client.get("/api/channel").json()) == 1

    def test_create_channel_without_models(self, client):
        response = client.post("/api/channel", json={
            "name": "c", "api_key": "k", "groups": ["default"], "models": [],
        })

        assert response.status_code == 400

    def test_create_channel_negative_weight(self, client):
        response = client.post("/api/channel", json={
            "name": "c", "api_key": "k", "groups": ["default"], "models": ["gpt-4o"], "weight": -10,
        })

        assert response.status_code == 422
        assert client.get("/api/channel").json() == []

    def test_update_status_and_delete(self, client):
        channel_id = client.post("/api/channel", json={
            "name": "c", "api_key": "k", "groups": ["default"], "models": ["gpt-4o"],
        }).json()["id"]

        response = client.put(f"/api/channel/{channel_id}/status", json={"status": 2})
        assert response.json()["status"] == 2

        assert client.delete(f"/api/channel/{channel_id}").status_code == 204
        assert client.delete(f"/api/channel/{channel_id}").status_code == 404

    def test_channel_preview(self, client, headers, test_db):
        """Test the preview walks the token's priority list."""
        test_db.add(Channel(
            name="vip-1", api_key_encrypted="x", group="vip", models="gpt-4o",
            status=ChannelStatus.ENABLED,
        ))
        test_db.commit()
        create_token(client, headers, group_priorities_array=[
            {"group": "default", "priority": 1},
            {"group": "vip", "priority": 2},
        ])
        token = only_token(test_db)

        body = client.get(f"/api/token/{token.id}/channel?model=gpt-4o", headers=headers).json()

        assert body["success"] is True
        assert body["data"]["channel_name"] == "vip-1"
        assert body["data"]["group"] == "vip"
        assert body["data"]["auto_smart_group_used"] is False

    def test_channel_preview_no_channel(self, client, headers, test_db):
        """Test exhausting every group is reported."""
        create_token(client, headers, group="default")
        token = only_token(test_db)

        body = client.get(f"/api/token/{token.id}/channel?model=gpt-4o", headers=headers).json()

        assert body == {"success": False, "message": "all configured groups failed", "data": None}

    def test_channel_preview_negative_stored_weight(self, client, headers, test_db):
        """Test a channel row with a negative weight still routes."""
        test_db.add(Channel(
            name="legacy", api_key_encrypted="x", group="default", models="gpt-4o",
            status=ChannelStatus.ENABLED, weight=-10,
        ))
        test_db.commit()
        create_token(client, headers, group="default")
        token = only_token(test_db)

        response = client.get(f"/api/token/{token.id}/channel?model=gpt-4o", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["channel_name"] == "legacy"

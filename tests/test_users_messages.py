"""
Tests for GET /api/v1/users and GET /api/v1/messages.

Tests cover:
- Users enriched with only their latest message
- Users without messages
- Messages filtered by wa_id
- Message field shape
- Timestamps carry an explicit UTC designator
- Missing id parameter
"""

from datetime import datetime, timedelta

import pytest

from guestdesk.storage import create_message, create_user


T0 = datetime(2025, 1, 15, 10, 0, 0)


@pytest.fixture
def seeded(db):
    """Two guests with conversations, one guest without messages."""
    create_user(db, wa_id="111", name="John Doe")
    create_user(db, wa_id="222", name="Maria Garcia")
    create_user(db, wa_id="333", name=None)

    # Inserted out of order on purpose
    create_message(db, wa_id="111", text="second", message_id="m2", timestamp=T0 + timedelta(minutes=2))
    create_message(db, wa_id="111", text="third", message_id="m3", direction="outbound",
                   timestamp=T0 + timedelta(minutes=3))
    create_message(db, wa_id="111", text="first", message_id="m1", timestamp=T0 + timedelta(minutes=1))

    create_message(db, wa_id="222", text="heating broken", message_id="m4",
                   image="https://cdn.test/radiator.jpg", timestamp=T0 + timedelta(minutes=5))

    # Message from a number that never became a user
    create_message(db, wa_id="999", text="stray", message_id="m5", timestamp=T0)
    return db


class TestUsers:
    """Test the guest list endpoint."""

    def test_empty_database(self, client, auth):
        response = client.get("/api/v1/users", params=auth)

        assert response.status_code == 200
        assert response.json() == []

    def test_last_message_is_latest_by_timestamp(self, client, auth, seeded):
        """Given messages at t1<t2<t3, only the t3 message is reported."""
        response = client.get("/api/v1/users", params=auth)

        assert response.status_code == 200
        users = {user["wa_id"]: user for user in response.json()}
        assert users["111"]["lastMessage"] == "third"
        assert users["111"]["lastTimestamp"] == (T0 + timedelta(minutes=3)).isoformat() + "Z"
        assert users["111"]["name"] == "John Doe"
        assert users["222"]["lastMessage"] == "heating broken"

    def test_user_without_messages_has_null_fields(self, client, auth, seeded):
        response = client.get("/api/v1/users", params=auth)

        users = {user["wa_id"]: user for user in response.json()}
        assert users["333"]["lastMessage"] is None
        assert users["333"]["lastTimestamp"] is None
        assert users["333"]["name"] is None

    def test_only_known_users_are_listed(self, client, auth, seeded):
        """Messages from unknown numbers do not create list entries."""
        response = client.get("/api/v1/users", params=auth)

        wa_ids = sorted(user["wa_id"] for user in response.json())
        assert wa_ids == ["111", "222", "333"]

    def test_response_fields(self, client, auth, seeded):
        response = client.get("/api/v1/users", params=auth)

        for user in response.json():
            assert set(user) == {"wa_id", "name", "lastMessage", "lastTimestamp"}


class TestMessages:
    """Test the per-guest message history endpoint."""

    def test_returns_only_requested_conversation(self, client, auth, seeded):
        response = client.get("/api/v1/messages", params={**auth, "id": "111"})

        assert response.status_code == 200
        data = response.json()
        assert sorted(msg["message_id"] for msg in data) == ["m1", "m2", "m3"]

    def test_message_fields(self, client, auth, seeded):
        response = client.get("/api/v1/messages", params={**auth, "id": "222"})

        assert response.status_code == 200
        [msg] = response.json()
        assert msg == {
            "message_id": "m4",
            "text": "heating broken",
            "direction": "inbound",
            "timestamp": (T0 + timedelta(minutes=5)).isoformat() + "Z",
            "image": "https://cdn.test/radiator.jpg",
        }

    def test_timestamps_are_explicit_utc(self, client, auth, seeded):
        response = client.get("/api/v1/messages", params={**auth, "id": "111"})

        for msg in response.json():
            assert msg["timestamp"].endswith("Z")
            parsed = datetime.fromisoformat(msg["timestamp"].replace("Z", "+00:00"))
            assert parsed.utcoffset() == timedelta(0)

    def test_unknown_guest_returns_empty_list(self, client, auth, seeded):
        response = client.get("/api/v1/messages", params={**auth, "id": "nobody"})

        assert response.status_code == 200
        assert response.json() == []

    def test_missing_id_is_rejected(self, client, auth):
        response = client.get("/api/v1/messages", params=auth)

        assert response.status_code == 400
        assert "id" in response.json()["detail"]

    def test_response_includes_request_id_header(self, client, auth, seeded):
        response = client.get("/api/v1/messages", params={**auth, "id": "111"})

        assert response.status_code == 200
        assert "x-request-id" in response.headers

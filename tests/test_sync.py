"""
Tests for the dashboard-side conversation sync.

Tests cover:
- Guest list ordering by recency (no timestamp last, stable)
- Failed refresh keeps the last good guest list
- Message normalization and ordering
- Selection changes start/stop message polling
- Responses for a deselected guest are discarded
- Sending triggers an immediate refresh
- PeriodicTask cancellation, including cancellation of the waiting caller
"""

import asyncio
import json

import httpx

from guestdesk.sync import (
    ConversationSync,
    DashboardClient,
    PeriodicTask,
    normalize_message,
    sort_guests_by_recency,
)


USERS = [
    {"wa_id": "a", "name": "Ann", "lastMessage": None, "lastTimestamp": None},
    {"wa_id": "b", "name": "Bob", "lastMessage": "old", "lastTimestamp": "2025-01-15T09:00:00"},
    {"wa_id": "c", "name": "Cid", "lastMessage": None, "lastTimestamp": None},
    {"wa_id": "d", "name": "Dee", "lastMessage": "new", "lastTimestamp": "2025-01-15T11:00:00"},
]

MESSAGES = {
    "b": [
        {"message_id": "m2", "text": "reply", "direction": "outbound",
         "timestamp": "2025-01-15T09:00:00", "image": None},
        {"message_id": "m1", "text": "hello", "direction": "inbound",
         "timestamp": "2025-01-15T08:00:00", "image": "https://cdn.test/a.jpg"},
    ],
}


class FakeApi:
    """MockTransport handler standing in for the GuestDesk API."""

    def __init__(self):
        self.users = list(USERS)
        self.messages = {key: list(value) for key, value in MESSAGES.items()}
        self.fail = False
        self.requests = []
        self.sent = []
        self.on_messages = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.url.params["password"] == "secret"
        if self.fail:
            return httpx.Response(500, json={"detail": "Internal server error"})
        path = request.url.path
        if path == "/api/v1/users":
            return httpx.Response(200, json=self.users)
        if path == "/api/v1/messages":
            if self.on_messages is not None:
                self.on_messages()
            return httpx.Response(200, json=self.messages.get(request.url.params["id"], []))
        if path == "/api/v1/send":
            body = json.loads(request.content)
            self.sent.append((body["to"], body["text"]))
            self.messages.setdefault(body["to"], []).append({
                "message_id": None, "text": body["text"], "direction": "outbound",
                "timestamp": "2025-01-15T12:00:00", "image": None,
            })
            return httpx.Response(200, json={"message": "Message sent successfully"})
        return httpx.Response(404, json={"detail": "Not Found"})


def make_sync(api, **kwargs):
    client = DashboardClient("http://guestdesk.test", "secret", transport=httpx.MockTransport(api))
    return ConversationSync(client, **kwargs)


class TestGuestOrdering:
    """Test the guest list sort."""

    def test_newest_first_and_missing_timestamps_last(self):
        ordered = sort_guests_by_recency(USERS)

        assert [guest["wa_id"] for guest in ordered] == ["d", "b", "a", "c"]

    def test_missing_timestamps_keep_input_order(self):
        ordered = sort_guests_by_recency(list(reversed(USERS)))

        assert [guest["wa_id"] for guest in ordered] == ["d", "b", "c", "a"]


class TestNormalizeMessage:
    def test_inbound_is_guest(self):
        message = normalize_message(MESSAGES["b"][1])

        assert message.id == "m1"
        assert message.content == "hello"
        assert message.sender == "guest"
        assert message.image == "https://cdn.test/a.jpg"
        assert message.timestamp.hour == 8

    def test_outbound_is_staff(self):
        assert normalize_message(MESSAGES["b"][0]).sender == "staff"


class TestConversationSync:
    """Test the polling controller."""

    def test_refresh_guests(self):
        api = FakeApi()
        sync = make_sync(api)

        asyncio.run(sync.refresh_guests())

        assert [guest["wa_id"] for guest in sync.guests] == ["d", "b", "a", "c"]
        assert sync.guests_error is None

    def test_failed_refresh_keeps_last_good_list(self):
        api = FakeApi()
        sync = make_sync(api)

        async def run():
            await sync.refresh_guests()
            api.fail = True
            await sync.refresh_guests()

        asyncio.run(run())

        assert len(sync.guests) == 4
        assert isinstance(sync.guests_error, httpx.HTTPStatusError)

    def test_select_guest_loads_sorted_messages(self):
        api = FakeApi()
        sync = make_sync(api, message_interval=60)

        async def run():
            await sync.select_guest("b")
            await asyncio.sleep(0.05)
            snapshot = [message.id for message in sync.messages]
            await sync.stop()
            return snapshot

        assert asyncio.run(run()) == ["m1", "m2"]

    def test_deselect_stops_polling_and_clears(self):
        api = FakeApi()
        sync = make_sync(api, message_interval=0.01)

        async def run():
            await sync.select_guest("b")
            await asyncio.sleep(0.05)
            await sync.select_guest(None)
            count = len(api.requests)
            await asyncio.sleep(0.05)
            await sync.stop()
            return count

        count = asyncio.run(run())

        assert count >= 2
        assert len(api.requests) == count
        assert sync.messages == []
        assert sync.selected_guest is None

    def test_stale_response_discarded(self):
        api = FakeApi()
        sync = make_sync(api)
        sync.selected_guest = "b"

        def switch_selection():
            sync.selected_guest = "d"

        api.on_messages = switch_selection

        asyncio.run(sync.refresh_messages())

        assert sync.messages == []

    def test_send_refreshes_conversation(self):
        api = FakeApi()
        sync = make_sync(api)
        sync.selected_guest = "b"

        asyncio.run(sync.send_message("  Your room is ready  "))

        assert api.sent == [("b", "Your room is ready")]
        assert [message.content for message in sync.messages][-1] == "Your room is ready"

    def test_blank_message_not_sent(self):
        api = FakeApi()
        sync = make_sync(api)
        sync.selected_guest = "b"

        asyncio.run(sync.send_message("   "))

        assert api.sent == []


class TestPeriodicTask:
    def test_runs_until_cancelled(self):
        ticks = []

        async def tick():
            ticks.append(True)

        async def run():
            task = PeriodicTask("tick", 0.01, tick)
            task.start()
            await asyncio.sleep(0.05)
            await task.cancel()
            count = len(ticks)
            await asyncio.sleep(0.03)
            return count, task.running

        count, running = asyncio.run(run())

        assert count >= 2
        assert len(ticks) == count
        assert running is False

    def test_failing_tick_does_not_stop_loop(self):
        ticks = []

        async def tick():
            ticks.append(True)
            raise RuntimeError("boom")

        async def run():
            task = PeriodicTask("failing", 0.01, tick)
            task.start()
            await asyncio.sleep(0.05)
            await task.cancel()

        asyncio.run(run())

        assert len(ticks) >= 2

    def test_caller_cancellation_propagates(self):
        """Cancelling whoever is waiting in cancel() is not swallowed."""

        async def slow_to_stop():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                await asyncio.sleep(0.05)
                raise

        async def run():
            task = PeriodicTask("slow", 0.01, slow_to_stop)
            task.start()
            await asyncio.sleep(0.01)
            stopper = asyncio.create_task(task.cancel())
            await asyncio.sleep(0.01)
            stopper.cancel()
            try:
                await stopper
            except asyncio.CancelledError:
                return True
            return False

        assert asyncio.run(run()) is True

"""
Dashboard-side conversation sync.

DashboardClient wraps the GuestDesk HTTP API. ConversationSync keeps a
guest list and the selected guest's messages fresh by polling it on two
cancellable periodic tasks.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

GUEST_REFRESH_SECONDS = 10.0
MESSAGE_REFRESH_SECONDS = 2.0
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DashboardClient:
    """Async HTTP client for the /api/v1 endpoints."""

    def __init__(
        self,
        base_url: str,
        password: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._password = password
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api/v1",
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, **params: Any) -> Any:
        response = await self._client.get(path, params={**params, "password": self._password})
        response.raise_for_status()
        return response.json()

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        response = await self._client.post(path, params={"password": self._password}, json=body)
        response.raise_for_status()
        return response.json()

    async def fetch_users(self) -> List[Dict[str, Any]]:
        return await self._get("/users")

    async def fetch_messages(self, wa_id: str) -> List[Dict[str, Any]]:
        return await self._get("/messages", id=wa_id)

    async def send_message(self, to: str, text: str) -> Dict[str, Any]:
        return await self._post("/send", {"to": to, "text": text})

    async def fetch_analytics(self) -> Dict[str, Any]:
        return await self._get("/analytics")

    async def fetch_escalations(self) -> List[Dict[str, Any]]:
        return await self._get("/escalations")

    async def resolve_escalation(self, escalation_id: str) -> Dict[str, Any]:
        return await self._post("/escalations/resolve", {"id": escalation_id})

    async def stream_completion(self, prompt: str) -> AsyncIterator[str]:
        """Yield completion text as the server relays it."""
        async with self._client.stream("POST", "/ai/stream", json={"prompt": prompt}) as response:
            response.raise_for_status()
            async for text in response.aiter_text():
                if text:
                    yield text


class PeriodicTask:
    """
    Runs an async callable now and then every `interval` seconds until
    cancelled.

    A tick finishes before the next sleep starts, so ticks of one task
    never overlap. Exceptions from a tick are logged and the loop goes on.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[None]]) -> None:
        self.name = name
        self.interval = interval
        self._func = func
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            try:
                await self._func()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic task %s failed", self.name)
            await asyncio.sleep(self.interval)

    async def cancel(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        # wait() does not re-raise the task's own cancellation, but a
        # cancellation of the caller still propagates
        await asyncio.wait([task])


@dataclass
class ChatMessage:
    id: Optional[str]
    content: str
    sender: str
    timestamp: Optional[datetime]
    image: Optional[str] = None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # Older servers emitted naive UTC without a designator
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_message(raw: Dict[str, Any]) -> ChatMessage:
    return ChatMessage(
        id=raw.get("message_id"),
        content=raw.get("text", ""),
        sender="guest" if raw.get("direction") == "inbound" else "staff",
        timestamp=_parse_timestamp(raw.get("timestamp")),
        image=raw.get("image") or None,
    )


def sort_guests_by_recency(guests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Newest lastTimestamp first. Guests without a timestamp go last and
    keep their relative order.
    """
    with_ts = [guest for guest in guests if guest.get("lastTimestamp")]
    without_ts = [guest for guest in guests if not guest.get("lastTimestamp")]
    with_ts.sort(key=lambda guest: _parse_timestamp(guest["lastTimestamp"]), reverse=True)
    return with_ts + without_ts


class ConversationSync:
    """
    Polls the guest list and the selected conversation.

    On a failed fetch the last good list is kept and the error is exposed
    on guests_error / messages_error until the next successful fetch.
    """

    def __init__(
        self,
        client: DashboardClient,
        guest_interval: float = GUEST_REFRESH_SECONDS,
        message_interval: float = MESSAGE_REFRESH_SECONDS,
    ) -> None:
        self._client = client
        self._message_interval = message_interval
        self.guests: List[Dict[str, Any]] = []
        self.messages: List[ChatMessage] = []
        self.selected_guest: Optional[str] = None
        self.guests_error: Optional[Exception] = None
        self.messages_error: Optional[Exception] = None
        self._guest_task = PeriodicTask("refresh-guests", guest_interval, self.refresh_guests)
        self._message_task: Optional[PeriodicTask] = None

    def start(self) -> None:
        self._guest_task.start()

    async def stop(self) -> None:
        await self._guest_task.cancel()
        if self._message_task is not None:
            await self._message_task.cancel()
            self._message_task = None
        await self._client.aclose()

    async def refresh_guests(self) -> None:
        try:
            users = await self._client.fetch_users()
        except httpx.HTTPError as e:
            logger.warning(f"Guest list refresh failed: {e}")
            self.guests_error = e
            return
        self.guests = sort_guests_by_recency(users)
        self.guests_error = None

    async def refresh_messages(self) -> None:
        wa_id = self.selected_guest
        if wa_id is None:
            return
        try:
            raw_messages = await self._client.fetch_messages(wa_id)
        except httpx.HTTPError as e:
            logger.warning(f"Message refresh for {wa_id} failed: {e}")
            if wa_id == self.selected_guest:
                self.messages_error = e
            return
        # Selection changed while the request was in flight
        if wa_id != self.selected_guest:
            return
        messages = [normalize_message(raw) for raw in raw_messages]
        messages.sort(key=lambda message: message.timestamp or EPOCH)
        self.messages = messages
        self.messages_error = None

    async def select_guest(self, wa_id: Optional[str]) -> None:
        """Switch the polled conversation; None stops message polling."""
        if self._message_task is not None:
            await self._message_task.cancel()
            self._message_task = None
        self.selected_guest = wa_id
        self.messages = []
        self.messages_error = None
        if wa_id is None:
            return
        self._message_task = PeriodicTask(f"refresh-messages-{wa_id}", self._message_interval, self.refresh_messages)
        self._message_task.start()

    async def send_message(self, text: str) -> None:
        """Send to the selected guest, then refresh the conversation at once."""
        text = text.strip()
        if not text or self.selected_guest is None:
            return
        await self._client.send_message(self.selected_guest, text)
        await self.refresh_messages()

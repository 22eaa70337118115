"""
Client for the WhatsApp relay service.

The relay exposes a single endpoint, GET {WHATSAPP_URL}/send?to=..&text=..
It gives no delivery confirmation: a non-error HTTP status is all we get.
"""

import logging
from typing import Optional

import httpx

from guestdesk.config import settings

logger = logging.getLogger(__name__)


class RelayError(RuntimeError):
    """The relay could not be reached or answered with an error status."""


class WhatsAppRelay:
    """HTTP client for the outbound message relay."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def send(self, to: str, text: str) -> None:
        """
        Hand one message to the relay.

        Raises:
            RelayError: relay not configured, unreachable, or non-2xx status
        """
        if not self._base_url:
            raise RelayError("WHATSAPP_URL is not configured")

        logger.info(f"Sending message via relay: to={to}, length={len(text)}")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/send",
                    params={"to": to, "text": text},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RelayError(f"relay returned status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RelayError(f"relay request failed: {e}") from e

        logger.debug(f"Relay accepted message for {to}: status={response.status_code}")


def get_relay() -> WhatsAppRelay:
    """Dependency returning the relay configured from settings."""
    return WhatsAppRelay(settings.WHATSAPP_URL, timeout=settings.RELAY_TIMEOUT_SECONDS)

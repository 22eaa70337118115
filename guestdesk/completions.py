"""
Completion streaming relay.

Opens a streamed chat completion upstream and forwards each text delta to
the HTTP client as soon as it arrives.
"""

import logging
from typing import AsyncGenerator, AsyncIterator, Optional

from openai import AsyncOpenAI

from guestdesk.config import settings
from guestdesk.metrics import record_ai_stream

logger = logging.getLogger(__name__)

# Appended in-band when the upstream fails after bytes were already sent,
# since the status line can no longer change at that point.
STREAM_ERROR_MARKER = "\n[error]: Failed to stream response"


class CompletionClient:
    """Streams chat completions for a single user prompt."""

    def __init__(self, api_key: Optional[str], model: str) -> None:
        self._api_key = api_key
        self.model = model
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        # Built lazily so a missing key only fails the stream, not app startup
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def stream_text(self, prompt: str) -> AsyncIterator[str]:
        """Yield the non-empty text deltas of one completion, in order."""
        stream = await self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            stream=True,
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            await stream.close()


_completion_client: Optional[CompletionClient] = None


def get_completion_client() -> CompletionClient:
    """Dependency returning the process-wide completion client."""
    global _completion_client
    if _completion_client is None:
        _completion_client = CompletionClient(settings.OPENAI_API_KEY, settings.OPENAI_MODEL)
    return _completion_client


async def relay_chunks(first_chunk: str, chunks: AsyncGenerator[str, None]) -> AsyncIterator[str]:
    """
    Body iterator for the streaming response.

    first_chunk was already pulled by the caller to decide the status code.
    An upstream failure from here on ends the body with STREAM_ERROR_MARKER.
    """
    try:
        if first_chunk:
            yield first_chunk
        async for chunk in chunks:
            yield chunk
    except Exception:
        logger.exception("Completion stream failed after first chunk")
        record_ai_stream("interrupted")
        yield STREAM_ERROR_MARKER
        return
    finally:
        await chunks.aclose()
    record_ai_stream("completed")

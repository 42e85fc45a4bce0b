# src/network/broadcast.py
"""
HTTP Broadcast - fan-out of envelopes to every node's POST /message

Delivery is fire-and-forget: each send runs as its own asyncio task, failures
are logged and never reach the sender's state machine.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Set, Any

import httpx

from src.config import get_settings
from src.consensus import Envelope

logger = logging.getLogger("benor.network.broadcast")


class HttpBroadcaster:
    """Sends envelopes to all N node addresses over a shared httpx client"""

    def __init__(
        self,
        size: int,
        url_for: Optional[Callable[[int], str]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.size = size
        self.url_for = url_for or settings.node_url
        self.timeout = settings.BROADCAST_TIMEOUT if timeout is None else timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._pending: Set[asyncio.Task] = set()

        # Statistics
        self.sent = 0
        self.failed = 0

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    def __call__(self, envelope: Envelope):
        self.broadcast(envelope)

    def broadcast(self, envelope: Envelope):
        """Schedule one POST /message per node, including self"""
        body = envelope.to_dict()
        for node_id in range(self.size):
            task = asyncio.create_task(self._send(node_id, body))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _send(self, node_id: int, body: Dict[str, Any]):
        url = f"{self.url_for(node_id)}/message"
        try:
            response = await self._get_client().post(url, json=body)
            response.raise_for_status()
            self.sent += 1
        except httpx.HTTPError as e:
            self.failed += 1
            logger.error(f"Send to node {node_id} failed ({url}): {e!r}")

    async def drain(self):
        """Wait for all scheduled sends to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self):
        """Finish outstanding sends and close the client"""
        await self.drain()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("HttpBroadcaster closed")

    async def __aenter__(self) -> "HttpBroadcaster":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def get_stats(self) -> Dict[str, int]:
        return {"sent": self.sent, "failed": self.failed, "pending": len(self._pending)}

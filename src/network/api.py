# src/network/api.py
"""
Node API - FastAPI application exposing one Ben-Or node over HTTP

Routes:
- GET  /status    live (200) or faulty (500)
- GET  /start     wait for the readiness barrier, then send the first proposal
- GET  /stop      kill the node
- GET  /getState  current NodeState
- POST /message   deliver a propose/vote envelope
"""

import asyncio
import logging
from typing import Callable, Optional, Union

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from src.config import get_settings
from src.consensus import BenOrNode, Envelope, MessageKind, Value

logger = logging.getLogger("benor.network.api")


class MessageBody(BaseModel):
    """Wire body of a protocol message"""
    k: int = Field(..., description="Round number")
    x: Union[int, str] = Field(..., description="0, 1 or '?'")
    messageType: MessageKind

    def to_envelope(self) -> Envelope:
        return Envelope(round=self.k, value=Value(self.x), kind=self.messageType)


def _always_ready() -> bool:
    return True


async def wait_until(predicate: Callable[[], bool], interval: Optional[float] = None):
    """Poll predicate until it holds. No timeout."""
    delay = get_settings().READY_POLL_INTERVAL if interval is None else interval
    while not predicate():
        await asyncio.sleep(delay)


def create_node_app(
    node: BenOrNode,
    nodes_are_ready: Callable[[], bool] = _always_ready,
) -> FastAPI:
    """Build the HTTP surface for a single node"""
    app = FastAPI(
        title=f"Ben-Or Node {node.node_id}",
        description="Randomized binary consensus node",
        version="1.0.0",
    )
    app.state.node = node

    @app.get("/status", response_class=PlainTextResponse)
    async def status():
        if node.is_faulty:
            return PlainTextResponse("faulty", status_code=500)
        return PlainTextResponse("live", status_code=200)

    @app.get("/start", response_class=PlainTextResponse)
    async def start():
        await wait_until(nodes_are_ready)
        if not node.is_faulty:
            await node.start()
        return "Consensus algorithm started."

    @app.get("/stop", response_class=PlainTextResponse)
    async def stop():
        await node.stop()
        return "Node stopped and marked as faulty"

    @app.get("/getState")
    async def get_state():
        return node.get_state().to_dict()

    @app.post("/message", response_class=PlainTextResponse)
    async def message(body: MessageBody):
        if node.is_silent:
            return "Message received but ignored."
        try:
            envelope = body.to_envelope()
        except ValueError:
            # Unknown value: accepted at the boundary, not fed to the node
            logger.warning(f"Node {node.node_id}: unrecognised value {body.x!r} in {body.messageType.value}")
            return "Message received but ignored."
        await node.deliver(envelope)
        return "Message received and processed."

    return app

# src/network/local.py
"""
Local Network - in-process broadcast fan-out for simulated clusters

Every envelope goes to every node, the sender and faulty nodes included.
With max_delay == 0 each node consumes its inbox in global send order, so all
nodes observe the same message sequence. With max_delay > 0 each delivery is
delayed independently and messages may be reordered.
"""

import asyncio
import logging
import random
from typing import Optional, Dict, List, Set, Any

from src.consensus import BenOrNode, Envelope

logger = logging.getLogger("benor.network.local")


class LocalNetwork:
    """Asyncio queues standing in for the point-to-point transport"""

    def __init__(self, size: int, max_delay: float = 0.0, rng: Optional[random.Random] = None):
        if size < 1:
            raise ValueError(f"Network needs at least one node, got {size}")
        self.size = size
        self.max_delay = max_delay
        self._rng = rng or random.Random()

        self.nodes: Dict[int, BenOrNode] = {}
        self._inboxes: List[asyncio.Queue] = [asyncio.Queue() for _ in range(size)]
        self._workers: List[asyncio.Task] = []
        self._delayed: Set[asyncio.Task] = set()
        self._running = False

        # Statistics
        self.messages_sent = 0
        self.delivery_errors = 0

    def attach(self, node: BenOrNode):
        """Register a node and wire its broadcast to this network"""
        if not 0 <= node.node_id < self.size:
            raise ValueError(f"Node id {node.node_id} outside 0..{self.size - 1}")
        self.nodes[node.node_id] = node
        node.set_broadcast(self.broadcast)

    def broadcast(self, envelope: Envelope):
        """Queue the envelope for every node in the group"""
        for inbox in self._inboxes:
            inbox.put_nowait(envelope)
        self.messages_sent += len(self._inboxes)

    async def start(self):
        """Start one consumer task per node"""
        if self._running:
            return
        missing = [i for i in range(self.size) if i not in self.nodes]
        if missing:
            raise RuntimeError(f"Nodes not attached: {missing}")

        self._workers = [
            asyncio.create_task(self._delivery_worker(node_id)) for node_id in range(self.size)
        ]
        self._running = True
        logger.info(f"LocalNetwork started: {self.size} nodes, max_delay={self.max_delay}s")

    async def close(self):
        """Cancel consumers and pending delayed deliveries"""
        self._running = False
        tasks = self._workers + list(self._delayed)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._delayed.clear()
        logger.info(f"LocalNetwork closed after {self.messages_sent} messages")

    async def idle(self):
        """Wait until every queued envelope has been delivered"""
        while True:
            await asyncio.gather(*(inbox.join() for inbox in self._inboxes))
            if not self._delayed:
                return
            await asyncio.gather(*list(self._delayed), return_exceptions=True)

    async def _delivery_worker(self, node_id: int):
        """Consume one node's inbox"""
        inbox = self._inboxes[node_id]
        while True:
            envelope = await inbox.get()
            try:
                if self.max_delay > 0:
                    task = asyncio.create_task(self._deliver_later(node_id, envelope))
                    self._delayed.add(task)
                    task.add_done_callback(self._delayed.discard)
                else:
                    await self._deliver(node_id, envelope)
            finally:
                inbox.task_done()

    async def _deliver_later(self, node_id: int, envelope: Envelope):
        await asyncio.sleep(self._rng.uniform(0, self.max_delay))
        await self._deliver(node_id, envelope)

    async def _deliver(self, node_id: int, envelope: Envelope):
        try:
            await self.nodes[node_id].deliver(envelope)
        except Exception as e:
            self.delivery_errors += 1
            logger.error(f"Delivery error to node {node_id}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "nodes": self.size,
            "messages_sent": self.messages_sent,
            "delivery_errors": self.delivery_errors,
            "queued": sum(inbox.qsize() for inbox in self._inboxes),
            "in_flight": len(self._delayed),
        }

# src/cluster/launcher.py
"""
Node Cluster - launches N HTTP nodes on consecutive ports and drives them

Each node is a FastAPI app served by its own uvicorn server inside the current
event loop. A node marks itself ready once its server is accepting
connections; GET /start on any node blocks until every node is ready.
"""

import asyncio
import logging
from typing import Optional, Dict, List, Sequence, Iterable, Any

import httpx
import uvicorn

from src.config import get_settings
from src.consensus import BenOrNode
from src.network.api import create_node_app, wait_until
from src.network.broadcast import HttpBroadcaster
from .simulation import build_values, validate_layout

logger = logging.getLogger("benor.cluster.launcher")


class NodeCluster:
    """Process group of N HTTP nodes"""

    def __init__(
        self,
        n: int,
        f: int,
        initial_values: Sequence[Any],
        faulty: Iterable[int] = (),
        host: Optional[str] = None,
        base_port: Optional[int] = None,
    ):
        settings = get_settings()
        self.faulty_flags = validate_layout(n, initial_values, faulty)
        self.values = build_values(initial_values)
        self.n = n
        self.f = f
        self.host = host or settings.NODE_HOST
        self.base_port = settings.BASE_NODE_PORT if base_port is None else base_port

        self.nodes: List[BenOrNode] = []
        self.broadcasters: List[HttpBroadcaster] = []
        self._servers: List[uvicorn.Server] = []
        self._server_tasks: List[asyncio.Task] = []
        self._ready = [False] * n

    def url(self, node_id: int) -> str:
        return get_settings().node_url(node_id, base_port=self.base_port, host=self.host)

    # =========================================================================
    # Readiness barrier
    # =========================================================================

    def set_node_is_ready(self, node_id: int):
        self._ready[node_id] = True
        logger.info(f"Node {node_id} is listening on {self.url(node_id)}")

    def nodes_are_ready(self) -> bool:
        return all(self._ready)

    async def wait_until_ready(self):
        await wait_until(self.nodes_are_ready)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def launch(self):
        """Create every node and start serving it"""
        for node_id in range(self.n):
            broadcaster = HttpBroadcaster(self.n, url_for=self.url)
            node = BenOrNode(
                node_id=node_id,
                n=self.n,
                f=self.f,
                initial_value=self.values[node_id],
                is_faulty=self.faulty_flags[node_id],
                broadcast=broadcaster,
            )
            app = create_node_app(node, nodes_are_ready=self.nodes_are_ready)
            config = uvicorn.Config(
                app,
                host=self.host,
                port=self.base_port + node_id,
                log_level="warning",
                access_log=False,
                lifespan="off",
            )
            server = uvicorn.Server(config)

            self.nodes.append(node)
            self.broadcasters.append(broadcaster)
            self._servers.append(server)
            self._server_tasks.append(asyncio.create_task(self._serve(node_id)))

        results = await asyncio.gather(
            *(self._mark_ready_when_started(i) for i in range(self.n)), return_exceptions=True
        )
        errors = [result for result in results if isinstance(result, Exception)]
        if errors:
            await self.shutdown()
            raise errors[0]
        logger.info(f"NodeCluster launched: {self.n} nodes from port {self.base_port}")

    async def _serve(self, node_id: int):
        try:
            await self._servers[node_id].serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind
            raise RuntimeError(
                f"Node {node_id} failed to start on port {self.base_port + node_id} (exit code {e.code})"
            ) from None

    async def _mark_ready_when_started(self, node_id: int):
        server = self._servers[node_id]
        task = self._server_tasks[node_id]
        await wait_until(lambda: server.started or task.done())
        if task.done() and not server.started:
            if task.exception() is not None:
                raise task.exception()
            raise RuntimeError(f"Node {node_id} failed to start on port {self.base_port + node_id}")
        self.set_node_is_ready(node_id)

    async def shutdown(self):
        """Stop every server and close the broadcast clients"""
        for broadcaster in self.broadcasters:
            await broadcaster.aclose()
        for server in self._servers:
            server.should_exit = True
        await asyncio.gather(*self._server_tasks, return_exceptions=True)
        logger.info("NodeCluster shut down")

    async def __aenter__(self) -> "NodeCluster":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # =========================================================================
    # Orchestration over HTTP
    # =========================================================================

    async def _get_all(self, path: str) -> List[httpx.Response]:
        async with httpx.AsyncClient(timeout=get_settings().BROADCAST_TIMEOUT) as client:
            return await asyncio.gather(
                *(client.get(f"{self.url(node_id)}{path}") for node_id in range(self.n))
            )

    async def start_consensus(self):
        """GET /start on every node"""
        await self._get_all("/start")

    async def stop_consensus(self):
        """GET /stop on every node"""
        await self._get_all("/stop")

    async def get_states(self) -> List[Dict[str, Any]]:
        """GET /getState from every node"""
        responses = await self._get_all("/getState")
        return [response.json() for response in responses]

    async def get_statuses(self) -> List[str]:
        """GET /status from every node"""
        responses = await self._get_all("/status")
        return [response.text for response in responses]

    async def wait_for_decisions(self, timeout: Optional[float] = None, interval: float = 0.05) -> bool:
        """Poll node states until every live node has decided. False on timeout."""
        async def all_decided():
            while True:
                states = await self.get_states()
                live = [s for s in states if not s["killed"] and s["decided"] is not None]
                if all(s["decided"] for s in live):
                    return
                await asyncio.sleep(interval)

        try:
            await asyncio.wait_for(all_decided(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

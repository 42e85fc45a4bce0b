# src/cluster/simulation.py
"""
Local Cluster - N Ben-Or nodes wired through an in-process LocalNetwork
"""

import asyncio
import logging
import random
from typing import Optional, Dict, List, Sequence, Iterable, Any

from src.consensus import BenOrNode, NodeState, Value
from src.network.local import LocalNetwork

logger = logging.getLogger("benor.cluster.simulation")


def build_values(values: Sequence[Any]) -> List[Value]:
    """Convert raw 0 / 1 / "?" inputs to Value members"""
    return [v if isinstance(v, Value) else Value(v) for v in values]


def validate_layout(n: int, initial_values: Sequence[Any], faulty: Iterable[int]) -> List[bool]:
    """Check values and faulty ids against n. Returns per-node faulty flags."""
    if len(initial_values) != n:
        raise ValueError(f"Expected {n} initial values, got {len(initial_values)}")
    flags = [False] * n
    for node_id in faulty:
        if not 0 <= node_id < n:
            raise ValueError(f"Faulty node id {node_id} outside 0..{n - 1}")
        flags[node_id] = True
    return flags


class LocalCluster:
    """
    Runs a whole consensus group inside one event loop.

    Each node gets its own random source; seeding the cluster makes a run
    reproducible.
    """

    def __init__(
        self,
        n: int,
        f: int,
        initial_values: Sequence[Any],
        faulty: Iterable[int] = (),
        seed: Optional[int] = None,
        max_delay: float = 0.0,
    ):
        faulty_flags = validate_layout(n, initial_values, faulty)
        values = build_values(initial_values)
        seeder = random.Random(seed)

        self.n = n
        self.f = f
        self.network = LocalNetwork(n, max_delay=max_delay, rng=random.Random(seeder.random()))
        self.nodes: List[BenOrNode] = []
        self.decisions: Dict[int, Value] = {}
        self._all_decided = asyncio.Event()

        for node_id in range(n):
            node = BenOrNode(
                node_id=node_id,
                n=n,
                f=f,
                initial_value=values[node_id],
                is_faulty=faulty_flags[node_id],
                rng=random.Random(seeder.random()),
            )
            node.on_decision(self._on_decision)
            self.network.attach(node)
            self.nodes.append(node)

        logger.info(
            f"LocalCluster created: n={n}, f={f}, "
            f"values={[v.value for v in values]}, faulty={[i for i, x in enumerate(faulty_flags) if x]}"
        )

    @property
    def correct_nodes(self) -> List[BenOrNode]:
        return [node for node in self.nodes if not node.is_silent]

    def _on_decision(self, node_id: int, value: Value):
        self.decisions[node_id] = value
        self._check_all_decided()

    def _check_all_decided(self):
        if all(node.node_id in self.decisions for node in self.correct_nodes):
            self._all_decided.set()

    async def start(self):
        """Start delivery and trigger every node's first proposal"""
        await self.network.start()
        await asyncio.gather(*(node.start() for node in self.nodes))

    async def wait_for_decisions(self, timeout: Optional[float] = None) -> bool:
        """Wait until every correct node has decided. False on timeout."""
        self._check_all_decided()
        try:
            await asyncio.wait_for(self._all_decided.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            undecided = [n.node_id for n in self.correct_nodes if n.node_id not in self.decisions]
            logger.warning(f"Timed out waiting for decisions from nodes {undecided}")
            return False

    async def stop_node(self, node_id: int):
        await self.nodes[node_id].stop()
        self._check_all_decided()

    async def idle(self):
        await self.network.idle()

    def states(self) -> List[NodeState]:
        return [node.get_state() for node in self.nodes]

    def decided_values(self) -> Dict[int, Value]:
        """Decisions of nodes that are still correct"""
        return {
            node.node_id: self.decisions[node.node_id]
            for node in self.correct_nodes
            if node.node_id in self.decisions
        }

    async def close(self):
        await self.network.close()

    async def __aenter__(self) -> "LocalCluster":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

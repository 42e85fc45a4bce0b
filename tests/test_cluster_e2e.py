# tests/test_cluster_e2e.py
"""
E2E Cluster Test - real uvicorn node servers on localhost

Launches N HTTP nodes, waits for the readiness barrier, triggers /start on
every node and polls /getState until all correct nodes have decided.
"""

import socket

import pytest

from src.cluster import NodeCluster

BASE_PORT = 47310
CONFLICT_BASE_PORT = 47330


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_http_cluster_reaches_consensus():
    """n=4, f=1, node 3 faulty, honest nodes start at 1"""
    async with NodeCluster(4, 1, [1, 1, 1, "?"], faulty=[3], host="127.0.0.1", base_port=BASE_PORT) as cluster:
        assert cluster.nodes_are_ready()
        assert await cluster.get_statuses() == ["live", "live", "live", "faulty"]

        await cluster.start_consensus()
        assert await cluster.wait_for_decisions(timeout=10.0)

        states = await cluster.get_states()
        for state in states[:3]:
            assert state == {"killed": False, "x": 1, "decided": True, "k": 1}
        assert states[3] == {"killed": False, "x": None, "decided": None, "k": None}

        await cluster.stop_consensus()
        states = await cluster.get_states()
        assert all(state["killed"] for state in states)


@pytest.fixture
def occupied_port():
    """Hold one port of the conflict cluster's range open"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", CONFLICT_BASE_PORT + 2))
    sock.listen(1)
    yield CONFLICT_BASE_PORT + 2
    sock.close()


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_port_in_use_raises_and_cleans_up(occupied_port):
    cluster = NodeCluster(3, 1, [1, 1, 1], host="127.0.0.1", base_port=CONFLICT_BASE_PORT)

    with pytest.raises(RuntimeError, match=f"Node 2 failed to start on port {occupied_port}"):
        await cluster.launch()

    assert not cluster.nodes_are_ready()
    assert all(task.done() for task in cluster._server_tasks)
    assert all(broadcaster._client is None for broadcaster in cluster.broadcasters)

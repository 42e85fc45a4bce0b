# src/cluster/__main__.py
"""
Run a Ben-Or consensus group and print every node's final state.

    python -m src.cluster --nodes 4 --faults 1 --values 1 1 1 1 --faulty 3
    python -m src.cluster --nodes 4 --faults 1 --values 0 1 1 1 --http
"""

import argparse
import asyncio
import json
import logging
import sys

from src.config import configure_logging, get_settings
from .launcher import NodeCluster
from .simulation import LocalCluster

logger = logging.getLogger("benor.cluster")


def parse_value(raw: str):
    if raw == "?":
        return raw
    if raw in ("0", "1"):
        return int(raw)
    raise argparse.ArgumentTypeError(f"value must be 0, 1 or ?, got {raw!r}")


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="python -m src.cluster",
        description="Simulate a Ben-Or randomized binary consensus group",
    )
    parser.add_argument("--nodes", "-n", type=int, default=settings.CLUSTER_SIZE, help="Group size N")
    parser.add_argument("--faults", "-f", type=int, default=settings.FAULT_TOLERANCE, help="Fault tolerance F")
    parser.add_argument("--values", nargs="+", type=parse_value, help="Initial value per node (0, 1 or ?)")
    parser.add_argument("--faulty", nargs="*", type=int, default=[], help="Ids of faulty nodes")
    parser.add_argument("--http", action="store_true", help="Run nodes as HTTP servers instead of in-process")
    parser.add_argument("--base-port", type=int, default=settings.BASE_NODE_PORT, help="Port of node 0 (HTTP mode)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (in-process mode)")
    parser.add_argument("--max-delay", type=float, default=0.0, help="Max random delivery delay (in-process mode)")
    parser.add_argument("--timeout", type=float, default=10.0, help="Seconds to wait for decisions")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    return parser


async def run_local(args) -> list:
    async with LocalCluster(
        args.nodes, args.faults, args.values, faulty=args.faulty, seed=args.seed, max_delay=args.max_delay
    ) as cluster:
        await cluster.start()
        if not await cluster.wait_for_decisions(timeout=args.timeout):
            logger.warning("Not every correct node decided before the timeout")
        return [state.to_dict() for state in cluster.states()]


async def run_http(args) -> list:
    async with NodeCluster(
        args.nodes, args.faults, args.values, faulty=args.faulty, base_port=args.base_port
    ) as cluster:
        await cluster.start_consensus()
        if not await cluster.wait_for_decisions(timeout=args.timeout):
            logger.warning("Not every correct node decided before the timeout")
        return await cluster.get_states()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.values is None:
        args.values = [1] * args.nodes
    configure_logging(args.log_level)

    try:
        states = asyncio.run(run_http(args) if args.http else run_local(args))
    except ValueError as e:
        logger.error(f"Invalid cluster configuration: {e}")
        return 2
    except RuntimeError as e:
        logger.error(f"Cluster failed to launch: {e}")
        return 1

    for node_id, state in enumerate(states):
        print(f"node {node_id}: {json.dumps(state)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

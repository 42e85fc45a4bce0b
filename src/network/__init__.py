# src/network/__init__.py
"""
Network Module - transports for the consensus core
Broadcast fan-out (in-process and HTTP) and the per-node HTTP API
"""

from .local import LocalNetwork
from .broadcast import HttpBroadcaster
from .api import create_node_app, MessageBody

__all__ = [
    "LocalNetwork",
    "HttpBroadcaster",
    "create_node_app",
    "MessageBody",
]

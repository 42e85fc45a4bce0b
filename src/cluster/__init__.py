# src/cluster/__init__.py
"""
Cluster Module - running whole consensus groups
In-process simulation (LocalCluster) and HTTP node clusters (NodeCluster)
"""

from .simulation import LocalCluster
from .launcher import NodeCluster

__all__ = [
    "LocalCluster",
    "NodeCluster",
]

"""Data models for cluster configuration and state."""

from kube_vagrant.models.cluster import (
    ClusterActualState,
    ClusterDesiredState,
    MachineState,
    NodeStatus,
    validate_node_count,
)
from kube_vagrant.models.node import Node, ResourceProfile

__all__ = [
    "Node",
    "ResourceProfile",
    "ClusterActualState",
    "ClusterDesiredState",
    "MachineState",
    "NodeStatus",
    "validate_node_count",
]

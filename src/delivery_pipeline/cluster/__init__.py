"""Cluster control-plane collaborators."""

from delivery_pipeline.cluster.client import ClusterClient, RolloutStatus
from delivery_pipeline.cluster.kubectl import KubectlClusterClient, parse_rollout_status

__all__ = [
    "ClusterClient",
    "KubectlClusterClient",
    "RolloutStatus",
    "parse_rollout_status",
]

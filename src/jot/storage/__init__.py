"""Storage abstraction for embeddings, clusters and task state."""

from .base import ClusterStoreBase, get_cluster_store
from .memory import MemoryClusterStore
from .state import JsonStateFile

__all__ = ["ClusterStoreBase", "get_cluster_store", "MemoryClusterStore", "JsonStateFile"]

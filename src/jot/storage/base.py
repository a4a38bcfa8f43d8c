"""Abstract base class for cluster stores and factory function."""

from abc import ABC, abstractmethod
from typing import Any

from ..errors import ValidationError
from ..models import Cluster, NoteEmbedding


class ClusterStoreBase(ABC):
    """Common interface for the embedding + cluster store.

    Embeddings are keyed by note id (one per note). Clusters are a flat list
    whose order is creation order; updating a cluster keeps its position.
    """

    # Embeddings

    @abstractmethod
    def get_embedding(self, note_id: str) -> NoteEmbedding | None:
        """Return the embedding of note_id, or None."""

    @abstractmethod
    def list_embeddings(self) -> list[NoteEmbedding]:
        """Return every stored embedding."""

    @abstractmethod
    def _put_embedding(self, embedding: NoteEmbedding) -> None:
        """Insert or overwrite the embedding for embedding.note_id."""

    @abstractmethod
    def delete_embedding(self, note_id: str) -> bool:
        """Delete the embedding of note_id. Returns True if one existed."""

    @abstractmethod
    def replace_embeddings(self, embeddings: list[NoteEmbedding]) -> None:
        """Drop every embedding and store these instead."""

    @abstractmethod
    def count_embeddings(self) -> int:
        """Count stored embeddings."""

    @abstractmethod
    def dimension(self) -> int | None:
        """Dimensionality of the stored embeddings, None when there are none."""

    # Clusters

    @abstractmethod
    def get_cluster(self, cluster_id: str) -> Cluster | None:
        """Return the cluster with this id, or None."""

    @abstractmethod
    def list_clusters(self) -> list[Cluster]:
        """Return all clusters in creation order."""

    @abstractmethod
    def upsert_cluster(self, cluster: Cluster) -> None:
        """Insert or overwrite a cluster."""

    @abstractmethod
    def delete_cluster(self, cluster_id: str) -> bool:
        """Delete a cluster. Returns True if it existed."""

    @abstractmethod
    def replace_clusters(self, clusters: list[Cluster]) -> None:
        """Drop every cluster and store these instead."""

    def upsert_embedding(self, embedding: NoteEmbedding) -> None:
        """Insert or overwrite a note's embedding, enforcing one dimensionality."""
        dim = self.dimension()
        if dim is not None and dim != embedding.dimension:
            existing = self.get_embedding(embedding.note_id)
            if not (existing is not None and self.count_embeddings() == 1):
                raise ValidationError(
                    f"embedding for note {embedding.note_id} has dimension {embedding.dimension}, "
                    f"store holds dimension {dim}; run a full reclassification after changing models"
                )
        self._put_embedding(embedding)

    def get_embeddings(self, note_ids: list[str]) -> dict[str, NoteEmbedding]:
        """Embeddings of note_ids keyed by note id; ids without one are absent."""
        found = {}
        for note_id in note_ids:
            embedding = self.get_embedding(note_id)
            if embedding is not None:
                found[note_id] = embedding
        return found

    def clusters_containing(self, note_id: str) -> list[Cluster]:
        return [c for c in self.list_clusters() if note_id in c.note_ids]

    def count_clusters(self) -> int:
        return len(self.list_clusters())


def get_cluster_store(config: dict[str, Any]) -> ClusterStoreBase:
    """Factory: return the right cluster store based on config."""
    backend = config.get("storage_backend", "chromadb")

    if backend == "memory":
        from .memory import MemoryClusterStore
        return MemoryClusterStore()
    elif backend == "chromadb":
        from .chromadb import ChromaClusterStore
        return ChromaClusterStore(config["chroma_path"])
    else:
        raise ValueError(f"Unknown storage_backend: {backend}")

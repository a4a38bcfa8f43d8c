"""In-memory cluster store, used by tests and the `memory` backend."""

from ..models import Cluster, NoteEmbedding
from .base import ClusterStoreBase


class MemoryClusterStore(ClusterStoreBase):
    """Keeps embeddings and clusters in insertion-ordered dicts."""

    def __init__(self):
        self._embeddings: dict[str, NoteEmbedding] = {}
        self._clusters: dict[str, Cluster] = {}

    def get_embedding(self, note_id: str) -> NoteEmbedding | None:
        return self._embeddings.get(note_id)

    def list_embeddings(self) -> list[NoteEmbedding]:
        return list(self._embeddings.values())

    def _put_embedding(self, embedding: NoteEmbedding) -> None:
        self._embeddings[embedding.note_id] = embedding

    def delete_embedding(self, note_id: str) -> bool:
        return self._embeddings.pop(note_id, None) is not None

    def replace_embeddings(self, embeddings: list[NoteEmbedding]) -> None:
        self._embeddings = {e.note_id: e for e in embeddings}

    def count_embeddings(self) -> int:
        return len(self._embeddings)

    def dimension(self) -> int | None:
        for e in self._embeddings.values():
            return e.dimension
        return None

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        return self._clusters.get(cluster_id)

    def list_clusters(self) -> list[Cluster]:
        return list(self._clusters.values())

    def upsert_cluster(self, cluster: Cluster) -> None:
        self._clusters[cluster.id] = cluster

    def delete_cluster(self, cluster_id: str) -> bool:
        return self._clusters.pop(cluster_id, None) is not None

    def replace_clusters(self, clusters: list[Cluster]) -> None:
        self._clusters = {c.id: c for c in clusters}

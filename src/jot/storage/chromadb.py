"""ChromaDB cluster store backend.

Two collections: note embeddings keyed by note id, and clusters keyed by
cluster id with the centroid as the stored vector and the rest of the record
in metadata.
"""

import json
from pathlib import Path
from typing import Any

import chromadb
import numpy as np

from ..errors import ValidationError
from ..models import Cluster, NoteEmbedding
from .base import ClusterStoreBase

EMBEDDINGS = "note_embeddings"
CLUSTERS = "clusters"


def _to_list(vector: Any) -> list[float]:
    """Chroma hands back numpy arrays; records hold plain lists."""
    return vector.tolist() if isinstance(vector, np.ndarray) else list(vector)


class ChromaClusterStore(ClusterStoreBase):
    """ChromaDB-backed persistent cluster store."""

    def __init__(self, chroma_path: str):
        self.chroma_path = Path(chroma_path)
        self.chroma_path.mkdir(parents=True, exist_ok=True)
        self.client = chromadb.PersistentClient(path=str(self.chroma_path))

    def get_or_create_collection(self, name: str) -> chromadb.Collection:
        return self.client.get_or_create_collection(
            name=name,
            metadata={"hnsw:space": "cosine"},
        )

    def _reset_collection(self, name: str) -> chromadb.Collection:
        # Recreate so a new embedding model may change the dimension.
        existing = {getattr(c, "name", c) for c in self.client.list_collections()}
        if name in existing:
            self.client.delete_collection(name)
        return self.get_or_create_collection(name)

    # Embeddings

    @staticmethod
    def _embedding_from(note_id: str, vector: Any, meta: dict[str, Any]) -> NoteEmbedding:
        return NoteEmbedding(
            note_id=note_id,
            vector=_to_list(vector),
            model=meta.get("model", "unknown"),
            id=meta.get("embedding_id", note_id),
            created_at=meta.get("created_at", ""),
        )

    @staticmethod
    def _embedding_meta(embedding: NoteEmbedding) -> dict[str, Any]:
        return {
            "model": embedding.model,
            "embedding_id": embedding.id,
            "created_at": embedding.created_at,
        }

    def get_embedding(self, note_id: str) -> NoteEmbedding | None:
        collection = self.get_or_create_collection(EMBEDDINGS)
        result = collection.get(ids=[note_id], include=["embeddings", "metadatas"])
        if len(result["ids"]) == 0:
            return None
        return self._embedding_from(result["ids"][0], result["embeddings"][0], result["metadatas"][0] or {})

    def get_embeddings(self, note_ids: list[str]) -> dict[str, NoteEmbedding]:
        if not note_ids:
            return {}
        collection = self.get_or_create_collection(EMBEDDINGS)
        data = collection.get(ids=list(note_ids), include=["embeddings", "metadatas"])
        metadatas = data["metadatas"] or [{}] * len(data["ids"])
        return {
            note_id: self._embedding_from(note_id, data["embeddings"][i], metadatas[i] or {})
            for i, note_id in enumerate(data["ids"])
        }

    def list_embeddings(self) -> list[NoteEmbedding]:
        collection = self.get_or_create_collection(EMBEDDINGS)
        data = collection.get(include=["embeddings", "metadatas"])
        if data["ids"] is None or len(data["ids"]) == 0:
            return []
        metadatas = data["metadatas"] or [{}] * len(data["ids"])
        return [
            self._embedding_from(note_id, data["embeddings"][i], metadatas[i] or {})
            for i, note_id in enumerate(data["ids"])
        ]

    def _put_embedding(self, embedding: NoteEmbedding) -> None:
        collection = self.get_or_create_collection(EMBEDDINGS)
        # A collection keeps the dimension of its first vector, even once emptied.
        count = collection.count()
        if count == 0 or (count == 1 and collection.get(ids=[embedding.note_id])["ids"]):
            collection = self._reset_collection(EMBEDDINGS)
        collection.upsert(
            ids=[embedding.note_id],
            embeddings=[embedding.vector],
            metadatas=[self._embedding_meta(embedding)],
        )

    def delete_embedding(self, note_id: str) -> bool:
        collection = self.get_or_create_collection(EMBEDDINGS)
        if len(collection.get(ids=[note_id])["ids"]) == 0:
            return False
        collection.delete(ids=[note_id])
        return True

    def replace_embeddings(self, embeddings: list[NoteEmbedding]) -> None:
        collection = self._reset_collection(EMBEDDINGS)
        if not embeddings:
            return
        collection.add(
            ids=[e.note_id for e in embeddings],
            embeddings=[e.vector for e in embeddings],
            metadatas=[self._embedding_meta(e) for e in embeddings],
        )

    def count_embeddings(self) -> int:
        return self.get_or_create_collection(EMBEDDINGS).count()

    def dimension(self) -> int | None:
        collection = self.get_or_create_collection(EMBEDDINGS)
        result = collection.get(limit=1, include=["embeddings"])
        if len(result["ids"]) == 0:
            return None
        return len(result["embeddings"][0])

    # Clusters

    @staticmethod
    def _cluster_from(cluster_id: str, centroid: Any, meta: dict[str, Any]) -> Cluster:
        return Cluster(
            id=cluster_id,
            name=meta.get("name", ""),
            centroid=_to_list(centroid),
            note_ids=json.loads(meta.get("note_ids", "[]")),
            parent_id=meta.get("parent_id") or None,
            created_at=meta.get("created_at", ""),
            updated_at=meta.get("updated_at", ""),
        )

    @staticmethod
    def _cluster_meta(cluster: Cluster) -> dict[str, Any]:
        return {
            "name": cluster.name,
            "note_ids": json.dumps(cluster.note_ids),
            "parent_id": cluster.parent_id or "",
            "created_at": cluster.created_at,
            "updated_at": cluster.updated_at,
        }

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        collection = self.get_or_create_collection(CLUSTERS)
        result = collection.get(ids=[cluster_id], include=["embeddings", "metadatas"])
        if len(result["ids"]) == 0:
            return None
        return self._cluster_from(result["ids"][0], result["embeddings"][0], result["metadatas"][0] or {})

    def list_clusters(self) -> list[Cluster]:
        collection = self.get_or_create_collection(CLUSTERS)
        data = collection.get(include=["embeddings", "metadatas"])
        if data["ids"] is None or len(data["ids"]) == 0:
            return []
        metadatas = data["metadatas"] or [{}] * len(data["ids"])
        clusters = [
            self._cluster_from(cluster_id, data["embeddings"][i], metadatas[i] or {})
            for i, cluster_id in enumerate(data["ids"])
        ]
        clusters.sort(key=lambda c: (c.created_at, c.id))
        return clusters

    def upsert_cluster(self, cluster: Cluster) -> None:
        if not cluster.centroid:
            raise ValidationError(f"cluster {cluster.id} has no centroid to store")
        collection = self.get_or_create_collection(CLUSTERS)
        collection.upsert(
            ids=[cluster.id],
            embeddings=[cluster.centroid],
            metadatas=[self._cluster_meta(cluster)],
            documents=[cluster.name],
        )

    def delete_cluster(self, cluster_id: str) -> bool:
        collection = self.get_or_create_collection(CLUSTERS)
        if len(collection.get(ids=[cluster_id])["ids"]) == 0:
            return False
        collection.delete(ids=[cluster_id])
        return True

    def replace_clusters(self, clusters: list[Cluster]) -> None:
        self._reset_collection(CLUSTERS)
        for cluster in clusters:
            self.upsert_cluster(cluster)

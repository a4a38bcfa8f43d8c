"""Vector helpers: cosine similarity, centroids and nearest-neighbour scans."""

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from ..models import NoteEmbedding


@dataclass
class NearestCluster:
    cluster: Any
    similarity: float
    index: int


@dataclass
class SimilarNote:
    note_id: str
    similarity: float


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine of the angle between a and b.

    Empty or None vectors, mismatched lengths and zero norms all give 0.0:
    no signal, not an error.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb)) / (norm_a * norm_b)


def centroid(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Component-wise mean of vectors, [] for no vectors."""
    if len(vectors) == 0:
        return []
    return np.asarray(vectors, dtype=float).mean(axis=0).tolist()


def find_nearest_cluster(vector: Sequence[float], clusters: Sequence[Any]) -> NearestCluster:
    """Linear scan for the cluster whose centroid is most similar to vector.

    Clusters with an empty centroid are skipped. The first cluster wins ties.
    """
    best: NearestCluster | None = None
    for i, cluster in enumerate(clusters):
        if cluster.centroid is None or len(cluster.centroid) == 0:
            continue
        similarity = cosine_similarity(vector, cluster.centroid)
        if best is None or similarity > best.similarity:
            best = NearestCluster(cluster=cluster, similarity=similarity, index=i)

    return best or NearestCluster(cluster=None, similarity=0.0, index=-1)


def find_similar_notes(
    vector: Sequence[float],
    candidates: Sequence[NoteEmbedding],
    top_n: int = 5,
) -> list[SimilarNote]:
    """Return the top_n candidates most similar to vector, best first."""
    if vector is None or len(vector) == 0 or not candidates:
        return []

    scored = [
        SimilarNote(note_id=e.note_id, similarity=cosine_similarity(vector, e.vector))
        for e in candidates
        if len(e.vector) > 0
    ]
    scored.sort(key=lambda s: s.similarity, reverse=True)
    return scored[:top_n]

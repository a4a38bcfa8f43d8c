"""Incremental nearest-centroid clustering of notes.

Each note is embedded and joins the nearest cluster when the centroid
similarity clears the threshold, or starts a new cluster otherwise. Two
maintenance steps keep the greedy assignment honest: oversized clusters are
bisected, and the most similar pair of clusters is merged when their centroids
nearly coincide.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any

from ..errors import EmbeddingError, StoreInconsistency, ValidationError
from ..events import ProgressChannel, ProgressEvent
from ..models import Cluster, Note, NoteEmbedding
from ..notes import NoteSource
from ..providers.embedding import EmbeddingProvider, embed_in_batches
from ..storage import ClusterStoreBase
from .naming import generate_cluster_name
from .vector_math import SimilarNote, centroid, cosine_similarity, find_nearest_cluster, find_similar_notes

logger = logging.getLogger(__name__)

# Share of reported reclassification progress spent on embedding.
EMBEDDING_PROGRESS_SHARE = 0.8


@dataclass
class ReclassifyStats:
    total: int
    completed: int
    errors: int
    clusters: int


@dataclass
class ReclassifyResult:
    success: bool
    stats: ReclassifyStats | None = None
    error: str | None = None


class ClassificationEngine:
    """Maintains the partition of notes into clusters.

    Every public operation holds `lock` for its whole duration, so the queue
    worker and a full rebuild never interleave their read-modify-write cycles
    on the store.
    """

    def __init__(
        self,
        store: ClusterStoreBase,
        provider: EmbeddingProvider,
        notes: NoteSource,
        config: dict[str, Any] | None = None,
    ):
        self.store = store
        self.provider = provider
        self.notes = notes

        config = config or {}
        cls_cfg = config.get("classification", {})
        self.similarity_threshold = cls_cfg.get("similarity_threshold", 0.7)
        self.merge_threshold = cls_cfg.get("merge_threshold", 0.85)
        self.max_cluster_size = cls_cfg.get("max_cluster_size", 50)
        self.min_split_size = cls_cfg.get("min_split_size", 4)

        emb_cfg = config.get("embedding", {})
        self.batch_size = emb_cfg.get("batch_size", 20)
        self.fallback_delay = emb_cfg.get("fallback_delay", 0.05)
        self.batch_delay = emb_cfg.get("batch_delay", 0.2)

        self.lock = asyncio.Lock()

    # Public operations

    async def classify_note(self, note_id: str) -> Cluster:
        """Embed one note and place it in a cluster. Returns the cluster holding it."""
        note = self.notes.get_note(note_id)
        if note is None or not note.has_content:
            raise ValidationError(f"note {note_id} does not exist or has no content")

        async with self.lock:
            result = await self.provider.embed(note.content)
            if not result.success:
                raise EmbeddingError(f"embedding note {note_id} failed: {result.error}")

            self.store.upsert_embedding(NoteEmbedding(
                note_id=note_id,
                vector=result.vector,
                model=result.model or self.provider.model_name,
            ))

            # A re-classified note leaves its old cluster before joining again.
            self._detach(note_id)
            cluster = self._assign(note, result.vector)
            self.merge_check()

            holders = self.store.clusters_containing(note_id)
            return holders[0] if holders else cluster

    async def reclassify_all(self, progress: ProgressChannel | None = None) -> ReclassifyResult:
        """Rebuild every embedding and cluster from scratch.

        Destructive: existing clusters are dropped first. Returns partial
        statistics when some notes fail to embed.
        """
        valid = [n for n in self.notes.load_notes() if n.has_content]
        if not valid:
            return ReclassifyResult(success=False, error="no notes with content to classify")

        total = len(valid)

        def report(stage: str, completed: int) -> None:
            if progress:
                progress.publish(ProgressEvent(kind="reclassify", stage=stage, completed=completed, total=total))

        async with self.lock:
            self.store.replace_clusters([])

            logger.info("Embedding %d notes in batches of %d", total, self.batch_size)
            results = await embed_in_batches(
                self.provider,
                [n.content for n in valid],
                batch_size=self.batch_size,
                fallback_delay=self.fallback_delay,
                batch_delay=self.batch_delay,
                on_batch=lambda done, _: report("embedding", math.floor(done * EMBEDDING_PROGRESS_SHARE)),
            )

            embeddings: list[NoteEmbedding] = []
            errors = 0
            for note, result in zip(valid, results):
                if result.success and result.vector:
                    embeddings.append(NoteEmbedding(
                        note_id=note.id,
                        vector=result.vector,
                        model=result.model or self.provider.model_name,
                    ))
                else:
                    errors += 1
                    logger.warning("No embedding for note %s: %s", note.id, result.error)

            self.store.replace_embeddings(embeddings)
            logger.info("Embeddings done: %d ok, %d failed", len(embeddings), errors)

            by_note = {e.note_id: e for e in embeddings}
            for clustered, note in enumerate(valid, 1):
                embedding = by_note.get(note.id)
                if embedding is not None:
                    self._assign(note, embedding.vector)
                report("clustering", math.floor(total * EMBEDDING_PROGRESS_SHARE + clustered * (1 - EMBEDDING_PROGRESS_SHARE)))

            self.merge_check()
            cluster_count = self.store.count_clusters()

        report("done", total)
        logger.info("Reclassification finished with %d clusters", cluster_count)
        return ReclassifyResult(
            success=True,
            stats=ReclassifyStats(total=total, completed=total - errors, errors=errors, clusters=cluster_count),
        )

    async def cleanup_note_classification(self, note_id: str) -> bool:
        """Forget a deleted note: drop its embedding and its cluster memberships."""
        async with self.lock:
            removed = self.store.delete_embedding(note_id)
            detached = self._detach(note_id)
        return removed or detached > 0

    def find_similar_notes(self, note_id: str, top_n: int = 5) -> list[SimilarNote]:
        """Notes whose embeddings are closest to note_id's, best first."""
        embedding = self.store.get_embedding(note_id)
        if embedding is None:
            return []
        others = [e for e in self.store.list_embeddings() if e.note_id != note_id]
        return find_similar_notes(embedding.vector, others, top_n)

    # Membership

    def _assign(self, note: Note, vector: list[float]) -> Cluster:
        """Join the nearest cluster or start a new one."""
        clusters = self.store.list_clusters()
        if not clusters:
            cluster = self._new_cluster(note, vector)
            logger.info("Created first cluster %r", cluster.name)
            return cluster

        nearest = find_nearest_cluster(vector, clusters)
        if nearest.cluster is None or nearest.similarity < self.similarity_threshold:
            cluster = self._new_cluster(note, vector)
            logger.info("Created cluster %r (best similarity %.3f)", cluster.name, nearest.similarity)
            return cluster

        cluster = nearest.cluster
        if note.id not in cluster.note_ids:
            cluster.note_ids.append(note.id)
        cluster.touch()
        self._recompute_centroid(cluster)
        self.store.upsert_cluster(cluster)
        logger.info("Note %s joined cluster %r (similarity %.3f)", note.id, cluster.name, nearest.similarity)

        if cluster.size > self.max_cluster_size:
            self.split_cluster(cluster)
        return cluster

    def _new_cluster(self, note: Note, vector: list[float]) -> Cluster:
        cluster = Cluster(
            name=generate_cluster_name([note.content]),
            centroid=list(vector),
            note_ids=[note.id],
        )
        self.store.upsert_cluster(cluster)
        return cluster

    def _detach(self, note_id: str) -> int:
        """Remove note_id from every cluster, dropping clusters left empty."""
        touched = 0
        for cluster in self.store.clusters_containing(note_id):
            touched += 1
            remaining = [n for n in cluster.note_ids if n != note_id]
            if not remaining:
                self.store.delete_cluster(cluster.id)
                logger.info("Removed empty cluster %r", cluster.name)
                continue
            cluster.note_ids = remaining
            cluster.touch()
            self._recompute_centroid(cluster)
            self.store.upsert_cluster(cluster)
        return touched

    def _recompute_centroid(self, cluster: Cluster) -> None:
        """Set the centroid to the mean of the members that have embeddings."""
        embeddings = self.store.get_embeddings(cluster.note_ids)
        missing = [n for n in cluster.note_ids if n not in embeddings]
        if missing:
            logger.warning("%s", StoreInconsistency(cluster.id, missing))
        vectors = [embeddings[n].vector for n in cluster.note_ids if n in embeddings]
        if vectors:
            cluster.centroid = centroid(vectors)

    # Maintenance

    def split_cluster(self, cluster: Cluster) -> Cluster | None:
        """Bisect cluster around its two most distant members.

        The cluster keeps the first half in place; the second half becomes a
        new cluster, which is returned. Returns None when there is nothing to
        split: fewer than min_split_size embedded members, or all identical.
        """
        embeddings = self.store.get_embeddings(cluster.note_ids)
        members = [embeddings[n] for n in cluster.note_ids if n in embeddings]
        if len(members) < self.min_split_size:
            return None

        logger.info("Cluster %r is too large (%d notes), splitting", cluster.name, cluster.size)

        max_distance = 0.0
        seeds: tuple[NoteEmbedding, NoteEmbedding] | None = None
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                distance = 1 - cosine_similarity(members[i].vector, members[j].vector)
                if distance > max_distance:
                    max_distance = distance
                    seeds = (members[i], members[j])

        if seeds is None:
            return None

        first, second = seeds
        group1: list[NoteEmbedding] = []
        group2: list[NoteEmbedding] = []
        for member in members:
            if cosine_similarity(member.vector, first.vector) >= cosine_similarity(member.vector, second.vector):
                group1.append(member)
            else:
                group2.append(member)

        if not group2:
            return None

        contents = {n.id: n.content for n in self.notes.load_notes()}

        cluster.note_ids = [m.note_id for m in group1]
        cluster.centroid = centroid([m.vector for m in group1])
        cluster.name = generate_cluster_name([contents.get(m.note_id, "") for m in group1])
        cluster.touch()
        self.store.upsert_cluster(cluster)

        sibling = Cluster(
            name=generate_cluster_name([contents.get(m.note_id, "") for m in group2]),
            centroid=centroid([m.vector for m in group2]),
            note_ids=[m.note_id for m in group2],
        )
        self.store.upsert_cluster(sibling)

        logger.info("Split into %r (%d) and %r (%d)", cluster.name, len(group1), sibling.name, len(group2))
        return sibling

    def merge_check(self) -> Cluster | None:
        """Merge the most similar pair of clusters if they clear merge_threshold.

        Pairs whose union would exceed max_cluster_size are never merged. At
        most one merge per call. Returns the surviving cluster.
        """
        clusters = self.store.list_clusters()
        if len(clusters) < 2:
            return None

        best = 0.0
        pair: tuple[int, int] | None = None
        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                if not clusters[i].centroid or not clusters[j].centroid:
                    continue
                if len(set(clusters[i].note_ids) | set(clusters[j].note_ids)) > self.max_cluster_size:
                    continue
                similarity = cosine_similarity(clusters[i].centroid, clusters[j].centroid)
                if similarity > best:
                    best = similarity
                    pair = (i, j)

        if pair is None or best < self.merge_threshold:
            return None

        keep, absorb = clusters[pair[0]], clusters[pair[1]]
        logger.info("Merging cluster %r into %r (similarity %.3f)", absorb.name, keep.name, best)

        keep.note_ids = list(dict.fromkeys(keep.note_ids + absorb.note_ids))
        self._recompute_centroid(keep)
        keep.touch()
        self.store.delete_cluster(absorb.id)
        self.store.upsert_cluster(keep)
        return keep

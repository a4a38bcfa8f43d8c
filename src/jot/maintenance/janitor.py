"""Store maintenance: repair cluster records that drifted from the embeddings."""

import logging
from typing import Any

from ..clustering.vector_math import centroid
from ..errors import StoreInconsistency
from ..storage import ClusterStoreBase

logger = logging.getLogger(__name__)


def run_janitor(store: ClusterStoreBase) -> dict[str, Any]:
    """Run maintenance tasks on the cluster store.

    - drops note ids that have no embedding (dangling references)
    - keeps each note in the oldest cluster that lists it
    - deletes clusters left without members
    - recomputes every surviving centroid

    Callers that share the store with a running engine must hold its lock.
    Returns stats about what was fixed; `inconsistencies` lists the dangling
    references found, one StoreInconsistency per cluster.
    """
    stats: dict[str, Any] = {
        "dangling_removed": 0,
        "duplicates_removed": 0,
        "empty_removed": 0,
        "centroids_updated": 0,
        "inconsistencies": [],
    }

    embeddings = {e.note_id: e for e in store.list_embeddings()}
    seen: set[str] = set()

    for cluster in store.list_clusters():
        dangling = [n for n in cluster.note_ids if n not in embeddings]
        if dangling:
            stats["inconsistencies"].append(StoreInconsistency(cluster.id, dangling))
            stats["dangling_removed"] += len(dangling)

        kept = []
        for note_id in cluster.note_ids:
            if note_id not in embeddings:
                continue
            if note_id in seen:
                stats["duplicates_removed"] += 1
                continue
            seen.add(note_id)
            kept.append(note_id)

        if not kept:
            store.delete_cluster(cluster.id)
            stats["empty_removed"] += 1
            logger.info("Removed cluster %r: no embedded members left", cluster.name)
            continue

        fresh = centroid([embeddings[n].vector for n in kept])
        if kept != cluster.note_ids or fresh != cluster.centroid:
            cluster.note_ids = kept
            cluster.centroid = fresh
            cluster.touch()
            store.upsert_cluster(cluster)
            stats["centroids_updated"] += 1

    for problem in stats["inconsistencies"]:
        logger.warning("%s", problem)
    return stats

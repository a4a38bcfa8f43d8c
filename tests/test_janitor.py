"""Tests for store maintenance."""

from jot.errors import StoreInconsistency
from jot.maintenance.janitor import run_janitor
from jot.models import Cluster, NoteEmbedding
from jot.storage import MemoryClusterStore


def make_store():
    store = MemoryClusterStore()
    for note_id, vector in {"a": [1.0, 0.0], "b": [0.0, 1.0], "c": [1.0, 1.0]}.items():
        store.upsert_embedding(NoteEmbedding(note_id=note_id, vector=vector))
    return store


def test_clean_store_is_left_alone():
    store = make_store()
    store.upsert_cluster(Cluster(name="x", centroid=[0.5, 0.5], note_ids=["a", "b"]))

    stats = run_janitor(store)

    assert stats["dangling_removed"] == 0
    assert stats["duplicates_removed"] == 0
    assert stats["centroids_updated"] == 0
    assert stats["inconsistencies"] == []


def test_dangling_references_are_reported_and_removed():
    store = make_store()
    cluster = Cluster(name="x", centroid=[0.5, 0.5], note_ids=["a", "ghost", "b"])
    store.upsert_cluster(cluster)

    stats = run_janitor(store)

    assert stats["dangling_removed"] == 1
    [problem] = stats["inconsistencies"]
    assert isinstance(problem, StoreInconsistency)
    assert problem.cluster_id == cluster.id
    assert problem.note_ids == ["ghost"]
    assert store.get_cluster(cluster.id).note_ids == ["a", "b"]


def test_duplicate_membership_keeps_oldest_cluster():
    store = make_store()
    older = Cluster(name="older", centroid=[1.0, 0.0], note_ids=["a", "c"])
    newer = Cluster(name="newer", centroid=[0.0, 1.0], note_ids=["b", "c"])
    store.upsert_cluster(older)
    store.upsert_cluster(newer)

    stats = run_janitor(store)

    assert stats["duplicates_removed"] == 1
    assert store.get_cluster(older.id).note_ids == ["a", "c"]
    assert store.get_cluster(newer.id).note_ids == ["b"]
    assert store.get_cluster(newer.id).centroid == [0.0, 1.0]
    assert store.get_cluster(older.id).centroid == [1.0, 0.5]


def test_clusters_without_embedded_members_are_removed():
    store = make_store()
    store.upsert_cluster(Cluster(name="ghosts", centroid=[1.0, 0.0], note_ids=["x", "y"]))

    stats = run_janitor(store)

    assert stats["empty_removed"] == 1
    assert store.count_clusters() == 0

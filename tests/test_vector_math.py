"""Tests for vector helpers and cluster naming."""

import math

from jot.clustering.naming import DEFAULT_CLUSTER_NAME, generate_cluster_name
from jot.clustering.vector_math import centroid, cosine_similarity, find_nearest_cluster, find_similar_notes
from jot.models import Cluster, NoteEmbedding


def test_cosine_identical():
    v = [0.3, -1.2, 4.0]
    assert math.isclose(cosine_similarity(v, v), 1.0, rel_tol=1e-9)


def test_cosine_degenerate_inputs_are_zero():
    assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity(None, [1.0]) == 0.0


def test_cosine_orthogonal_and_opposite():
    assert cosine_similarity([1, 0], [0, 1]) == 0.0
    assert math.isclose(cosine_similarity([1, 0], [-2, 0]), -1.0)


def test_centroid():
    v = [1.0, 2.0, 3.0]
    assert centroid([v]) == v
    assert centroid([v, v]) == v
    assert centroid([]) == []
    assert centroid([[0.0, 2.0], [2.0, 0.0]]) == [1.0, 1.0]


def test_find_nearest_cluster():
    a = Cluster(name="a", centroid=[1, 0], note_ids=["x"])
    b = Cluster(name="b", centroid=[0, 1], note_ids=["y"])
    nearest = find_nearest_cluster([0.1, 0.9], [a, b])
    assert nearest.cluster is b
    assert nearest.index == 1
    assert nearest.similarity > 0.9


def test_find_nearest_cluster_skips_empty_centroids():
    empty = Cluster(name="e", centroid=[], note_ids=["x"])
    nearest = find_nearest_cluster([1, 0], [empty])
    assert nearest.cluster is None
    assert nearest.similarity == 0.0
    assert nearest.index == -1


def test_find_similar_notes_orders_best_first():
    candidates = [
        NoteEmbedding(note_id="far", vector=[0, 1]),
        NoteEmbedding(note_id="near", vector=[1, 0.1]),
        NoteEmbedding(note_id="mid", vector=[1, 1]),
    ]
    results = find_similar_notes([1, 0], candidates, top_n=2)
    assert [r.note_id for r in results] == ["near", "mid"]


def test_cluster_name_from_first_note():
    assert generate_cluster_name(["Buy milk and eggs", "other"]) == "Buy milk a"
    assert generate_cluster_name(["go to gym"]) == "go to gym"


def test_cluster_name_skips_single_characters_and_punctuation():
    assert generate_cluster_name(["a, b! ok"]) == "ok"


def test_cluster_name_keeps_cjk():
    assert generate_cluster_name(["今天 学习 Python"]) == "今天 学习 Python"[:10]
    assert generate_cluster_name(["快记，测试！"]) == "快记 测试"


def test_cluster_name_fallback():
    assert generate_cluster_name([]) == DEFAULT_CLUSTER_NAME
    assert generate_cluster_name(["!!! ?"]) == DEFAULT_CLUSTER_NAME

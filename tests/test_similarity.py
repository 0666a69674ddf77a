"""Tests for cosine similarity, rank fusion and the query cache."""

from __future__ import annotations

import numpy as np
import pytest

from filesense.search.similarity import (
    QueryEmbeddingCache,
    cosine_matrix,
    cosine_similarity,
    normalize_query,
    reciprocal_rank_fusion,
)


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 1.0], [10.0, 10.0]) == pytest.approx(1.0)

    def test_symmetric(self):
        rng = np.random.default_rng(11)
        for _ in range(100):
            a = rng.normal(size=16)
            b = rng.normal(size=16)
            assert cosine_similarity(a, b) == cosine_similarity(b, a)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0


class TestCosineMatrix:
    def test_rows(self):
        matrix = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]])
        scores = cosine_matrix(np.array([1.0, 0.0]), matrix)
        assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0])

    def test_empty_matrix(self):
        assert cosine_matrix(np.array([1.0]), np.zeros((0, 1))).size == 0

    def test_zero_query(self):
        scores = cosine_matrix(np.zeros(2), np.array([[1.0, 0.0]]))
        assert scores.tolist() == [0.0]


class TestReciprocalRankFusion:
    def test_single_list_keeps_order(self):
        fused = reciprocal_rank_fusion([["a", "b", "c"]])
        assert [item for item, _ in fused] == ["a", "b", "c"]
        assert fused[0][1] == pytest.approx(1 / 61)

    def test_agreement_wins(self):
        fused = reciprocal_rank_fusion([["a", "b"], ["b", "c"]])
        assert fused[0][0] == "b"

    def test_weights_shift_ranking(self):
        fused = reciprocal_rank_fusion([["a"], ["b"]], weights=[1.0, 3.0])
        assert [item for item, _ in fused] == ["b", "a"]

    def test_ties_broken_by_item(self):
        fused = reciprocal_rank_fusion([["z"], ["a"]])
        assert [item for item, _ in fused] == ["a", "z"]

    def test_repeated_item_counts_once(self):
        fused = dict(reciprocal_rank_fusion([["a", "a", "b"]]))
        assert fused["a"] == pytest.approx(1 / 61)
        assert fused["b"] == pytest.approx(1 / 62)

    def test_moving_an_item_up_never_lowers_its_score(self):
        rng = np.random.default_rng(7)
        items = list("abcdefghij")
        for _ in range(50):
            lists = [[str(x) for x in rng.permutation(items)] for _ in range(3)]
            weights = rng.uniform(0.1, 3.0, size=3).tolist()
            which = int(rng.integers(3))
            pos = int(rng.integers(1, len(items)))
            item = lists[which][pos]
            before = dict(reciprocal_rank_fusion(lists, weights=weights))[item]

            moved = [list(ranked) for ranked in lists]
            moved[which][pos - 1], moved[which][pos] = moved[which][pos], moved[which][pos - 1]
            after = dict(reciprocal_rank_fusion(moved, weights=weights))[item]

            assert after >= before

    def test_weight_count_mismatch(self):
        with pytest.raises(ValueError, match="weights"):
            reciprocal_rank_fusion([["a"], ["b"]], weights=[1.0])

    def test_empty(self):
        assert reciprocal_rank_fusion([[], []]) == []

    def test_custom_k(self):
        fused = reciprocal_rank_fusion([[7]], k=1)
        assert fused == [(7, pytest.approx(0.5))]


class TestNormalizeQuery:
    def test_trims_and_folds(self):
        assert normalize_query("  Tax   Returns\t2023 ") == "tax returns 2023"


class TestQueryEmbeddingCache:
    def test_hit_uses_normalised_key(self):
        cache = QueryEmbeddingCache(4)
        cache.put("Tax Returns", [1.0])
        assert cache.get("  tax   returns ") == [1.0]
        assert "TAX RETURNS" in cache

    def test_evicts_least_recently_used(self):
        cache = QueryEmbeddingCache(2)
        cache.put("a", [1.0])
        cache.put("b", [2.0])
        cache.get("a")
        cache.put("c", [3.0])
        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_clear(self):
        cache = QueryEmbeddingCache(2)
        cache.put("a", [1.0])
        cache.clear()
        assert len(cache) == 0
        assert cache.get("a") is None

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            QueryEmbeddingCache(0)

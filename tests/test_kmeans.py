"""
Unit tests for the k-means engine.

Covers:
- configuration validation
- convergence on separated data and determinism for a fixed seed
- warm starts, empty-cluster reseeding and mini-batch mode
- equivalence of the scalar and blocked nearest-centroid scans
"""

import numpy as np
import pytest

import swatch_kmeans as km
from swatch_kmeans import (
    KMeansConfig,
    KMeansConfigError,
    KMeansResult,
    PointSet,
    cluster,
    predict,
    squared_distance,
)


def two_blobs(per_blob: int = 200, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    a = np.array([10.0, 10.0, 10.0]) + rng.normal(0.0, 1.0, size=(per_blob, 3))
    b = np.array([200.0, 150.0, 100.0]) + rng.normal(0.0, 1.0, size=(per_blob, 3))
    return np.vstack([a, b]).astype(np.float32)


def integer_cloud(n: int = 3000, seed: int = 5) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(n, 3)).astype(np.float32)


@pytest.fixture
def blocked_strategy():
    previous = km.get_nearest_strategy()
    km.set_nearest_strategy("blocked")
    yield
    km.set_nearest_strategy(previous)


class TestPointSet:
    """Test column-wise point storage"""

    def test_from_points_splits_columns(self):
        ps = PointSet.from_points([[1, 2, 3], [4, 5, 6]])
        assert len(ps) == 2
        assert ps.px.dtype == np.float32
        np.testing.assert_array_equal(ps.px, [1, 4])
        np.testing.assert_array_equal(ps.pz, [3, 6])
        np.testing.assert_array_equal(ps.to_array(), [[1, 2, 3], [4, 5, 6]])

    def test_empty_set_rejected(self):
        with pytest.raises(ValueError):
            PointSet.from_points(np.zeros((0, 3)))

    def test_wrong_width_rejected(self):
        with pytest.raises(ValueError):
            PointSet.from_points(np.zeros((5, 4)))

    def test_take_allows_repeats(self):
        ps = PointSet.from_points([[0, 0, 0], [1, 1, 1], [2, 2, 2]])
        sub = ps.take([2, 2, 0])
        np.testing.assert_array_equal(sub.px, [2, 2, 0])


class TestConfigValidation:
    """Test that unusable requests fail before any computation"""

    @pytest.mark.parametrize("kwargs", [
        {"k": 0},
        {"k": 2, "max_iters": -1},
        {"k": 2, "tol": -0.5},
        {"k": 2, "mini_batch": -3},
        {"k": 2, "seed": -1},
        {"k": 2, "warm_start": [[0.0, 0.0, 0.0]]},
        {"k": 1, "warm_start": [[0.0, 0.0]]},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(KMeansConfigError):
            KMeansConfig(**kwargs)

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            KMeansConfig(k=0)

    def test_fewer_points_than_k(self):
        with pytest.raises(KMeansConfigError):
            cluster(np.zeros((3, 3)), KMeansConfig(k=4))

    def test_empty_points(self):
        with pytest.raises(KMeansConfigError):
            cluster(np.zeros((0, 3)), KMeansConfig(k=1))


class TestClustering:
    """Test the Lloyd iterations"""

    def test_two_blobs_converge(self):
        points = two_blobs()
        result = cluster(points, KMeansConfig(k=2, max_iters=20, tol=1e-4, seed=42))
        assert isinstance(result, KMeansResult)
        assert result.centroids.shape == (2, 3)
        assert result.centroids.dtype == np.float32
        assert result.converged
        assert result.iterations <= 20
        np.testing.assert_array_equal(np.sort(result.counts), [200, 200])
        means = sorted(result.centroids.tolist())
        np.testing.assert_allclose(means[0], [10.0, 10.0, 10.0], atol=0.5)
        np.testing.assert_allclose(means[1], [200.0, 150.0, 100.0], atol=0.5)
        # per-point variance is ~3 after jitter of sigma 1
        assert result.inertia < 400 * 6.0

    def test_determinism(self):
        points = integer_cloud(2000)
        cfg = KMeansConfig(k=6, max_iters=30, tol=1e-6, seed=12345)
        r1 = cluster(points, cfg)
        r2 = cluster(points, cfg)
        np.testing.assert_array_equal(r1.centroids, r2.centroids)
        np.testing.assert_array_equal(r1.counts, r2.counts)
        assert r1.iterations == r2.iterations
        assert r1.inertia == r2.inertia

    def test_different_seeds_still_return_k(self):
        points = integer_cloud(500)
        for seed in range(4):
            result = cluster(points, KMeansConfig(k=5, max_iters=10, seed=seed))
            assert result.centroids.shape == (5, 3)
            assert result.counts.sum() == 500

    def test_warm_start_respected(self):
        points = np.zeros((10, 3), dtype=np.float32)
        result = cluster(points, KMeansConfig(k=1, max_iters=5, tol=1e-6, seed=2,
                                              warm_start=[[0.5, 0.5, 0.5]]))
        np.testing.assert_array_equal(result.centroids[0], [0.0, 0.0, 0.0])

    def test_zero_iterations_returns_seeding(self):
        warm = np.array([[1.0, 2.0, 3.0], [9.0, 9.0, 9.0]], dtype=np.float32)
        result = cluster(two_blobs(20), KMeansConfig(k=2, max_iters=0, warm_start=warm))
        np.testing.assert_array_equal(result.centroids, warm)
        np.testing.assert_array_equal(result.counts, [0, 0])
        assert result.iterations == 0
        assert not result.converged

    def test_warm_start_not_mutated(self):
        warm = np.array([[0.0, 0.0, 0.0], [255.0, 255.0, 255.0]], dtype=np.float32)
        cluster(two_blobs(20), KMeansConfig(k=2, max_iters=5, warm_start=warm))
        np.testing.assert_array_equal(warm, [[0, 0, 0], [255, 255, 255]])

    def test_empty_centroid_is_reseeded_not_dropped(self):
        points = np.vstack([np.zeros((50, 3)), np.full((50, 3), 100.0)]).astype(np.float32)
        warm = [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [100.0, 100.0, 100.0]]
        result = cluster(points, KMeansConfig(k=3, max_iters=1, warm_start=warm, seed=3))
        assert result.centroids.shape == (3, 3)
        # duplicate centroid loses every tie, so it gets no points
        assert result.counts[1] == 0
        assert result.counts.sum() == 100
        assert any(np.array_equal(result.centroids[1], p) for p in ([0, 0, 0], [100, 100, 100]))

    def test_identical_points_use_uniform_fallback(self):
        points = np.full((5, 3), 7.0, dtype=np.float32)
        result = cluster(points, KMeansConfig(k=3, max_iters=3, seed=9))
        np.testing.assert_array_equal(result.centroids, np.full((3, 3), 7.0))
        assert result.counts.sum() == 5

    def test_tol_zero_runs_all_iterations(self):
        result = cluster(two_blobs(30), KMeansConfig(k=2, max_iters=4, tol=0.0, seed=1))
        assert result.iterations == 4
        assert not result.converged


class TestMiniBatch:
    """Test sampled iterations"""

    def test_mini_batch_executes(self):
        points = np.vstack([np.tile([0.1, 0.2, 0.3], (1000, 1)),
                            np.tile([0.9, 0.8, 0.7], (1000, 1))]).astype(np.float32)
        result = cluster(points, KMeansConfig(k=2, max_iters=5, tol=1e-3, seed=7, mini_batch=256))
        assert result.centroids.shape == (2, 3)
        assert np.all(np.isfinite(result.centroids))
        # counts describe the last batch only
        assert result.counts.sum() == 256

    def test_batch_not_smaller_than_data_means_full(self):
        points = two_blobs(50)
        full = cluster(points, KMeansConfig(k=2, max_iters=10, seed=4))
        same = cluster(points, KMeansConfig(k=2, max_iters=10, seed=4, mini_batch=len(points)))
        np.testing.assert_array_equal(full.centroids, same.centroids)

    def test_zero_disables_batch(self):
        points = two_blobs(50)
        full = cluster(points, KMeansConfig(k=2, max_iters=10, seed=4))
        same = cluster(points, KMeansConfig(k=2, max_iters=10, seed=4, mini_batch=0))
        np.testing.assert_array_equal(full.centroids, same.centroids)

    def test_mini_batch_deterministic(self):
        points = integer_cloud(4000)
        cfg = KMeansConfig(k=4, max_iters=8, seed=11, mini_batch=500)
        np.testing.assert_array_equal(cluster(points, cfg).centroids, cluster(points, cfg).centroids)


class TestNumericPolicy:
    """Test strategy and chunking independence"""

    def test_strategy_swap_is_equivalent(self):
        points = integer_cloud(1500)
        cfg = KMeansConfig(k=7, max_iters=15, seed=21)
        scalar = cluster(points, cfg)
        km.set_nearest_strategy("blocked")
        try:
            blocked = cluster(points, cfg)
        finally:
            km.set_nearest_strategy("scalar")
        np.testing.assert_array_equal(scalar.centroids, blocked.centroids)
        np.testing.assert_array_equal(scalar.counts, blocked.counts)
        assert scalar.iterations == blocked.iterations

    def test_predict_same_under_both_strategies(self, blocked_strategy):
        points = integer_cloud(400)
        centroids = integer_cloud(9, seed=1)
        blocked = predict(points, centroids)
        km.set_nearest_strategy("scalar")
        np.testing.assert_array_equal(blocked, predict(points, centroids))

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            km.set_nearest_strategy("simd512")

    @pytest.mark.parametrize("chunk_size", [1, 7, 333])
    def test_chunk_size_independence(self, chunk_size):
        points = integer_cloud(2500)
        ref = cluster(points, KMeansConfig(k=4, max_iters=12, seed=8))
        other = cluster(points, KMeansConfig(k=4, max_iters=12, seed=8, chunk_size=chunk_size))
        np.testing.assert_array_equal(ref.centroids, other.centroids)
        np.testing.assert_array_equal(ref.counts, other.counts)
        assert ref.iterations == other.iterations
        assert other.inertia == pytest.approx(ref.inertia, rel=1e-9)


class TestPredict:
    """Test labelling and distance helpers"""

    def test_ties_go_to_lowest_index(self):
        labels = predict([[1.0, 0.0, 0.0], [5.0, 5.0, 5.0]], [[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
        assert labels[0] == 0

    def test_duplicate_centroids(self):
        labels = predict([[3.0, 3.0, 3.0]], [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]])
        assert labels.tolist() == [0]

    def test_labels_match_clustering(self):
        points = two_blobs(40)
        result = cluster(points, KMeansConfig(k=2, max_iters=20, seed=1))
        labels = predict(points, result.centroids)
        np.testing.assert_array_equal(np.bincount(labels, minlength=2), result.counts)

    def test_squared_distance(self):
        assert squared_distance([0, 0, 0], [1, 2, 2]) == 9.0

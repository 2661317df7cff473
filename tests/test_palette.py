"""
Unit tests for palette extraction and reference comparison.
"""

import numpy as np
import pytest

from swatch_colorspace import ColorSpaceKind
from swatch_kmeans import KMeansConfig, KMeansResult
from swatch_matching import ClusterSummary
from swatch_palette import (
    PaletteReport,
    compare_to_reference,
    extract_palette,
    rgb_to_hex,
    summarize_clusters,
)
from swatch_preview import PreviewConfig

COLORS = np.array([[31, 78, 121], [211, 181, 143], [45, 117, 96]], dtype=np.uint8)


@pytest.fixture
def samples():
    rng = np.random.default_rng(8)
    labels = np.repeat([0, 1, 2], [600, 300, 100])
    noisy = COLORS[labels].astype(np.int64) + rng.integers(-2, 3, size=(1000, 3))
    return np.clip(noisy, 0, 255).astype(np.uint8)


class TestRgbToHex:
    """Test RGB to hex conversion utility"""

    def test_basic_colors(self):
        assert rgb_to_hex(np.array([255, 0, 0])) == "#FF0000"
        assert rgb_to_hex(np.array([0, 0, 0])) == "#000000"
        assert rgb_to_hex(np.array([31, 78, 121])) == "#1F4E79"
        assert rgb_to_hex([211, 181, 143]) == "#D3B58F"


class TestSummarizeClusters:
    """Test presentation summaries"""

    def test_drops_empty_and_sorts(self):
        result = KMeansResult(
            centroids=np.array([[10, 10, 10], [20.4, 30.6, 40.0], [250, 0, 0]], dtype=np.float32),
            counts=np.array([0, 5, 10], dtype=np.int64),
            iterations=3,
            inertia=1.0,
        )
        summaries = summarize_clusters(result, "rgb", 15)
        assert [s.index for s in summaries] == [2, 1]
        assert [s.count for s in summaries] == [10, 5]
        assert summaries[0].share == pytest.approx(10 / 15)
        np.testing.assert_array_equal(summaries[1].rgb, [20, 31, 40])
        np.testing.assert_allclose(summaries[0].hsv, [0.0, 1.0, 250 / 255], atol=1e-6)
        assert all(isinstance(s, ClusterSummary) for s in summaries)

    def test_zero_total_share(self):
        result = KMeansResult(
            centroids=np.zeros((1, 3), dtype=np.float32),
            counts=np.array([3], dtype=np.int64),
            iterations=1,
            inertia=0.0,
        )
        assert summarize_clusters(result, "rgb", 0)[0].share == 0.0


class TestExtractPalette:
    """Test the extraction pipeline"""

    @pytest.mark.parametrize("space", ["rgb", "hsl", "hsv", "yuv", "lab", "luv"])
    def test_recovers_colors(self, samples, space):
        report = extract_palette(samples, space, KMeansConfig(k=3, seed=1, max_iters=40))
        assert isinstance(report, PaletteReport)
        assert report.total_samples == 1000
        assert len(report.clusters) == 3
        assert sum(c.share for c in report.clusters) == pytest.approx(1.0)
        # sorted by count, largest first
        counts = [c.count for c in report.clusters]
        assert counts == sorted(counts, reverse=True)
        for summary in report.clusters:
            dist = np.abs(COLORS.astype(int) - summary.rgb.astype(int)).max(axis=1)
            assert dist.min() <= 3

    def test_k_clamped_to_sample_count(self):
        samples = np.array([[0, 0, 0], [255, 255, 255]], dtype=np.uint8)
        report = extract_palette(samples, ColorSpaceKind.CIELAB, KMeansConfig(k=16))
        assert report.requested_k == 16
        assert report.effective_k == 2
        assert report.result.centroids.shape == (2, 3)

    def test_with_preview(self, samples):
        report = extract_palette(samples, "lab", KMeansConfig(k=3, seed=2),
                                 PreviewConfig(mini_batch=400, min_batch=100))
        assert report.preview is not None
        assert report.warm_started
        assert len(report.clusters) == 3

    def test_to_dict(self, samples):
        data = extract_palette(samples, "rgb", KMeansConfig(k=3)).to_dict()
        assert data["space"] == "RGB"
        assert data["effective_k"] == 3
        assert data["preview"] is None
        assert len(data["clusters"]) == 3
        assert data["clusters"][0]["hex"].startswith("#")
        assert len(data["clusters"][0]["hex"]) == 7

    def test_bad_space(self, samples):
        with pytest.raises(ValueError):
            extract_palette(samples, "cmyk", KMeansConfig(k=3))

    def test_bad_samples(self):
        with pytest.raises(ValueError):
            extract_palette(np.zeros((4, 4), dtype=np.uint8), "rgb")
        with pytest.raises(ValueError):
            extract_palette(np.zeros((0, 3), dtype=np.uint8), "rgb")


class TestCompareToReference:
    """Test reference comparison with cold retry"""

    def test_self_reference_passes(self, samples):
        reference = extract_palette(samples, "lab", KMeansConfig(k=3, seed=1)).clusters
        outcome = compare_to_reference(samples, reference, "lab", KMeansConfig(k=3, seed=1))
        assert not outcome.cold_retry
        assert outcome.comparison.count_over_20 == 0
        assert outcome.comparison.max_delta_e < 2.0

    def test_cold_retry_after_warm_start(self, samples):
        reference = extract_palette(
            np.array([[255, 0, 0], [0, 255, 0], [0, 0, 255]], dtype=np.uint8),
            "rgb", KMeansConfig(k=3),
        ).clusters
        outcome = compare_to_reference(
            samples, reference, "lab", KMeansConfig(k=3, seed=5),
            preview=PreviewConfig(mini_batch=400, min_batch=100), tail_limit=0,
        )
        assert outcome.cold_retry
        assert not outcome.report.warm_started
        assert outcome.comparison.count_over_20 > 0
        assert set(outcome.to_dict()) == {"report", "comparison", "cold_retry"}

    def test_no_retry_without_warm_start(self, samples):
        reference = extract_palette(
            np.array([[255, 0, 0], [0, 255, 0], [0, 0, 255]], dtype=np.uint8),
            "rgb", KMeansConfig(k=3),
        ).clusters
        outcome = compare_to_reference(samples, reference, "lab", KMeansConfig(k=3, seed=5), tail_limit=0)
        assert not outcome.cold_retry

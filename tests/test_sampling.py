"""
Unit tests for raster pixel sampling.
"""

import numpy as np
import pytest

from swatch_sampling import LUMA_WEIGHTS, SampleParams, SamplingError, sample_pixels


def gradient_raster(size: int = 10) -> np.ndarray:
    y, x = np.mgrid[0:size, 0:size]
    val = np.minimum((x + y) * 20, 255).astype(np.uint8)
    return np.repeat(val[:, :, None], 3, axis=2)


class TestSamplePixels:
    """Test stride grid, luma filter and cap"""

    def test_respects_stride_and_luma(self):
        params = SampleParams(stride=2, min_lum=60, max_samples=10_000, seed=42)
        samples = sample_pixels(gradient_raster(), params)
        assert 0 < len(samples) <= 25
        lum = samples.astype(np.float32) @ LUMA_WEIGHTS
        assert np.all(lum >= 60 - 1e-3)

    def test_stride_grid_only(self):
        raster = np.zeros((8, 8, 3), dtype=np.uint8)
        raster[::4, ::4] = 200
        samples = sample_pixels(raster, SampleParams(stride=4, min_lum=0))
        assert samples.shape == (4, 3)
        assert np.all(samples == 200)

    def test_stride_below_one_acts_as_one(self):
        samples = sample_pixels(np.full((3, 3, 3), 9, dtype=np.uint8), SampleParams(stride=0))
        assert samples.shape == (9, 3)

    def test_cap_is_deterministic_subset(self):
        rng = np.random.default_rng(0)
        raster = rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
        params = SampleParams(stride=1, max_samples=100, seed=3)
        first = sample_pixels(raster, params)
        second = sample_pixels(raster, params)
        assert first.shape == (100, 3)
        np.testing.assert_array_equal(first, second)
        pool = {tuple(p) for p in raster.reshape(-1, 3)}
        assert all(tuple(p) in pool for p in first)

    def test_zero_cap_means_unlimited(self):
        raster = np.full((20, 20, 3), 50, dtype=np.uint8)
        samples = sample_pixels(raster, SampleParams(stride=1, max_samples=0))
        assert samples.shape == (400, 3)

    def test_alpha_channel_ignored(self):
        raster = np.zeros((4, 4, 4), dtype=np.uint8)
        raster[..., :3] = (10, 20, 30)
        raster[..., 3] = 255
        samples = sample_pixels(raster, SampleParams(stride=1))
        assert samples.shape == (16, 3)
        np.testing.assert_array_equal(samples[0], [10, 20, 30])


class TestSamplingErrors:
    """Test descriptive failures"""

    def test_wrong_rank(self):
        with pytest.raises(SamplingError):
            sample_pixels(np.zeros((10, 10), dtype=np.uint8))

    def test_wrong_channels(self):
        with pytest.raises(SamplingError):
            sample_pixels(np.zeros((10, 10, 2), dtype=np.uint8))

    def test_wrong_dtype(self):
        with pytest.raises(SamplingError):
            sample_pixels(np.zeros((10, 10, 3), dtype=np.float32))

    def test_nothing_passes_filter(self):
        with pytest.raises(SamplingError, match="No pixels"):
            sample_pixels(np.zeros((10, 10, 3), dtype=np.uint8), SampleParams(min_lum=10))

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            sample_pixels(np.zeros((0, 5, 3), dtype=np.uint8))

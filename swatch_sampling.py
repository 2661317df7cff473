# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Pixel sampling: turns a decoded RGB(A) raster into the (N, 3) uint8 sample
array consumed by the clustering modules.
"""

from dataclasses import dataclass
from typing import Any, Final

import numpy as np
from loguru import logger

from swatch_config import config

__all__ = ["SampleParams", "SamplingError", "sample_pixels", "LUMA_WEIGHTS"]

# Rec. 709 luma
LUMA_WEIGHTS: Final[np.ndarray] = np.array([0.2126, 0.7152, 0.0722], dtype=np.float32)
LUMA_WEIGHTS.setflags(write=False)


class SamplingError(ValueError):
    """Raised when a raster cannot provide any samples."""


@dataclass
class SampleParams:
    """
    Args:
        stride: Grid step in both directions (values < 1 act as 1).
        min_lum: Pixels with Rec. 709 luma below this are skipped (0..255).
        max_samples: Cap on the returned samples; 0 means unlimited.
        seed: Seed for choosing the capped subset.
    """
    stride: int = 4
    min_lum: float = 0.0
    max_samples: int = config.MAX_SAMPLES
    seed: int = 1


def sample_pixels(raster: Any, params: SampleParams = SampleParams()) -> np.ndarray:
    """
    Sample and filter raster pixels for clustering.

    Args:
        raster: (H, W, 3) or (H, W, 4) uint8 image; alpha is ignored.
        params: Sampling parameters.

    Returns:
        (N, 3) uint8 RGB samples in raster order.

    Raises:
        SamplingError: Wrong shape or dtype, or no pixel passes the filter.
    """
    img = np.asarray(raster)
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise SamplingError(f"Expected an (H, W, 3|4) raster, got shape {img.shape}")
    if img.dtype != np.uint8:
        raise SamplingError(f"Expected a uint8 raster, got {img.dtype}")
    if img.shape[0] == 0 or img.shape[1] == 0:
        raise SamplingError("Raster has no pixels")

    stride = max(int(params.stride), 1)
    grid = img[::stride, ::stride, :3].reshape(-1, 3)
    lum = grid.astype(np.float32) @ LUMA_WEIGHTS
    samples = grid[lum >= np.float32(params.min_lum)]
    logger.debug(f"Stride {stride}: {len(grid)} grid pixels, {len(samples)} pass min_lum={params.min_lum}")

    if samples.shape[0] == 0:
        logger.warning("No pixels met sampling criteria")
        raise SamplingError("No pixels met sampling criteria (check stride/min_lum)")

    # Downsample if needed (deterministic)
    cap = int(params.max_samples)
    if 0 < cap < samples.shape[0]:
        rng = np.random.default_rng(params.seed)
        indices = np.sort(rng.choice(samples.shape[0], size=cap, replace=False))
        samples = samples[indices]
        logger.info(f"Downsampled to {cap} pixels")

    return np.ascontiguousarray(samples)

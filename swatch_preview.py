# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: Adaptive Preview Controller

Runs a short sequence of mini-batch clusterings whose batch size shrinks
until a pass fits the time budget, the batch hits its floor, or the
centroids stop moving.  The final preview centroids warm-start a full run.

Stop rule (checked after every attempt):
    duration_ms <= budget_ms  or  batch <= min_batch  or  shift <= shift_tol
Otherwise:
    batch = max(ceil(batch * shrink), min_batch)

Only wall-clock time between attempts is measured; a clustering pass is
never interrupted.
"""

import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List, Optional

import numpy as np
from loguru import logger

from swatch_kmeans import KMeansConfig, KMeansConfigError, KMeansResult, PointSet, cluster

__all__ = [
    "PreviewConfig",
    "PreviewAttempt",
    "PreviewResult",
    "AdaptiveRun",
    "centroid_shift",
    "run_preview",
    "cluster_adaptive",
]

Clock = Callable[[], float]


@dataclass
class PreviewConfig:
    """
    Knobs of the preview loop.

    Floors are applied on construction: ``budget_ms`` >= 10,
    ``min_batch`` >= 100, ``shift_tol`` >= 0.1.  ``mini_batch == 0``
    disables the preview.
    """
    mini_batch: int = 4000
    budget_ms: float = 280.0
    min_batch: int = 800
    shift_tol: float = 3.0
    max_attempts: int = 5
    max_iters: Optional[int] = None
    shrink: float = 0.6

    def __post_init__(self) -> None:
        if self.mini_batch < 0:
            raise KMeansConfigError(f"preview mini_batch must be >= 0, got {self.mini_batch}")
        if self.max_attempts < 1:
            raise KMeansConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if not (0.0 < self.shrink < 1.0):
            raise KMeansConfigError(f"shrink must be in (0, 1), got {self.shrink}")
        self.budget_ms = max(float(self.budget_ms), 10.0)
        self.min_batch = max(int(self.min_batch), 100)
        self.shift_tol = max(float(self.shift_tol), 0.1)

    @property
    def enabled(self) -> bool:
        return self.mini_batch > 0


@dataclass
class PreviewAttempt:
    attempt: int
    duration_ms: float
    iterations: int
    mini_batch: int
    max_iters: int
    centroid_shift: Optional[float]

    def to_dict(self) -> dict:
        return {
            "attempt": self.attempt,
            "duration_ms": self.duration_ms,
            "iterations": self.iterations,
            "mini_batch": self.mini_batch,
            "max_iters": self.max_iters,
            "centroid_shift": self.centroid_shift,
        }


@dataclass(eq=False)
class PreviewResult:
    """Centroids of the last attempt plus the record of every attempt."""
    centroids: np.ndarray
    attempts: List[PreviewAttempt] = field(default_factory=list)

    @property
    def last(self) -> PreviewAttempt:
        return self.attempts[-1]


@dataclass(eq=False)
class AdaptiveRun:
    result: KMeansResult
    preview: Optional[PreviewResult] = None


def centroid_shift(prev: Any, next_: Any) -> float:
    """
    Root-mean-square displacement between two centroid sets.

    Rows are paired by index over the shorter of the two sets; empty input
    gives 0.
    """
    a = np.asarray(prev, dtype=np.float32).reshape(-1, 3)
    b = np.asarray(next_, dtype=np.float32).reshape(-1, 3)
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    diff = a[:n].astype(np.float64) - b[:n].astype(np.float64)
    return float(np.sqrt(np.sum(diff * diff) / n))


def run_preview(
    points: Any,
    base_config: KMeansConfig,
    preview: Optional[PreviewConfig] = None,
    clock: Clock = time.perf_counter,
) -> Optional[PreviewResult]:
    """
    Runs the shrinking mini-batch preview loop.

    Args:
        points: PointSet or (N, 3) array-like.
        base_config: Base run parameters; seed, k, tol and warm start are
            taken from it.
        preview: Loop knobs; defaults to ``PreviewConfig()``.
        clock: Seconds-valued monotonic clock, injectable for tests.

    Returns:
        PreviewResult, or None when the preview is disabled.
    """
    preview = preview or PreviewConfig()
    if not preview.enabled:
        return None

    dataset = PointSet.from_points(points)
    batch_size = preview.mini_batch
    max_iters = base_config.max_iters if preview.max_iters is None else int(preview.max_iters)
    warm_start = base_config.warm_start
    attempts: List[PreviewAttempt] = []
    centroids = None

    for attempt in range(preview.max_attempts):
        cfg = replace(
            base_config,
            mini_batch=batch_size,
            max_iters=max_iters,
            seed=int(base_config.seed) + attempt,
            warm_start=warm_start,
        )
        start = clock()
        result = cluster(dataset, cfg)
        duration_ms = (clock() - start) * 1000.0
        shift = None if warm_start is None else centroid_shift(warm_start, result.centroids)

        attempts.append(PreviewAttempt(
            attempt=attempt,
            duration_ms=duration_ms,
            iterations=result.iterations,
            mini_batch=batch_size,
            max_iters=max_iters,
            centroid_shift=shift,
        ))
        logger.info(
            "Preview attempt {}: batch={} iterations={} duration={:.1f}ms shift={}",
            attempt, batch_size, result.iterations, duration_ms,
            "n/a" if shift is None else f"{shift:.3f}",
        )

        centroids = result.centroids
        warm_start = result.centroids

        shift_ok = shift is not None and shift <= preview.shift_tol
        if duration_ms <= preview.budget_ms or batch_size <= preview.min_batch or shift_ok:
            break

        batch_size = max(int(math.ceil(batch_size * preview.shrink)), preview.min_batch)

    return PreviewResult(centroids=centroids, attempts=attempts)


def cluster_adaptive(
    points: Any,
    config: KMeansConfig,
    preview: Optional[PreviewConfig] = None,
    clock: Clock = time.perf_counter,
) -> AdaptiveRun:
    """
    Preview first, then a full-batch run warm-started from the preview.

    With the preview disabled this is a plain ``cluster`` call.
    """
    dataset = PointSet.from_points(points)
    result_preview = run_preview(dataset, config, preview, clock=clock)
    full_config = replace(config, mini_batch=None)
    if result_preview is not None:
        full_config = replace(full_config, warm_start=result_preview.centroids)
    return AdaptiveRun(result=cluster(dataset, full_config), preview=result_preview)

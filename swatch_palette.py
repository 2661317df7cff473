# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Palette extraction pipeline.

    samples ──forward_batch──▶ points ──cluster / cluster_adaptive──▶ centroids
            ──summarize_clusters──▶ ClusterSummary list (RGB, HSV, hex)

``compare_to_reference`` adds a matching step against a reference palette
and retries cold when a warm-started run leaves too many large outliers.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
from loguru import logger

from swatch_colorspace import ColorSpaceKind, DeltaMetric, forward_batch, inverse_batch, rgb8_to_hsv
from swatch_config import config
from swatch_kmeans import KMeansConfig, KMeansConfigError, KMeansResult, PointSet, cluster
from swatch_matching import ClusterComparison, ClusterSummary, compare_clusters
from swatch_preview import PreviewConfig, PreviewResult, run_preview

__all__ = [
    "COLD_RETRY_SEED_OFFSET",
    "rgb_to_hex",
    "summarize_clusters",
    "PaletteReport",
    "ReferenceComparison",
    "extract_palette",
    "compare_to_reference",
]

COLD_RETRY_SEED_OFFSET = 9973


def rgb_to_hex(rgb_u8: Any) -> str:
    """Convert RGB uint8 array to hex color string."""
    r, g, b = [int(x) for x in rgb_u8]
    return f"#{r:02X}{g:02X}{b:02X}"


def summarize_clusters(
    result: KMeansResult,
    kind: Union[str, ColorSpaceKind],
    total_samples: int,
) -> List[ClusterSummary]:
    """
    Converts an engine result into presentation summaries.

    Zero-count centroids are dropped here (the engine itself always keeps
    k of them).  Summaries are sorted by count, largest first; equal counts
    keep engine order.
    """
    kind = ColorSpaceKind.parse(kind)
    centroids = np.asarray(result.centroids, dtype=np.float32).reshape(-1, 3)
    if centroids.shape[0] == 0:
        return []
    rgb_all = inverse_batch(kind, centroids)
    hsv_all = np.asarray(rgb8_to_hsv(rgb_all)).reshape(-1, 3)

    summaries = []
    for idx, count in enumerate(np.asarray(result.counts)):
        if count == 0:
            continue
        summaries.append(ClusterSummary(
            index=idx,
            count=int(count),
            share=float(count) / total_samples if total_samples > 0 else 0.0,
            centroid_space=centroids[idx].copy(),
            rgb=rgb_all[idx].copy(),
            hsv=hsv_all[idx].copy(),
        ))
    summaries.sort(key=lambda s: s.count, reverse=True)
    return summaries


@dataclass(eq=False)
class PaletteReport:
    """Everything one extraction produced, ready for serialisation."""
    space: ColorSpaceKind
    requested_k: int
    effective_k: int
    total_samples: int
    duration_ms: float
    result: KMeansResult
    clusters: List[ClusterSummary]
    points: PointSet = field(repr=False)
    preview: Optional[PreviewResult] = None
    warm_started: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "space": self.space.value,
            "requested_k": self.requested_k,
            "effective_k": self.effective_k,
            "total_samples": self.total_samples,
            "duration_ms": self.duration_ms,
            "iterations": self.result.iterations,
            "inertia": self.result.inertia,
            "converged": self.result.converged,
            "warm_started": self.warm_started,
            "preview": None if self.preview is None else [a.to_dict() for a in self.preview.attempts],
            "clusters": [
                dict(c.to_dict(), hex=rgb_to_hex(c.rgb)) for c in self.clusters
            ],
        }


@dataclass(eq=False)
class ReferenceComparison:
    report: PaletteReport
    comparison: ClusterComparison
    cold_retry: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report": self.report.to_dict(),
            "comparison": self.comparison.to_dict(),
            "cold_retry": self.cold_retry,
        }


def _prepare_samples(samples: Any) -> np.ndarray:
    arr = np.asarray(samples)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"Expected samples of shape (N, 3), got {arr.shape}")
    if arr.shape[0] == 0:
        raise KMeansConfigError("No samples to cluster")
    return arr


def _timed_cluster(points: PointSet, cfg: KMeansConfig):
    start = time.perf_counter()
    result = cluster(points, cfg)
    return result, (time.perf_counter() - start) * 1000.0


def extract_palette(
    samples: Any,
    space: Union[str, ColorSpaceKind],
    kmeans_config: Optional[KMeansConfig] = None,
    preview: Optional[PreviewConfig] = None,
) -> PaletteReport:
    """
    Extracts a palette from RGB samples.

    Args:
        samples: (N, 3) uint8 RGB samples.
        space: Working colour space (name or enum).
        kmeans_config: Clustering parameters; ``k`` is clamped to N.
        preview: When given and enabled, a preview pass warm-starts the run.

    Returns:
        PaletteReport with summaries sorted by count.
    """
    kind = ColorSpaceKind.parse(space)
    cfg = kmeans_config or KMeansConfig()
    arr = _prepare_samples(samples)
    points = PointSet.from_points(forward_batch(kind, arr))
    total = len(points)

    effective_k = min(int(cfg.k), total)
    if effective_k != cfg.k:
        logger.info(f"Clamping k={cfg.k} to {effective_k} for {total} samples")
        cfg = replace(cfg, k=effective_k, warm_start=None)

    preview_result = None
    if preview is not None:
        preview_result = run_preview(points, cfg, preview)
        if preview_result is not None:
            cfg = replace(cfg, warm_start=preview_result.centroids, mini_batch=None)

    result, duration_ms = _timed_cluster(points, cfg)
    clusters = summarize_clusters(result, kind, total)
    logger.info(
        f"Extracted {len(clusters)} clusters in {kind.value} "
        f"({result.iterations} iterations, {duration_ms:.1f}ms)"
    )
    return PaletteReport(
        space=kind,
        requested_k=int(kmeans_config.k if kmeans_config else cfg.k),
        effective_k=effective_k,
        total_samples=total,
        duration_ms=duration_ms,
        result=result,
        clusters=clusters,
        points=points,
        preview=preview_result,
        warm_started=cfg.warm_start is not None,
    )


def compare_to_reference(
    samples: Any,
    reference: Sequence[ClusterSummary],
    space: Union[str, ColorSpaceKind],
    kmeans_config: Optional[KMeansConfig] = None,
    metric: Union[str, DeltaMetric] = DeltaMetric.CIE76,
    weighting: Optional[float] = None,
    preview: Optional[PreviewConfig] = None,
    tail_limit: Optional[int] = None,
) -> ReferenceComparison:
    """
    Extracts a palette and matches it against ``reference``.

    When the run was warm-started and more than ``tail_limit`` matched pairs
    exceed ΔE 20, the clustering is repeated cold with the seed offset by
    ``COLD_RETRY_SEED_OFFSET`` and that result replaces the first one.
    """
    limit = config.TAIL_LIMIT if tail_limit is None else int(tail_limit)
    report = extract_palette(samples, space, kmeans_config, preview)
    comparison = compare_clusters(reference, report.clusters, metric, weighting)

    if comparison.count_over_20 <= limit or not report.warm_started:
        return ReferenceComparison(report=report, comparison=comparison)

    logger.warning(
        f"{comparison.count_over_20} pairs above ΔE 20 (limit {limit}); rerunning without warm start"
    )
    base = kmeans_config or KMeansConfig()
    cold_cfg = replace(
        base,
        k=report.effective_k,
        warm_start=None,
        mini_batch=None,
        seed=int(base.seed) + COLD_RETRY_SEED_OFFSET,
    )
    result, duration_ms = _timed_cluster(report.points, cold_cfg)
    cold_report = replace(
        report,
        result=result,
        duration_ms=duration_ms,
        clusters=summarize_clusters(result, report.space, report.total_samples),
        warm_started=False,
    )
    comparison = compare_clusters(reference, cold_report.clusters, metric, weighting)
    return ReferenceComparison(report=cold_report, comparison=comparison, cold_retry=True)

# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: Cluster Matching & Comparison

One-to-one matching of two palettes by minimum total perceptual distance,
followed by summary statistics of the matched distances.

Cost model
──────────
  cost[i, j] = ΔE(lab(A_i.rgb), lab(B_j.rgb)) · (1 + α·|share_i − share_j|)

  The weighting factor only applies when ``weighting=α`` is given.  The
  matrix is padded to n × n with n = max(|A|, |B|); padding cells carry
  ``PAD_COST`` so they are only used for clusters without a partner.

Statistics
──────────
  Percentiles interpolate linearly on the sorted matched distances at
  position q·(n − 1).  The share-weighted mean weighs each pair by the
  mean of its two shares.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Final, Iterable, List, Optional, Sequence, Union

import numpy as np
from loguru import logger
from numba import njit

from swatch_colorspace import DeltaMetric, delta_e_matrix, rgb8_to_lab
from swatch_kmeans import PointSet, predict

__all__ = [
    "PAD_COST",
    "ClusterSummary",
    "MatchedPair",
    "ClusterComparison",
    "NeighborSummary",
    "ExplainPair",
    "ExplainReport",
    "hungarian_min_cost",
    "percentile",
    "compare_clusters",
    "explain_clusters",
    "tails_gate_pass",
]

PAD_COST: Final[float] = 1.0e6


# ═══════════════════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════════════════
@dataclass(eq=False)
class ClusterSummary:
    """
    Presentation view of one non-empty centroid.

    Attributes
    ----------
    index : int
        Position of the centroid in the engine result.
    count : int
        Points assigned on the final assignment step.
    share : float
        ``count / total_samples``.
    centroid_space : ndarray
        (3,) float32 centroid in the working space.
    rgb : ndarray
        (3,) uint8 colour of the centroid.
    hsv : ndarray
        (3,) float HSV of ``rgb`` (hue degrees, S/V in [0, 1]).
    """
    index: int
    count: int
    share: float
    centroid_space: np.ndarray
    rgb: np.ndarray
    hsv: np.ndarray

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": int(self.index),
            "count": int(self.count),
            "share": float(self.share),
            "centroid_space": [float(v) for v in self.centroid_space],
            "rgb": [int(v) for v in self.rgb],
            "hsv": [float(v) for v in self.hsv],
        }


@dataclass
class MatchedPair:
    source_index: int
    target_index: int
    source_count: int
    target_count: int
    count_diff: int
    source_share: float
    target_share: float
    share_diff: float
    rgb_delta_max: float
    delta_e: float


@dataclass
class ClusterComparison:
    """Matched pairs of two palettes and the statistics over them."""
    pairs: List[MatchedPair] = field(default_factory=list)
    max_delta_e: float = 0.0
    mean_delta_e: float = 0.0
    max_rgb_delta: float = 0.0
    delta_p90: float = 0.0
    delta_p95: float = 0.0
    delta_p99: float = 0.0
    count_over_10: int = 0
    count_over_15: int = 0
    count_over_20: int = 0
    share_weighted_mean_delta_e: float = 0.0
    extra_source_clusters: int = 0
    extra_target_clusters: int = 0
    matching_strategy: str = "standard"

    @classmethod
    def empty(cls) -> "ClusterComparison":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NeighborSummary:
    index: int
    neighbor_index: Optional[int]
    delta_e: float


@dataclass
class ExplainPair:
    source_index: int
    target_index: int
    source_count: int
    target_count: int
    delta_e: float
    share_diff: float
    intersection: int
    union: int
    jaccard: float


@dataclass(eq=False)
class ExplainReport:
    """
    Point-level agreement between two palettes.

    ``confusion[i, j]`` counts points whose nearest source centroid is i and
    nearest target centroid is j.
    """
    matching_strategy: str
    delta_metric: str
    samples: int
    confusion: np.ndarray
    jaccard: np.ndarray
    row_totals: np.ndarray
    col_totals: np.ndarray
    matched_pairs: List[ExplainPair]
    nearest_source: List[NeighborSummary]
    nearest_target: List[NeighborSummary]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matching_strategy": self.matching_strategy,
            "delta_metric": self.delta_metric,
            "samples": self.samples,
            "confusion": self.confusion.tolist(),
            "jaccard": self.jaccard.tolist(),
            "row_totals": self.row_totals.tolist(),
            "col_totals": self.col_totals.tolist(),
            "matched_pairs": [asdict(p) for p in self.matched_pairs],
            "nearest_source": [asdict(n) for n in self.nearest_source],
            "nearest_target": [asdict(n) for n in self.nearest_target],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Assignment solver
# ═══════════════════════════════════════════════════════════════════════════════
@njit(cache=True)
def _hungarian_kernel(cost, n):
    """Primal-dual shortest augmenting path, 1-based potentials."""
    u = np.zeros(n + 1, dtype=np.float64)
    v = np.zeros(n + 1, dtype=np.float64)
    p = np.zeros(n + 1, dtype=np.int64)
    way = np.zeros(n + 1, dtype=np.int64)

    for i in range(1, n + 1):
        p[0] = i
        j0 = 0
        minv = np.full(n + 1, np.inf)
        used = np.zeros(n + 1, dtype=np.bool_)
        while True:
            used[j0] = True
            i0 = p[j0]
            delta = np.inf
            j1 = 0
            for j in range(1, n + 1):
                if used[j]:
                    continue
                cur = cost[i0 - 1, j - 1] - u[i0] - v[j]
                if cur < minv[j]:
                    minv[j] = cur
                    way[j] = j0
                if minv[j] < delta:
                    delta = minv[j]
                    j1 = j
            for j in range(n + 1):
                if used[j]:
                    u[p[j]] += delta
                    v[j] -= delta
                else:
                    minv[j] -= delta
            j0 = j1
            if p[j0] == 0:
                break
        while True:
            j1 = way[j0]
            p[j0] = p[j1]
            j0 = j1
            if j0 == 0:
                break

    assignment = np.zeros(n, dtype=np.int64)
    for j in range(1, n + 1):
        if p[j] > 0:
            assignment[p[j] - 1] = j - 1
    return assignment


def hungarian_min_cost(cost: Any, n: int) -> np.ndarray:
    """
    Solves the n × n linear assignment problem.

    Args:
        cost: Row-major costs, either flat (n*n,) or shaped (n, n).
        n: Matrix order.

    Returns:
        (n,) int64 array; ``assignment[i]`` is the column given to row i.
        Together the entries form a permutation of ``0..n-1``.
    """
    n = int(n)
    if n <= 0:
        return np.zeros(0, dtype=np.int64)
    matrix = np.ascontiguousarray(np.asarray(cost, dtype=np.float64).reshape(n, n))
    return _hungarian_kernel(matrix, n)


# ═══════════════════════════════════════════════════════════════════════════════
# Statistics
# ═══════════════════════════════════════════════════════════════════════════════
def percentile(values: Iterable[float], q: float) -> float:
    """Linear-interpolation percentile, ``q`` in [0, 1]; 0 for no values."""
    data = np.sort(np.asarray(list(values), dtype=np.float64))
    if data.size == 0:
        return 0.0
    if data.size == 1:
        return float(data[0])
    pos = min(max(float(q), 0.0), 1.0) * (data.size - 1)
    lower = int(np.floor(pos))
    upper = int(np.ceil(pos))
    if lower == upper:
        return float(data[lower])
    weight = pos - lower
    return float(data[lower] * (1.0 - weight) + data[upper] * weight)


def _labs(clusters: Sequence[ClusterSummary]) -> np.ndarray:
    rgb = np.array([np.asarray(c.rgb, dtype=np.float64) for c in clusters]).reshape(-1, 3)
    return np.asarray(rgb8_to_lab(rgb)).reshape(-1, 3)


def _rgb_delta(a: ClusterSummary, b: ClusterSummary) -> float:
    diff = np.abs(np.asarray(a.rgb, dtype=np.int64) - np.asarray(b.rgb, dtype=np.int64))
    return float(diff.max())


def compare_clusters(
    source: Sequence[ClusterSummary],
    target: Sequence[ClusterSummary],
    metric: Union[str, DeltaMetric] = DeltaMetric.CIE76,
    weighting: Optional[float] = None,
) -> ClusterComparison:
    """
    Matches two palettes one-to-one and summarises the matched ΔE values.

    Args:
        source: Reference palette (rows of the cost matrix).
        target: Candidate palette (columns).
        metric: Distance between the clusters' CIELAB colours.
        weighting: Optional α >= 0 penalising share mismatch.

    Returns:
        ClusterComparison; an all-zero comparison when either side is empty.

    Raises:
        ValueError: Negative weighting.
    """
    metric = DeltaMetric.parse(metric)
    if weighting is not None and not (weighting >= 0.0):
        raise ValueError(f"weighting alpha must be >= 0, got {weighting}")

    n_src = len(source)
    n_tgt = len(target)
    if n_src == 0 or n_tgt == 0:
        logger.debug("compare_clusters: empty side (source={}, target={})", n_src, n_tgt)
        return ClusterComparison.empty()

    n = max(n_src, n_tgt)
    base_delta = delta_e_matrix(metric, _labs(source), _labs(target))

    cost = np.full((n, n), PAD_COST, dtype=np.float64)
    weight = np.ones((n_src, n_tgt), dtype=np.float64)
    if weighting is not None:
        src_share = np.array([c.share for c in source], dtype=np.float64)
        tgt_share = np.array([c.share for c in target], dtype=np.float64)
        weight = 1.0 + weighting * np.abs(src_share[:, None] - tgt_share[None, :])
    cost[:n_src, :n_tgt] = base_delta * weight

    assignment = hungarian_min_cost(cost, n)

    pairs: List[MatchedPair] = []
    for i in range(n_src):
        j = int(assignment[i])
        if j >= n_tgt:
            continue
        src = source[i]
        tgt = target[j]
        pairs.append(MatchedPair(
            source_index=i,
            target_index=j,
            source_count=int(src.count),
            target_count=int(tgt.count),
            count_diff=int(tgt.count) - int(src.count),
            source_share=float(src.share),
            target_share=float(tgt.share),
            share_diff=float(tgt.share) - float(src.share),
            rgb_delta_max=_rgb_delta(src, tgt),
            delta_e=float(base_delta[i, j]),
        ))

    deltas = np.array([p.delta_e for p in pairs], dtype=np.float64)
    shares = np.array([max((p.source_share + p.target_share) * 0.5, 0.0) for p in pairs], dtype=np.float64)
    share_total = float(shares.sum())

    strategy = "standard" if weighting is None else f"weighted(alpha={weighting:.2f})"
    comparison = ClusterComparison(
        pairs=pairs,
        max_delta_e=float(deltas.max()) if deltas.size else 0.0,
        mean_delta_e=float(deltas.mean()) if deltas.size else 0.0,
        max_rgb_delta=max((p.rgb_delta_max for p in pairs), default=0.0),
        delta_p90=percentile(deltas, 0.90),
        delta_p95=percentile(deltas, 0.95),
        delta_p99=percentile(deltas, 0.99),
        count_over_10=int(np.count_nonzero(deltas > 10.0)),
        count_over_15=int(np.count_nonzero(deltas > 15.0)),
        count_over_20=int(np.count_nonzero(deltas > 20.0)),
        share_weighted_mean_delta_e=float(np.dot(shares, deltas) / share_total) if share_total > 0.0 else 0.0,
        extra_source_clusters=max(n_src - len(pairs), 0),
        extra_target_clusters=max(n_tgt - len(pairs), 0),
        matching_strategy=strategy,
    )
    logger.debug(
        "compare_clusters: {} pairs, max ΔE={:.3f}, mean ΔE={:.3f}, >20: {}",
        len(pairs), comparison.max_delta_e, comparison.mean_delta_e, comparison.count_over_20,
    )
    return comparison


def tails_gate_pass(comparisons: Iterable[ClusterComparison], limit: int = 6) -> bool:
    """True when no comparison has more than ``limit`` pairs above ΔE 20."""
    return all(c.count_over_20 <= limit for c in comparisons)


# ═══════════════════════════════════════════════════════════════════════════════
# Explain report
# ═══════════════════════════════════════════════════════════════════════════════
def _nearest_neighbors(labs: np.ndarray, metric: DeltaMetric) -> List[NeighborSummary]:
    m = len(labs)
    if m < 2:
        return [NeighborSummary(index=i, neighbor_index=None, delta_e=0.0) for i in range(m)]
    dist = delta_e_matrix(metric, labs, labs)
    np.fill_diagonal(dist, np.inf)
    # argmin keeps the lowest index on ties
    best = np.argmin(dist, axis=1)
    return [
        NeighborSummary(index=i, neighbor_index=int(best[i]), delta_e=float(dist[i, best[i]]))
        for i in range(m)
    ]


def explain_clusters(
    points: Any,
    source: Sequence[ClusterSummary],
    target: Sequence[ClusterSummary],
    comparison: ClusterComparison,
    metric: Union[str, DeltaMetric] = DeltaMetric.CIE76,
) -> Optional[ExplainReport]:
    """
    Cross-tabulates point memberships of two palettes.

    Every point is labelled with its nearest source centroid and nearest
    target centroid (working space, lowest index on ties).  Jaccard is
    intersection / union per cell, 0 where the union is empty.

    Returns:
        ExplainReport, or None when either palette is empty.
    """
    metric = DeltaMetric.parse(metric)
    if len(source) == 0 or len(target) == 0:
        return None

    dataset = PointSet.from_points(points)
    src_centroids = np.array([c.centroid_space for c in source], dtype=np.float32)
    tgt_centroids = np.array([c.centroid_space for c in target], dtype=np.float32)
    src_labels = predict(dataset, src_centroids)
    tgt_labels = predict(dataset, tgt_centroids)

    n_src, n_tgt = len(source), len(target)
    confusion = np.zeros((n_src, n_tgt), dtype=np.int64)
    np.add.at(confusion, (src_labels, tgt_labels), 1)
    row_totals = confusion.sum(axis=1)
    col_totals = confusion.sum(axis=0)

    union = row_totals[:, None] + col_totals[None, :] - confusion
    jaccard = np.zeros(confusion.shape, dtype=np.float64)
    np.divide(confusion, union, out=jaccard, where=union > 0)

    matched: List[ExplainPair] = []
    for pair in comparison.pairs:
        i, j = pair.source_index, pair.target_index
        inter = int(confusion[i, j])
        uni = int(union[i, j])
        matched.append(ExplainPair(
            source_index=i,
            target_index=j,
            source_count=pair.source_count,
            target_count=pair.target_count,
            delta_e=pair.delta_e,
            share_diff=pair.share_diff,
            intersection=inter,
            union=uni,
            jaccard=inter / uni if uni else 0.0,
        ))

    return ExplainReport(
        matching_strategy=comparison.matching_strategy,
        delta_metric=metric.value,
        samples=len(dataset),
        confusion=confusion,
        jaccard=jaccard,
        row_totals=row_totals,
        col_totals=col_totals,
        matched_pairs=matched,
        nearest_source=_nearest_neighbors(_labs(source), metric),
        nearest_target=_nearest_neighbors(_labs(target), metric),
    )

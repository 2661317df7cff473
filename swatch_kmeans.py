# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: Deterministic K-Means Engine

Seeded k-means over 3-component points with k-means++ initialisation,
empty-cluster reseeding and an optional mini-batch mode.

Numeric policy
──────────────
  Assignment:
    Points are cut into chunks of ``max(chunk_size, k)``.  Each chunk is
    processed by one ``prange`` worker and owns private float64 partials
    (coordinate sums, counts, inertia).  Partials are folded together in
    chunk-index order, so a given seed yields bit-identical centroids no
    matter how many threads Numba uses.

  Nearest centroid:
    Squared Euclidean distance in float32; the lowest index wins ties.
    Two interchangeable scans exist (``scalar`` and a 4-lane ``blocked``
    variant) that produce identical labels.  Select one with
    ``set_nearest_strategy``.

  Randomness:
    Every draw comes from ``numpy.random.default_rng(seed)``.  Draws are
    made in Python and handed to the kernels, never from global state.

  Draw order per run:
    1. k-means++: one integer (first centroid), then ``k - 1`` uniforms.
    2. Per iteration: the mini-batch indices (if active), then one
       integer per empty centroid, in ascending centroid order.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Final, Optional, Tuple, TypeAlias

import numpy as np
import numpy.typing as npt
from loguru import logger
from numba import njit, prange

from swatch_config import config as swatch_config

__all__ = [
    "PointSet",
    "KMeansConfig",
    "KMeansConfigError",
    "KMeansResult",
    "cluster",
    "predict",
    "squared_distance",
    "set_nearest_strategy",
    "get_nearest_strategy",
    "DEFAULT_CHUNK_SIZE",
]

ArrayF32: TypeAlias = npt.NDArray[np.float32]

DEFAULT_CHUNK_SIZE: Final[int] = 1024
_LANES: Final[int] = 4

# ═══════════════════════════════════════════════════════════════════════════════
# Strategy switch
# ═══════════════════════════════════════════════════════════════════════════════
# Usage:
#     km.set_nearest_strategy("blocked")   # 4-lane scan
#     km.set_nearest_strategy("scalar")    # back to the default
_STRATEGIES: Final[dict] = {"scalar": False, "blocked": True}
_BLOCKED_SCAN: bool = False


def set_nearest_strategy(name: str) -> None:
    """
    Selects the nearest-centroid scan used by the assignment kernels.

    Args:
        name: ``"scalar"`` or ``"blocked"``.  Both give identical labels.
    """
    global _BLOCKED_SCAN
    key = str(name).strip().lower()
    if key not in _STRATEGIES:
        raise ValueError(f"Unknown nearest strategy '{name}' (use scalar|blocked)")
    _BLOCKED_SCAN = _STRATEGIES[key]


def get_nearest_strategy() -> str:
    return "blocked" if _BLOCKED_SCAN else "scalar"


if swatch_config.validate_strategy(swatch_config.NEAREST_STRATEGY):
    set_nearest_strategy(swatch_config.NEAREST_STRATEGY)
else:
    logger.warning("Ignoring SWATCH_NEAREST_STRATEGY={!r}", swatch_config.NEAREST_STRATEGY)


class KMeansConfigError(ValueError):
    """Raised when a clustering request is unusable."""


# ═══════════════════════════════════════════════════════════════════════════════
# Data containers
# ═══════════════════════════════════════════════════════════════════════════════
class PointSet:
    """
    Column-wise storage for N points: three contiguous float32 arrays.

    Construct with ``PointSet.from_points``; an empty set is rejected.
    """

    __slots__ = ("px", "py", "pz")

    def __init__(self, px: Any, py: Any, pz: Any) -> None:
        self.px: ArrayF32 = np.ascontiguousarray(px, dtype=np.float32)
        self.py: ArrayF32 = np.ascontiguousarray(py, dtype=np.float32)
        self.pz: ArrayF32 = np.ascontiguousarray(pz, dtype=np.float32)
        if not (self.px.ndim == self.py.ndim == self.pz.ndim == 1):
            raise ValueError("PointSet columns must be 1D")
        if not (len(self.px) == len(self.py) == len(self.pz)):
            raise ValueError(
                f"Column length mismatch: {len(self.px)}, {len(self.py)}, {len(self.pz)}"
            )
        if len(self.px) == 0:
            raise ValueError("PointSet requires at least one point")

    @classmethod
    def from_points(cls, points: Any) -> "PointSet":
        """Builds a set from an (N, 3) array-like or an existing PointSet."""
        if isinstance(points, cls):
            return points
        arr = np.asarray(points, dtype=np.float32)
        if arr.ndim != 2 or arr.shape[1] != 3:
            raise ValueError(f"Expected points of shape (N, 3), got {arr.shape}")
        return cls(arr[:, 0], arr[:, 1], arr[:, 2])

    def __len__(self) -> int:
        return len(self.px)

    def __repr__(self) -> str:
        return f"PointSet(n={len(self)})"

    def point(self, idx: int) -> ArrayF32:
        return np.array([self.px[idx], self.py[idx], self.pz[idx]], dtype=np.float32)

    def take(self, indices: Any) -> "PointSet":
        """Gathers the rows at ``indices`` (repeats allowed)."""
        idx = np.asarray(indices, dtype=np.int64)
        return PointSet(self.px[idx], self.py[idx], self.pz[idx])

    def to_array(self) -> ArrayF32:
        return np.stack([self.px, self.py, self.pz], axis=1)


@dataclass(eq=False)
class KMeansConfig:
    """
    Parameters of one clustering run.

    Attributes
    ----------
    k : int
        Number of centroids (> 0).
    max_iters : int
        Iteration cap; 0 returns the seeding unchanged.
    tol : float
        Convergence threshold on the total centroid displacement.
    seed : int
        Seed of the run's private random generator.
    warm_start : array_like, optional
        (k, 3) initial centroids, used verbatim instead of k-means++.
    mini_batch : int, optional
        Per-iteration batch size.  ``None``/``0`` or a size not smaller than
        the data set means full-batch iterations.
    """
    k: int = swatch_config.DEFAULT_K
    max_iters: int = swatch_config.DEFAULT_MAX_ITER
    tol: float = swatch_config.DEFAULT_TOL
    seed: int = swatch_config.DEFAULT_SEED
    warm_start: Optional[Any] = None
    mini_batch: Optional[int] = None
    chunk_size: int = field(default=swatch_config.CHUNK_SIZE, repr=False)

    def __post_init__(self) -> None:
        if self.warm_start is not None:
            self.warm_start = np.array(self.warm_start, dtype=np.float32)
        self.validate()

    def validate(self) -> None:
        if int(self.k) <= 0:
            raise KMeansConfigError(f"k must be > 0, got {self.k}")
        if int(self.max_iters) < 0:
            raise KMeansConfigError(f"max_iters must be >= 0, got {self.max_iters}")
        if not (self.tol >= 0.0):
            raise KMeansConfigError(f"tol must be >= 0, got {self.tol}")
        if int(self.seed) < 0:
            raise KMeansConfigError(f"seed must be >= 0, got {self.seed}")
        if self.mini_batch is not None and int(self.mini_batch) < 0:
            raise KMeansConfigError(f"mini_batch must be >= 0, got {self.mini_batch}")
        if int(self.chunk_size) < 1:
            raise KMeansConfigError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.warm_start is not None:
            shape = np.shape(self.warm_start)
            if len(shape) != 2 or shape[1] != 3 or shape[0] != self.k:
                raise KMeansConfigError(
                    f"warm_start must have shape ({self.k}, 3), got {shape}"
                )

    @property
    def batch_active(self) -> bool:
        return bool(self.mini_batch)


@dataclass(eq=False)
class KMeansResult:
    """
    Outcome of ``cluster``.

    ``counts`` and ``inertia`` refer to the batch of the final assignment
    step; in mini-batch mode they describe that sample, not the full set.
    """
    centroids: ArrayF32
    counts: npt.NDArray[np.int64]
    iterations: int
    inertia: float
    converged: bool = False

    @property
    def k(self) -> int:
        return len(self.centroids)


# ═══════════════════════════════════════════════════════════════════════════════
# Kernels
# ═══════════════════════════════════════════════════════════════════════════════
@njit(cache=True, inline='always')
def _sq_dist(px, py, pz, cx, cy, cz):
    dx = px - cx
    dy = py - cy
    dz = pz - cz
    return dx * dx + dy * dy + dz * dz


@njit(cache=True, inline='always')
def _nearest_scalar(px, py, pz, cx, cy, cz):
    best_idx = 0
    best = np.inf
    for j in range(cx.shape[0]):
        d = _sq_dist(px, py, pz, cx[j], cy[j], cz[j])
        if d < best:
            best = d
            best_idx = j
    return best_idx, best


@njit(cache=True, inline='always')
def _nearest_blocked(px, py, pz, cx, cy, cz):
    k = cx.shape[0]
    best_idx = 0
    best = np.inf
    j = 0
    while j + 4 <= k:
        d0 = _sq_dist(px, py, pz, cx[j], cy[j], cz[j])
        d1 = _sq_dist(px, py, pz, cx[j + 1], cy[j + 1], cz[j + 1])
        d2 = _sq_dist(px, py, pz, cx[j + 2], cy[j + 2], cz[j + 2])
        d3 = _sq_dist(px, py, pz, cx[j + 3], cy[j + 3], cz[j + 3])
        # lanes are reduced in ascending order to keep the tie rule
        if d0 < best:
            best = d0
            best_idx = j
        if d1 < best:
            best = d1
            best_idx = j + 1
        if d2 < best:
            best = d2
            best_idx = j + 2
        if d3 < best:
            best = d3
            best_idx = j + 3
        j += 4
    while j < k:
        d = _sq_dist(px, py, pz, cx[j], cy[j], cz[j])
        if d < best:
            best = d
            best_idx = j
        j += 1
    return best_idx, best


@njit(cache=True, parallel=True)
def _assign_chunks(px, py, pz, cx, cy, cz, chunk_size, blocked):
    """Per-chunk partial sums, counts and inertia (float64 accumulators)."""
    n = px.shape[0]
    k = cx.shape[0]
    n_chunks = (n + chunk_size - 1) // chunk_size
    sums = np.zeros((n_chunks, k, 3), dtype=np.float64)
    counts = np.zeros((n_chunks, k), dtype=np.int64)
    inertia = np.zeros(n_chunks, dtype=np.float64)

    for c in prange(n_chunks):
        start = c * chunk_size
        end = min(start + chunk_size, n)
        acc = 0.0
        for i in range(start, end):
            if blocked:
                j, d = _nearest_blocked(px[i], py[i], pz[i], cx, cy, cz)
            else:
                j, d = _nearest_scalar(px[i], py[i], pz[i], cx, cy, cz)
            sums[c, j, 0] += px[i]
            sums[c, j, 1] += py[i]
            sums[c, j, 2] += pz[i]
            counts[c, j] += 1
            acc += d
        inertia[c] = acc
    return sums, counts, inertia


@njit(cache=True)
def _reduce_chunks(sums, counts, inertia):
    """Folds chunk partials together in chunk-index order."""
    n_chunks, k, _ = sums.shape
    total_sums = np.zeros((k, 3), dtype=np.float64)
    total_counts = np.zeros(k, dtype=np.int64)
    total_inertia = 0.0
    for c in range(n_chunks):
        for j in range(k):
            total_sums[j, 0] += sums[c, j, 0]
            total_sums[j, 1] += sums[c, j, 1]
            total_sums[j, 2] += sums[c, j, 2]
            total_counts[j] += counts[c, j]
        total_inertia += inertia[c]
    return total_sums, total_counts, total_inertia


@njit(cache=True, parallel=True)
def _label_points(px, py, pz, cx, cy, cz, blocked):
    n = px.shape[0]
    labels = np.empty(n, dtype=np.int64)
    for i in prange(n):
        if blocked:
            j, _ = _nearest_blocked(px[i], py[i], pz[i], cx, cy, cz)
        else:
            j, _ = _nearest_scalar(px[i], py[i], pz[i], cx, cy, cz)
        labels[i] = j
    return labels


@njit(cache=True)
def _kmeans_pp(px, py, pz, k, first_idx, draws):
    """
    k-means++ seeding with pre-drawn uniforms.

    ``draws[c - 1]`` decides centroid ``c``: scaled by the unchosen weight it
    walks the cumulative distance scan; when that weight is zero it instead
    selects an unchosen point by ordinal.  Returns the centroids and how many
    picks fell back to the uniform rule.
    """
    n = px.shape[0]
    centroids = np.empty((k, 3), dtype=np.float32)
    chosen = np.zeros(n, dtype=np.bool_)
    dist = np.empty(n, dtype=np.float64)

    centroids[0, 0] = px[first_idx]
    centroids[0, 1] = py[first_idx]
    centroids[0, 2] = pz[first_idx]
    chosen[first_idx] = True
    for i in range(n):
        dist[i] = _sq_dist(px[i], py[i], pz[i], px[first_idx], py[first_idx], pz[first_idx])
    dist[first_idx] = 0.0

    fallbacks = 0
    for c in range(1, k):
        total = 0.0
        unchosen = 0
        for i in range(n):
            if not chosen[i]:
                total += dist[i]
                unchosen += 1

        pick = -1
        if total <= 0.0:
            fallbacks += 1
            ordinal = int(draws[c - 1] * unchosen)
            if ordinal >= unchosen:
                ordinal = unchosen - 1
            for i in range(n):
                if chosen[i]:
                    continue
                if ordinal == 0:
                    pick = i
                    break
                ordinal -= 1
        else:
            target = draws[c - 1] * total
            last = -1
            for i in range(n):
                if chosen[i]:
                    continue
                last = i
                target -= dist[i]
                if target <= 0.0:
                    pick = i
                    break
            if pick < 0:
                pick = last

        centroids[c, 0] = px[pick]
        centroids[c, 1] = py[pick]
        centroids[c, 2] = pz[pick]
        chosen[pick] = True
        for i in range(n):
            if chosen[i]:
                dist[i] = 0.0
                continue
            d = _sq_dist(px[i], py[i], pz[i], px[pick], py[pick], pz[pick])
            if d < dist[i]:
                dist[i] = d
    return centroids, fallbacks


# ═══════════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════════
def squared_distance(a: Any, b: Any) -> float:
    """Squared Euclidean distance between two 3-vectors, in float32."""
    a32 = np.asarray(a, dtype=np.float32)
    b32 = np.asarray(b, dtype=np.float32)
    return float(_sq_dist(a32[0], a32[1], a32[2], b32[0], b32[1], b32[2]))


def _split_centroids(centroids: ArrayF32) -> Tuple[ArrayF32, ArrayF32, ArrayF32]:
    return (np.ascontiguousarray(centroids[:, 0]),
            np.ascontiguousarray(centroids[:, 1]),
            np.ascontiguousarray(centroids[:, 2]))


def _assignment_step(points: PointSet, centroids: ArrayF32, chunk_size: int):
    k = centroids.shape[0]
    cx, cy, cz = _split_centroids(centroids)
    sums, counts, inertia = _assign_chunks(
        points.px, points.py, points.pz, cx, cy, cz, max(chunk_size, k), _BLOCKED_SCAN
    )
    return _reduce_chunks(sums, counts, inertia)


def _seed_centroids(points: PointSet, k: int, rng: np.random.Generator) -> ArrayF32:
    n = len(points)
    first_idx = int(rng.integers(n))
    draws = rng.random(k - 1)
    centroids, fallbacks = _kmeans_pp(points.px, points.py, points.pz, k, first_idx, draws)
    if fallbacks:
        logger.debug("k-means++ used uniform fallback for {} of {} picks", fallbacks, k - 1)
    return centroids


def predict(points: Any, centroids: Any) -> npt.NDArray[np.int64]:
    """
    Labels every point with its nearest centroid (lowest index on ties).

    Args:
        points: PointSet or (N, 3) array-like.
        centroids: (k, 3) array-like.

    Returns:
        (N,) int64 labels.
    """
    pts = PointSet.from_points(points)
    cents = np.asarray(centroids, dtype=np.float32).reshape(-1, 3)
    if cents.shape[0] == 0:
        raise ValueError("predict requires at least one centroid")
    cx, cy, cz = _split_centroids(cents)
    return _label_points(pts.px, pts.py, pts.pz, cx, cy, cz, _BLOCKED_SCAN)


def cluster(points: Any, config: KMeansConfig) -> KMeansResult:
    """
    Runs seeded k-means.

    Args:
        points: PointSet or (N, 3) array-like in any working space.
        config: Run parameters; validated before any computation.

    Returns:
        KMeansResult with exactly ``config.k`` centroids.  Centroids that
        lose all points are reseeded to a random point of the full set and
        keep a count of zero for that iteration.

    Raises:
        KMeansConfigError: Invalid parameters or fewer points than ``k``.
    """
    config.validate()
    try:
        dataset = PointSet.from_points(points)
    except ValueError as exc:
        raise KMeansConfigError(str(exc)) from exc

    n = len(dataset)
    k = int(config.k)
    if n < k:
        raise KMeansConfigError(f"Need at least k={k} points, got {n}")

    rng = np.random.default_rng(int(config.seed))
    if config.warm_start is not None:
        centroids = np.array(config.warm_start, dtype=np.float32).reshape(k, 3)
    else:
        centroids = _seed_centroids(dataset, k, rng)

    batch_size = int(config.mini_batch or 0)
    use_batch = 0 < batch_size < n
    logger.debug(
        "cluster: n={} k={} max_iters={} tol={} seed={} mini_batch={} strategy={}",
        n, k, config.max_iters, config.tol, config.seed,
        batch_size if use_batch else None, get_nearest_strategy(),
    )

    counts = np.zeros(k, dtype=np.int64)
    inertia = 0.0
    iterations = 0
    converged = False

    while iterations < config.max_iters:
        working = dataset.take(rng.integers(0, n, size=batch_size)) if use_batch else dataset
        sums, step_counts, step_inertia = _assignment_step(working, centroids, int(config.chunk_size))
        inertia = float(step_inertia)

        counts = np.zeros(k, dtype=np.int64)
        shift = 0.0
        for j in range(k):
            if step_counts[j] == 0:
                ridx = int(rng.integers(n))
                centroids[j] = dataset.point(ridx)
                logger.debug("Reseeded empty centroid {} from point {} (iteration {})", j, ridx, iterations)
                continue
            updated = (sums[j] / step_counts[j]).astype(np.float32)
            delta = centroids[j].astype(np.float64) - updated.astype(np.float64)
            shift += float(np.dot(delta, delta))
            centroids[j] = updated
            counts[j] = step_counts[j]

        iterations += 1
        if math.sqrt(shift) < config.tol:
            converged = True
            break

    logger.debug(
        "cluster finished: iterations={} inertia={:.4f} converged={}",
        iterations, inertia, converged,
    )
    return KMeansResult(
        centroids=centroids,
        counts=counts,
        iterations=iterations,
        inertia=inertia,
        converged=converged,
    )

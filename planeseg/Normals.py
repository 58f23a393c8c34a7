"""
PCA normals + curvature over a shared KD-tree neighbour table.

The neighbour table is built once per point set by SpatialIndex and reused by the
region grower. Covariances are eigen-decomposed in batches; batches are spread
over a bounded thread pool and joined before the field is returned.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from planeseg.Utils import chunk_ranges, normalize_rows, time_cost_hms


class SpatialIndex:
    """KD-tree over one point set with a cached (N, k) neighbour table.

    Rows are padded with -1 where a radius search found fewer than k neighbours.
    Each row lists neighbours by increasing distance and includes the point itself.
    """

    def __init__(self, points: np.ndarray, k: int, radius: Optional[float] = None):
        self.points = np.asarray(points, dtype=np.float64)
        self.tree = cKDTree(self.points) if self.points.shape[0] else None
        self.k = int(min(k, self.points.shape[0]))
        self.radius = radius
        self.neighbors, self.counts = self._query_neighbors()

    def __repr__(self):
        return f"SpatialIndex(points={self.points.shape[0]}, k={self.k}, radius={self.radius})"

    def _query_neighbors(self):
        N = self.points.shape[0]
        if N == 0 or self.k == 0:
            return np.zeros((N, 0), dtype=np.int64), np.zeros(N, dtype=np.int64)
        if self.radius is None:
            _, idxs = self.tree.query(self.points, k=self.k)
        else:
            # misses come back with index N and infinite distance
            _, idxs = self.tree.query(self.points, k=self.k, distance_upper_bound=self.radius)
        if self.k == 1:
            idxs = idxs[:, None]
        idxs = np.asarray(idxs, dtype=np.int64)
        idxs[idxs >= N] = -1
        counts = (idxs >= 0).sum(axis=1)
        return idxs, counts

    def neighbors_of(self, i: int) -> np.ndarray:
        row = self.neighbors[i]
        return row[:self.counts[i]]


@dataclass
class NormalField:
    normals: np.ndarray  # (N,3) unit vectors, NaN rows where unavailable
    curvature: np.ndarray  # (N,) l_min / (l1+l2+l3), NaN where unavailable
    valid: np.ndarray  # (N,) bool

    @property
    def number(self):
        return self.normals.shape[0]


def _normals_chunk(points: np.ndarray, index: SpatialIndex, viewpoint: np.ndarray, min_neighbors: int,
                   normals: np.ndarray, curvature: np.ndarray, valid: np.ndarray, s: int, e: int):
    idx_chunk = index.neighbors[s:e]  # (B,k)
    cnt = index.counts[s:e]
    ok = cnt >= min_neighbors
    if not np.any(ok):
        return
    rows = np.flatnonzero(ok)
    idx_chunk = idx_chunk[rows]
    cnt = cnt[rows].astype(np.float64)
    w = (idx_chunk >= 0).astype(np.float64)  # (B,k)
    # Gather neighbour coordinates -> (B,k,3); padded slots are masked out by w
    neigh = points[np.where(idx_chunk >= 0, idx_chunk, 0)]
    mu = (neigh * w[:, :, None]).sum(axis=1) / cnt[:, None]  # (B,3)
    X = (neigh - mu[:, None, :]) * w[:, :, None]  # (B,k,3)
    cov = np.einsum('bki,bkj->bij', X, X) / cnt[:, None, None]
    # Batched eigen-decomp (ascending eigenvalues); smallest eigenvector is normal
    lam, V = np.linalg.eigh(cov)
    n = V[:, :, 0]
    lam_sum = lam.sum(axis=1)
    # all neighbours coincide -> no surface to speak of
    spread = lam_sum > 1e-12 * np.maximum(1.0, np.abs(mu).max(axis=1)) ** 2
    n = normalize_rows(n)

    # Flip so that every normal faces the viewpoint
    p = points[s:e][rows]
    flip = np.einsum('ij,ij->i', n, viewpoint[None, :] - p) < 0.0
    n[flip] *= -1.0

    target = s + rows[spread]
    normals[target] = n[spread]
    curvature[target] = lam[spread, 0] / lam_sum[spread]
    valid[target] = True


def estimate_normals(points: np.ndarray, index: SpatialIndex, min_neighbors: int = 3,
                     viewpoint: Sequence[float] = (0.0, 0.0, 0.0), workers: int = 1,
                     batch: int = 50000) -> NormalField:
    """Compute per-point PCA normal and curvature = l_min / (l1+l2+l3).

    Points with fewer than `min_neighbors` neighbours (self included) get NaN.
    """
    points = np.asarray(points, dtype=np.float64)
    N = points.shape[0]
    normals = np.full((N, 3), np.nan, dtype=np.float64)
    curvature = np.full(N, np.nan, dtype=np.float64)
    valid = np.zeros(N, dtype=bool)
    if N == 0:
        return NormalField(normals, curvature, valid)

    vp = np.asarray(viewpoint, dtype=np.float64)
    t0 = time.perf_counter()
    # at least one range per worker, none longer than `batch`
    parts = max(workers, -(-N // batch))
    ranges = chunk_ranges(N, parts)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_normals_chunk, points, index, vp, min_neighbors, normals, curvature, valid, s, e)
                   for s, e in ranges]
        # join barrier; re-raises the first worker failure
        for future in futures:
            future.result()

    logging.info(f"Computed normals+curvature for {N} points ({int(valid.sum())} valid, "
                 f"{len(ranges)} ranges, {workers} workers) in {time_cost_hms(time.perf_counter() - t0)}")
    return NormalField(normals, curvature, valid)

import logging
import math
import time
from collections import deque
from typing import Optional

import numpy as np

from planeseg.Cluster import Cluster, Clusters
from planeseg.Normals import NormalField, SpatialIndex
from planeseg.Utils import deg2rad, time_cost_hms


def seed_order(field: NormalField) -> np.ndarray:
    """Points with a normal, by ascending curvature; equal curvature keeps index order."""
    candidates = np.flatnonzero(field.valid)
    return candidates[np.argsort(field.curvature[candidates], kind='stable')]


def grow_region(seed: int, index: SpatialIndex, field: NormalField, assigned: np.ndarray, cos_th: float,
                max_cluster_size: int, curvature_threshold: Optional[float]) -> list:
    """Breadth-first expansion from one seed. Marks every accepted point in `assigned`."""
    normals = field.normals
    region = [seed]
    assigned[seed] = True
    queue = deque([seed])
    while queue and len(region) < max_cluster_size:
        cur = queue.popleft()
        nbrs = index.neighbors_of(cur)
        nbrs = nbrs[field.valid[nbrs] & ~assigned[nbrs]]
        if nbrs.size == 0:
            continue
        # unsigned: flipped normals still count as parallel
        dots = np.abs(normals[nbrs] @ normals[cur])
        for j in nbrs[dots >= cos_th]:
            assigned[j] = True
            region.append(int(j))
            if len(region) >= max_cluster_size:
                break
            # high-curvature points join the region but do not spread it
            if curvature_threshold is None or field.curvature[j] < curvature_threshold:
                queue.append(int(j))
    return region


def region_growing(index: SpatialIndex, field: NormalField, min_cluster_size: int = 10,
                   max_cluster_size: int = 1000000, smoothness_threshold: float = 8.0,
                   curvature_threshold: Optional[float] = 1.0) -> Clusters:
    """
    Seeded region growing on normal direction.

    :param index: SpatialIndex of the point set `field` belongs to
    :param field: normals + curvature of that point set
    :param smoothness_threshold: max angle (deg) between an expanding point's normal and a candidate's
    :param curvature_threshold: points at or above it are accepted but not expanded; None disables
    :return: clusters ranked by descending size; regions below min_cluster_size are dropped
    """
    t0 = time.perf_counter()
    N = field.number
    assigned = np.zeros(N, dtype=bool)
    cos_th = math.cos(deg2rad(smoothness_threshold))
    clusters = Clusters()
    dropped = 0

    for seed in seed_order(field):
        if assigned[seed]:
            continue
        region = grow_region(int(seed), index, field, assigned, cos_th, max_cluster_size, curvature_threshold)
        if len(region) < min_cluster_size:
            dropped += 1
            continue
        idx = np.asarray(region, dtype=np.int64)
        mean_normal = field.normals[idx].mean(axis=0)
        norm = np.linalg.norm(mean_normal)
        clusters.append(Cluster(clusters.number, idx, mean_normal=mean_normal / norm if norm > 0 else None))

    clusters.rank()
    logging.info(f"Region growing (smoothness={smoothness_threshold}deg, curvature={curvature_threshold}): "
                 f"{clusters.number} clusters, {dropped} small regions dropped "
                 f"in {time_cost_hms(time.perf_counter() - t0)}")
    logging.debug(f"{clusters}")
    return clusters

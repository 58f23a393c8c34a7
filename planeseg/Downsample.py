"""
Voxel-grid downsampling of a DepthPointCloud.

Every occupied voxel of edge `voxel_size` is replaced by one representative point
(centroid or coordinate-wise median). The inverse map `voxel_of` ties each
full-resolution point to its representative, so clusters grown on the reduced
set can be lifted back to pixels.
"""
import logging
import time
from dataclasses import dataclass

import numpy as np
import open3d as o3d

from planeseg.Errors import ConfigurationError, InsufficientData
from planeseg.Utils import time_cost_hms

MIN_POINTS = 3


@dataclass
class VoxelGrid:
    points: np.ndarray  # (M,3) representatives, ascending voxel key order
    voxel_of: np.ndarray  # (N,) representative index of each full-resolution point
    counts: np.ndarray  # (M,) number of full-resolution points per voxel
    voxel_size: float

    @property
    def number(self):
        return self.points.shape[0]

    def members(self, voxel_ids) -> np.ndarray:
        """Sorted full-resolution indices of all points falling into the given voxels."""
        keep = np.zeros(self.number, dtype=bool)
        keep[np.asarray(voxel_ids, dtype=np.int64)] = True
        return np.flatnonzero(keep[self.voxel_of])

    def as_open3d(self) -> o3d.geometry.PointCloud:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        return pcd


def voxel_keys(points: np.ndarray, voxel_size: float) -> np.ndarray:
    origin = points.min(axis=0)
    return np.floor((points - origin) / voxel_size).astype(np.int64)


def voxel_downsample(points: np.ndarray, voxel_size: float, method: str = 'centroid') -> VoxelGrid:
    if not voxel_size > 0:
        raise ConfigurationError(f"voxel_size must be > 0, got {voxel_size}")
    if points.shape[0] == 0:
        raise InsufficientData("Downsample: empty point set")

    t0 = time.perf_counter()
    keys = voxel_keys(points, voxel_size)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    M = counts.shape[0]

    if method == 'centroid':
        sums = np.zeros((M, 3), dtype=np.float64)
        np.add.at(sums, inverse, points)
        reduced = sums / counts[:, None]
    elif method == 'median':
        # group by voxel, then take the per-axis median of each group
        order = np.argsort(inverse, kind='stable')
        splits = np.cumsum(counts)[:-1]
        groups = np.split(order, splits)
        reduced = np.vstack([np.median(points[g], axis=0) for g in groups])
    else:
        raise ConfigurationError(f"Unknown downsample method: {method}")

    if M < MIN_POINTS:
        raise InsufficientData(f"Downsample: voxel_size={voxel_size} leaves {M} points, need at least {MIN_POINTS}")

    logging.info(f"Downsample ({method}, leaf={voxel_size}): {points.shape[0]} -> {M} points "
                 f"in {time_cost_hms(time.perf_counter() - t0)}")
    return VoxelGrid(points=reduced, voxel_of=inverse.astype(np.int64), counts=counts, voxel_size=float(voxel_size))

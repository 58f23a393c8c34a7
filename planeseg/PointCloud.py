import logging
import os
from typing import Optional

import numpy as np
import open3d as o3d

from planeseg.Errors import InsufficientData
from planeseg.Params import Params


def valid_pixel_mask(xyz_map: np.ndarray, params: Params, amplitude: Optional[np.ndarray] = None) -> np.ndarray:
    '''
    :param xyz_map: HxWx3 coordinate map (mm)
    :param amplitude: optional HxW amplitude/confidence map of the same frame
    :return: HxW bool array, True where the pixel carries a usable 3D point
    '''
    xyz_map = check_xyz_map(xyz_map)
    valid = np.all(np.isfinite(xyz_map), axis=2)
    # all-sentinel pixels are sensor dropouts
    valid &= ~np.all(xyz_map == params.invalid_value, axis=2)

    if params.depth_range is not None:
        near, far = params.depth_range
        z = xyz_map[:, :, 2]
        with np.errstate(invalid='ignore'):
            valid &= (z > near) & (z <= far)

    if amplitude is not None and params.confidence_threshold is not None:
        amplitude = np.asarray(amplitude)
        if amplitude.shape != xyz_map.shape[:2]:
            raise ValueError(f"amplitude shape {amplitude.shape} does not match map shape {xyz_map.shape[:2]}")
        with np.errstate(invalid='ignore'):
            valid &= amplitude >= params.confidence_threshold
    return valid


def check_xyz_map(xyz_map) -> np.ndarray:
    xyz_map = np.asarray(xyz_map, dtype=np.float64)
    if xyz_map.ndim != 3 or xyz_map.shape[2] != 3:
        raise ValueError(f"xyzMap must have shape (H, W, 3), got {xyz_map.shape}")
    return xyz_map


class DepthPointCloud:
    """Valid points of one xyzMap, in row-major scan order, with their source pixels."""

    def __init__(self, points: np.ndarray, pixel_indices: np.ndarray, shape):
        self.points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        self.pixel_indices = np.asarray(pixel_indices, dtype=np.int64).reshape(-1, 2)
        self.shape = (int(shape[0]), int(shape[1]))
        if self.points.shape[0] != self.pixel_indices.shape[0]:
            raise ValueError("points and pixel_indices must have the same length")

    def __repr__(self):
        return f"DepthPointCloud(points={self.number}, shape={self.shape})"

    def __len__(self):
        return self.number

    @property
    def number(self):
        return self.points.shape[0]

    @property
    def is_empty(self):
        return self.number == 0

    @classmethod
    def from_xyz_map(cls, xyz_map, params: Params, amplitude: Optional[np.ndarray] = None) -> "DepthPointCloud":
        xyz_map = check_xyz_map(xyz_map)
        valid = valid_pixel_mask(xyz_map, params, amplitude)
        # np.nonzero walks the grid in row-major order
        rows, cols = np.nonzero(valid)
        points = xyz_map[rows, cols]
        pixel_indices = np.column_stack([rows, cols])
        logging.info(f"PointSet: {points.shape[0]} valid of {valid.size} pixels")
        return cls(points, pixel_indices, valid.shape)

    @property
    def pixel_to_point(self) -> np.ndarray:
        """HxW lookup: point index of each pixel, -1 where the pixel was discarded."""
        lookup = np.full(self.shape, -1, dtype=np.int64)
        if self.number:
            lookup[self.pixel_indices[:, 0], self.pixel_indices[:, 1]] = np.arange(self.number)
        return lookup

    @property
    def valid_mask(self) -> np.ndarray:
        mask = np.zeros(self.shape, dtype=bool)
        if self.number:
            mask[self.pixel_indices[:, 0], self.pixel_indices[:, 1]] = True
        return mask

    def select(self, indices) -> "DepthPointCloud":
        indices = np.asarray(indices, dtype=np.int64)
        return DepthPointCloud(self.points[indices], self.pixel_indices[indices], self.shape)

    def require(self, minimum: int, stage: str):
        if self.number < minimum:
            raise InsufficientData(f"{stage}: {self.number} points, need at least {minimum}")

    def as_open3d(self, colors: Optional[np.ndarray] = None) -> o3d.geometry.PointCloud:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(self.points)
        if colors is not None:
            pcd.colors = o3d.utility.Vector3dVector(np.asarray(colors, dtype=np.float64))
        return pcd

    def export(self, path, format='ply'):
        '''
        :param path: save path
        :param format: ply, npz
        :return: saved points with given format
        '''
        if self.is_empty:
            logging.warning("No points to export.")
            return
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)

        if format == 'ply':
            o3d.io.write_point_cloud(path, self.as_open3d(), write_ascii=False)
        elif format == 'npz':
            np.savez(path, points=self.points, pixel_indices=self.pixel_indices, shape=np.asarray(self.shape))
        else:
            raise ValueError(f"Unsupported export format: {format}")
        logging.info(f"Exported {self.number} points to {path} as {format}")

    @classmethod
    def load(cls, path) -> "DepthPointCloud":
        data = np.load(path)
        return cls(data['points'], data['pixel_indices'], tuple(data['shape']))

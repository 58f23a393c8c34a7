"""
Back-projection of a fitted surface onto the pixel grid of the xyzMap.
"""
from typing import Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import Normalize

from planeseg.SurfaceFit import PlaneEquation, SphereEquation

Equation = Union[PlaneEquation, SphereEquation]

PLANE_COLOR = (0, 255, 0)
SPHERE_COLOR = (255, 0, 0)


def empty_indices() -> np.ndarray:
    return np.zeros((0, 2), dtype=np.int64)


def compute_indices(xyz_map: np.ndarray, valid_mask: np.ndarray, equation: Equation,
                    threshold: float) -> np.ndarray:
    '''
    :return: (M,2) array of (row, col), row-major, for every valid pixel whose
             squared distance to the surface is strictly below threshold
    '''
    if equation is None:
        return empty_indices()
    rows, cols = np.nonzero(valid_mask)
    if rows.size == 0:
        return empty_indices()
    d2 = equation.squared_distance(xyz_map[rows, cols])
    keep = d2 < threshold
    return np.column_stack([rows[keep], cols[keep]]).astype(np.int64)


def compute_plane_indices(xyz_map: np.ndarray, valid_mask: np.ndarray, plane: PlaneEquation,
                          threshold: float) -> np.ndarray:
    return compute_indices(xyz_map, valid_mask, plane, threshold)


def compute_sphere_indices(xyz_map: np.ndarray, valid_mask: np.ndarray, sphere: SphereEquation,
                           threshold: float) -> np.ndarray:
    return compute_indices(xyz_map, valid_mask, sphere, threshold)


def indices_to_mask(indices: np.ndarray, shape) -> np.ndarray:
    mask = np.zeros(shape, dtype=bool)
    if len(indices):
        mask[indices[:, 0], indices[:, 1]] = True
    return mask


def shade_depth(xyz_map: np.ndarray, valid_mask: np.ndarray, cmap: str = 'gray') -> np.ndarray:
    """HxWx3 uint8 rendering of z; invalid pixels stay black."""
    H, W = valid_mask.shape
    image = np.zeros((H, W, 3), dtype=np.uint8)
    if not np.any(valid_mask):
        return image
    z = xyz_map[:, :, 2]
    zv = z[valid_mask]
    norm = Normalize(vmin=float(zv.min()), vmax=float(zv.max()) if zv.max() > zv.min() else float(zv.min()) + 1.0)
    rgba = plt.get_cmap(cmap)(norm(zv))
    image[valid_mask] = (rgba[:, :3] * 255).astype(np.uint8)
    return image


def draw_regression_points(xyz_map: np.ndarray, valid_mask: np.ndarray, equation: Equation, threshold: float,
                           color=SPHERE_COLOR) -> Tuple[np.ndarray, int]:
    '''
    debug overlay: depth shading with every accepted pixel painted in `color`
    :return: (HxWx3 uint8 image, number of accepted pixels)
    '''
    image = shade_depth(xyz_map, valid_mask)
    indices = compute_indices(xyz_map, valid_mask, equation, threshold)
    if len(indices):
        image[indices[:, 0], indices[:, 1]] = np.asarray(color, dtype=np.uint8)
    return image, int(len(indices))


def draw_sphere_regression_points(xyz_map: np.ndarray, valid_mask: np.ndarray, sphere: SphereEquation,
                                  threshold: float) -> Tuple[np.ndarray, int]:
    return draw_regression_points(xyz_map, valid_mask, sphere, threshold, color=SPHERE_COLOR)


def draw_plane_regression_points(xyz_map: np.ndarray, valid_mask: np.ndarray, plane: PlaneEquation,
                                 threshold: float) -> Tuple[np.ndarray, int]:
    return draw_regression_points(xyz_map, valid_mask, plane, threshold, color=PLANE_COLOR)

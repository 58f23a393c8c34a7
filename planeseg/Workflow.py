import logging
import os
import time
from typing import Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import open3d as o3d

from planeseg.Params import Params
from planeseg.Plane import Plane
from planeseg.Utils import time_cost_hms


def load_xyz_map(data_path) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    '''
    :param data_path: .npy holding an HxWx3 xyzMap, or .npz with key 'xyz' and optional 'amplitude'
    :return: xyz_map, amplitude (None when absent)
    '''
    starttime = time.perf_counter()
    ext = os.path.splitext(str(data_path))[1].lower()
    if ext == '.npy':
        xyz_map, amplitude = np.load(data_path), None
    elif ext == '.npz':
        with np.load(data_path) as data:
            if 'xyz' not in data:
                raise ValueError(f"{data_path}: missing 'xyz' array")
            xyz_map = data['xyz']
            amplitude = data['amplitude'] if 'amplitude' in data else None
    else:
        raise ValueError(f"Unsupported xyzMap format: {data_path}")
    logging.info(f"[time cost]{time_cost_hms(time.perf_counter() - starttime)} - load xyzMap {xyz_map.shape}")
    return xyz_map, amplitude


def extract_plane(xyz_map, params: Optional[Params] = None, amplitude=None) -> Plane:
    return Plane.from_xyz_map(xyz_map, params, amplitude)


def export_results(plane: Plane, save_path):
    '''
    writes, when available:
        cloud.ply          full-resolution valid points
        clusters.ply       full-resolution points painted by cluster
        down_cloud.ply     voxel-grid representatives
        plane_points.ply   points whose pixel is on the fitted plane
        regression.npz     equations, index sets and masks
        sphere_overlay.png sphere debug overlay
    '''
    os.makedirs(save_path, exist_ok=True)
    run = plane.run
    cloud = plane.get_cloud()
    if cloud is None or cloud.is_empty:
        logging.warning("Nothing to export: empty cloud.")
        return

    cloud.export(os.path.join(save_path, 'cloud.ply'), format='ply')
    o3d.io.write_point_cloud(os.path.join(save_path, 'clusters.ply'), plane.get_colored_cloud())
    down_cloud = plane.get_down_cloud()
    if down_cloud is not None and down_cloud.number:
        o3d.io.write_point_cloud(os.path.join(save_path, 'down_cloud.ply'), down_cloud.as_open3d())

    if plane.has_plane and run.num_plane_points:
        lookup = cloud.pixel_to_point
        ids = lookup[run.plane_indices[:, 0], run.plane_indices[:, 1]]
        cloud.select(ids).export(os.path.join(save_path, 'plane_points.ply'), format='ply')

    nan4 = np.full(4, np.nan)
    np.savez(os.path.join(save_path, 'regression.npz'),
             plane_equation=np.asarray(run.plane_equation.as_list()) if plane.has_plane else nan4,
             sphere_equation=np.asarray(run.sphere_equation.as_list()) if plane.has_sphere else nan4,
             plane_indices=run.plane_indices,
             sphere_indices=run.sphere_indices,
             plane_mask=plane.get_plane_mask(),
             sphere_mask=plane.get_sphere_mask())

    overlay = plane.get_sphere_overlay()
    if overlay is not None:
        plt.imsave(os.path.join(save_path, 'sphere_overlay.png'), overlay)
    logging.info(f"Exported results to {save_path}")

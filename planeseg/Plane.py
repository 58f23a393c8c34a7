"""
Plane extraction engine.

A Plane object takes a raw xyzMap and finds the dominant background surface:

    xyzMap -> valid points -> voxel grid -> normals -> region growing
           -> best cluster -> plane / sphere regression -> pixel membership

Each call to initialize_cloud() (or compute()) builds a fresh PlaneRun holding
every buffer of that run; nothing from a previous frame survives.
Data-dependent failures never raise: the affected equation is None, its index
set is empty and the reason is kept in plane_failure / sphere_failure.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import open3d as o3d

from planeseg import PixelProjection
from planeseg.Cluster import Cluster, Clusters
from planeseg.Downsample import MIN_POINTS, VoxelGrid, voxel_downsample
from planeseg.Errors import IllConditionedFit, InsufficientData, PlaneSegError
from planeseg.Normals import NormalField, SpatialIndex, estimate_normals
from planeseg.Params import Params
from planeseg.PointCloud import DepthPointCloud, check_xyz_map
from planeseg.RegionGrowing import region_growing
from planeseg.SurfaceFit import PlaneEquation, SphereEquation, fit_plane_lse, fit_sphere_lse
from planeseg.Utils import time_cost_hms


@dataclass
class PlaneRun:
    """Everything derived from one xyzMap."""
    shape: tuple = (0, 0)
    cloud: Optional[DepthPointCloud] = None
    down_cloud: Optional[VoxelGrid] = None
    down_normals: Optional[NormalField] = None
    normals: Optional[NormalField] = None  # full resolution, only with full_resolution_normals
    clusters: Clusters = field(default_factory=Clusters)
    selected: Optional[Cluster] = None
    plane_equation: Optional[PlaneEquation] = None
    sphere_equation: Optional[SphereEquation] = None
    plane_indices: np.ndarray = field(default_factory=PixelProjection.empty_indices)
    sphere_indices: np.ndarray = field(default_factory=PixelProjection.empty_indices)
    plane_failure: Optional[PlaneSegError] = None
    sphere_failure: Optional[PlaneSegError] = None
    sphere_overlay: Optional[np.ndarray] = None
    calculate_time: float = 0.0

    @property
    def num_plane_points(self):
        return int(len(self.plane_indices))

    @property
    def num_sphere_points(self):
        return int(len(self.sphere_indices))

    def fail(self, error: PlaneSegError):
        self.plane_failure = error
        self.sphere_failure = error


class Plane:
    def __init__(self, params: Optional[Params] = None, xyz_map=None, amplitude=None):
        self.params = params if params is not None else Params()
        self.xyz_map = None
        self.amplitude = None
        self.run = PlaneRun()
        if xyz_map is not None:
            self.initialize_cloud(xyz_map, amplitude)

    def __repr__(self):
        return (f"Plane(points={self.run.cloud.number if self.run.cloud else 0}, "
                f"clusters={self.run.clusters.number}, plane={self.run.plane_equation}, "
                f"sphere={self.run.sphere_equation})")

    @classmethod
    def from_xyz_map(cls, xyz_map, params: Optional[Params] = None, amplitude=None) -> "Plane":
        return cls(params, xyz_map, amplitude)

    def initialize_cloud(self, xyz_map, amplitude=None) -> PlaneRun:
        '''
        :param xyz_map: raw HxWx3 xyzMap (mm); copied, the caller's array is never touched
        :param amplitude: optional HxW amplitude map used with params.confidence_threshold
        '''
        self.xyz_map = check_xyz_map(xyz_map).copy()
        self.xyz_map.setflags(write=False)
        self.amplitude = None if amplitude is None else np.array(amplitude, dtype=np.float64)
        return self.compute()

    def compute(self) -> PlaneRun:
        if self.xyz_map is None:
            raise RuntimeError("compute() called before initialize_cloud()")
        start_time = time.perf_counter()
        params = self.params
        run = PlaneRun(shape=self.xyz_map.shape[:2])
        # publish the fresh run first so a failure never leaves the previous frame visible
        self.run = run

        run.cloud = DepthPointCloud.from_xyz_map(self.xyz_map, params, self.amplitude)
        try:
            run.cloud.require(MIN_POINTS, "PointSet")
            run.down_cloud = voxel_downsample(run.cloud.points, params.voxel_size, params.downsample_method)
            self._cluster(run)
            run.selected = run.clusters.select(params.cloud_size_threshold)
            if run.selected is None:
                raise InsufficientData(f"No cluster reaches cloud_size_threshold={params.cloud_size_threshold} "
                                       f"({run.clusters.number} clusters)")
        except InsufficientData as e:
            logging.warning(f"No surface found: {e}")
            if run.down_cloud is None:
                run.down_cloud = VoxelGrid(np.zeros((0, 3)), np.zeros(0, dtype=np.int64),
                                           np.zeros(0, dtype=np.int64), params.voxel_size)
            run.fail(e)
            run.calculate_time = time.perf_counter() - start_time
            return run

        logging.info(f"Selected {run.selected}")
        points = run.cloud.points[run.selected.full_indices]
        self._fit_plane(run, points)
        self._fit_sphere(run, points)

        run.calculate_time = time.perf_counter() - start_time
        logging.info(f"[time cost]{time_cost_hms(run.calculate_time)} - plane: {run.num_plane_points} px, "
                     f"sphere: {run.num_sphere_points} px")
        return run

    def _normal_field(self, points: np.ndarray):
        params = self.params
        index = SpatialIndex(points, k=params.normal_k, radius=params.normal_radius)
        normals = estimate_normals(points, index, min_neighbors=params.min_neighbors,
                                   viewpoint=params.viewpoint, workers=params.workers)
        return index, normals

    def _cluster(self, run: PlaneRun):
        params = self.params
        down_index, run.down_normals = self._normal_field(run.down_cloud.points)
        if params.full_resolution_normals:
            index, run.normals = self._normal_field(run.cloud.points)
            field_ = run.normals
        else:
            index, field_ = down_index, run.down_normals

        run.clusters = region_growing(index, field_,
                                      min_cluster_size=params.min_cluster_size,
                                      max_cluster_size=params.max_cluster_size,
                                      smoothness_threshold=params.smoothness_threshold,
                                      curvature_threshold=params.curvature_threshold)
        if not params.full_resolution_normals:
            run.clusters.lift(run.down_cloud)

    def _fit_plane(self, run: PlaneRun, points: np.ndarray):
        params = self.params
        try:
            run.plane_equation = fit_plane_lse(points, rank_tolerance=params.rank_tolerance,
                                               viewpoint=params.viewpoint)
        except (InsufficientData, IllConditionedFit) as e:
            logging.warning(f"Plane regression failed: {e}")
            run.plane_failure = e
            return
        run.plane_indices = PixelProjection.compute_plane_indices(
            self.xyz_map, run.cloud.valid_mask, run.plane_equation, params.r_squared_distance_threshold)
        logging.info(f"Plane {run.plane_equation.as_list()}: {run.num_plane_points} px")

    def _fit_sphere(self, run: PlaneRun, points: np.ndarray):
        params = self.params
        try:
            run.sphere_equation = fit_sphere_lse(points, max_condition_number=params.max_condition_number,
                                                 max_residual_ratio=params.sphere_residual_ratio)
        except (InsufficientData, IllConditionedFit) as e:
            logging.warning(f"Sphere regression failed: {e}")
            run.sphere_failure = e
            return
        valid_mask = run.cloud.valid_mask
        run.sphere_indices = PixelProjection.compute_sphere_indices(
            self.xyz_map, valid_mask, run.sphere_equation, params.sphere_threshold)
        if params.draw_sphere_overlay:
            run.sphere_overlay, _ = PixelProjection.draw_sphere_regression_points(
                self.xyz_map, valid_mask, run.sphere_equation, params.sphere_threshold)
        logging.info(f"Sphere {run.sphere_equation.as_list()}: {run.num_sphere_points} px")

    # ---------- accessors ----------

    @property
    def has_plane(self) -> bool:
        return self.run.plane_equation is not None

    @property
    def has_sphere(self) -> bool:
        return self.run.sphere_equation is not None

    @property
    def plane_failure(self) -> Optional[PlaneSegError]:
        return self.run.plane_failure

    @property
    def sphere_failure(self) -> Optional[PlaneSegError]:
        return self.run.sphere_failure

    def get_cloud(self) -> Optional[DepthPointCloud]:
        return self.run.cloud

    def get_down_cloud(self) -> Optional[VoxelGrid]:
        return self.run.down_cloud

    def get_clusters(self) -> Clusters:
        return self.run.clusters

    def get_plane_equation(self) -> Optional[PlaneEquation]:
        return self.run.plane_equation

    def get_sphere_equation(self) -> Optional[SphereEquation]:
        return self.run.sphere_equation

    def get_plane_indices(self) -> np.ndarray:
        return self.run.plane_indices

    def get_sphere_indices(self) -> np.ndarray:
        return self.run.sphere_indices

    def get_plane_mask(self) -> np.ndarray:
        return PixelProjection.indices_to_mask(self.run.plane_indices, self.run.shape)

    def get_sphere_mask(self) -> np.ndarray:
        return PixelProjection.indices_to_mask(self.run.sphere_indices, self.run.shape)

    def get_sphere_overlay(self) -> Optional[np.ndarray]:
        return self.run.sphere_overlay

    def get_colored_cloud(self) -> Optional[o3d.geometry.PointCloud]:
        if self.run.cloud is None:
            return None
        return self.run.clusters.colored_cloud(self.run.cloud)

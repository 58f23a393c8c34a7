import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from planeseg.Errors import ConfigurationError

# Minimum cloud size (pixel) a cluster needs before its regression equations are computed.
CLOUD_SIZE_THRESHOLD = 1000

# Maximum squared distance (mm^2) allowed between a real point and the regression surface.
R_SQUARED_DISTANCE_THRESHOLD = 0.0005

DOWNSAMPLE_METHODS = ('centroid', 'median')


def _hardware_concurrency() -> int:
    return os.cpu_count() or 1


@dataclass
class Params:
    # point set builder
    invalid_value: float = 0.0  # sentinel coordinate of an invalid pixel (all three components)
    depth_range: Optional[Tuple[float, float]] = None  # (near, far] z range in mm, None = unbounded
    confidence_threshold: Optional[float] = None  # minimum amplitude when an amplitude map is given
    # downsampler
    voxel_size: float = 10.0  # voxel leaf size (mm)
    downsample_method: str = 'centroid'  # one of {centroid, median}
    # normal estimator
    normal_k: int = 30  # KNN for normals/curvature
    normal_radius: Optional[float] = None  # optional search radius (mm); neighbours capped at normal_k
    min_neighbors: int = 3  # fewer neighbours -> normal unavailable
    viewpoint: Tuple[float, float, float] = (0.0, 0.0, 0.0)  # normals are flipped to face this point
    full_resolution_normals: bool = False  # grow regions on the full cloud instead of the voxel grid
    workers: int = field(default_factory=_hardware_concurrency)  # normal estimation pool size
    # region grower
    smoothness_threshold: float = 8.0  # max angle (deg) between neighbouring normals
    curvature_threshold: Optional[float] = 1.0  # points above this stop growing; None disables
    min_cluster_size: int = 10
    max_cluster_size: int = 1000000
    # surface fitter
    cloud_size_threshold: int = CLOUD_SIZE_THRESHOLD  # full-resolution members needed to qualify
    rank_tolerance: float = 1e-10  # relative eigenvalue below which a plane fit is collinear
    max_condition_number: float = 1e8  # sphere systems above this are rejected
    sphere_residual_ratio: float = 0.5  # sphere RMS residual must stay below this fraction of the plane's
    # pixel projector
    r_squared_distance_threshold: float = R_SQUARED_DISTANCE_THRESHOLD
    sphere_r_squared_distance_threshold: Optional[float] = None  # None -> same as plane
    draw_sphere_overlay: bool = False

    def __post_init__(self):
        self.validate()

    @property
    def sphere_threshold(self) -> float:
        if self.sphere_r_squared_distance_threshold is None:
            return self.r_squared_distance_threshold
        return self.sphere_r_squared_distance_threshold

    def validate(self):
        if not self.voxel_size > 0:
            raise ConfigurationError(f"voxel_size must be > 0, got {self.voxel_size}")
        if self.downsample_method not in DOWNSAMPLE_METHODS:
            raise ConfigurationError(f"Unknown downsample_method: {self.downsample_method}")
        if self.normal_k < 3:
            raise ConfigurationError(f"normal_k must be >= 3, got {self.normal_k}")
        if self.normal_radius is not None and not self.normal_radius > 0:
            raise ConfigurationError(f"normal_radius must be > 0, got {self.normal_radius}")
        if not 3 <= self.min_neighbors <= self.normal_k:
            raise ConfigurationError(
                f"min_neighbors must lie in [3, normal_k={self.normal_k}], got {self.min_neighbors}")
        if len(self.viewpoint) != 3:
            raise ConfigurationError("viewpoint must have three components")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")
        if not 0 < self.smoothness_threshold <= 180:
            raise ConfigurationError(
                f"smoothness_threshold must lie in (0, 180] degrees, got {self.smoothness_threshold}")
        if self.curvature_threshold is not None and not self.curvature_threshold > 0:
            raise ConfigurationError(f"curvature_threshold must be > 0, got {self.curvature_threshold}")
        if self.min_cluster_size < 1:
            raise ConfigurationError(f"min_cluster_size must be >= 1, got {self.min_cluster_size}")
        if self.max_cluster_size < self.min_cluster_size:
            raise ConfigurationError("max_cluster_size must be >= min_cluster_size")
        if self.cloud_size_threshold < 1:
            raise ConfigurationError(f"cloud_size_threshold must be >= 1, got {self.cloud_size_threshold}")
        if not 0 < self.rank_tolerance < 1:
            raise ConfigurationError(f"rank_tolerance must lie in (0, 1), got {self.rank_tolerance}")
        if not self.max_condition_number > 1:
            raise ConfigurationError(f"max_condition_number must be > 1, got {self.max_condition_number}")
        if not 0 < self.sphere_residual_ratio <= 1:
            raise ConfigurationError(
                f"sphere_residual_ratio must lie in (0, 1], got {self.sphere_residual_ratio}")
        if not self.r_squared_distance_threshold > 0:
            raise ConfigurationError(
                f"r_squared_distance_threshold must be > 0, got {self.r_squared_distance_threshold}")
        if self.sphere_r_squared_distance_threshold is not None and not self.sphere_r_squared_distance_threshold > 0:
            raise ConfigurationError(
                f"sphere_r_squared_distance_threshold must be > 0, got {self.sphere_r_squared_distance_threshold}")
        if self.depth_range is not None:
            near, far = self.depth_range
            if not near < far:
                raise ConfigurationError(f"depth_range must satisfy near < far, got {self.depth_range}")
        if self.confidence_threshold is not None and self.confidence_threshold < 0:
            raise ConfigurationError(f"confidence_threshold must be >= 0, got {self.confidence_threshold}")

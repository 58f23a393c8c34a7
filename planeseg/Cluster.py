import logging
from typing import List, Optional

import matplotlib.pyplot as plt
import numpy as np
import open3d as o3d

from planeseg.PointCloud import DepthPointCloud


class Cluster:
    def __init__(self, cluster_id, indices, full_indices=None, mean_normal=None):
        self.cluster_id = cluster_id
        self.indices = np.sort(np.asarray(indices, dtype=np.int64))  # into the set the region was grown on
        # into the full-resolution cloud; identical to indices when grown at full resolution
        self.full_indices = self.indices if full_indices is None else np.sort(
            np.asarray(full_indices, dtype=np.int64))
        self.mean_normal = None if mean_normal is None else np.asarray(mean_normal, dtype=np.float64)

    def __repr__(self):
        return f"Cluster(id={self.cluster_id}, points={self.number}, pixels={self.full_number})"

    @property
    def number(self):
        return int(self.indices.size)

    @property
    def full_number(self):
        return int(self.full_indices.size)

    def qualifies(self, cloud_size_threshold: int) -> bool:
        # inclusive: a cluster exactly at the threshold qualifies
        return self.full_number >= cloud_size_threshold


class Clusters:
    def __init__(self, clusters: Optional[List[Cluster]] = None):
        self.clusters = []
        for clu in clusters or []:
            self.append(clu)

    def __len__(self):
        return len(self.clusters)

    def __iter__(self):
        return iter(self.clusters)

    def __getitem__(self, item):
        return self.clusters[item]

    def __repr__(self):
        return f"Clusters(number={self.number}, sizes={[clu.number for clu in self.clusters]})"

    @property
    def number(self):
        return len(self.clusters)

    def append(self, cluster: Cluster):
        self.clusters.append(cluster)

    def rank(self):
        '''
        sort by member count (descending), ties by smallest member index, then renumber
        '''
        self.clusters.sort(key=lambda clu: (-clu.number, int(clu.indices[0]) if clu.number else -1))
        self.update_index()
        return self

    def update_index(self):
        for i, clu in enumerate(self.clusters):
            clu.cluster_id = i

    def lift(self, voxel_grid):
        '''
        map every cluster grown on the voxel grid back to full-resolution point indices
        '''
        for clu in self.clusters:
            clu.full_indices = voxel_grid.members(clu.indices)
        return self

    def select(self, cloud_size_threshold: int) -> Optional[Cluster]:
        '''
        :return: the highest ranked cluster with at least cloud_size_threshold full-resolution members
        '''
        for clu in self.clusters:
            if clu.qualifies(cloud_size_threshold):
                return clu
            logging.debug(f"{clu} rejected: {clu.full_number} < cloud_size_threshold={cloud_size_threshold}")
        return None

    def labels(self, n_points: int, full=True) -> np.ndarray:
        '''
        :return: per-point cluster id, -1 for unassigned points
        '''
        labels = np.full(n_points, -1, dtype=np.int64)
        for clu in self.clusters:
            labels[clu.full_indices if full else clu.indices] = clu.cluster_id
        return labels

    def colored_cloud(self, cloud: DepthPointCloud) -> o3d.geometry.PointCloud:
        '''
        full-resolution cloud painted by cluster id; unassigned points are black
        '''
        labels = self.labels(cloud.number)
        max_label = labels.max() if labels.size else -1
        colors = plt.get_cmap("tab20")(labels / (max_label if max_label > 0 else 1))
        colors[labels < 0] = 0
        return cloud.as_open3d(colors[:, :3])

"""Unit tests for seeded region growing"""

import unittest

import numpy as np

from planeseg.Normals import NormalField, SpatialIndex, estimate_normals
from planeseg.RegionGrowing import region_growing, seed_order


def _two_separated_planes():
    # 10x10 grid on z = 0 and 6x6 grid on x = 100, unit spacing
    a = np.array([[x, y, 0.0] for x in range(10) for y in range(10)], dtype=np.float64)
    b = np.array([[100.0, y, z] for y in range(6) for z in range(6)], dtype=np.float64)
    return np.vstack([a, b])


def _line_field(curvature):
    points = np.array([[0.0, 0, 0], [1.0, 0, 0], [2.5, 0, 0], [4.5, 0, 0]])
    normals = np.tile([0.0, 0.0, 1.0], (4, 1))
    field = NormalField(normals, np.asarray(curvature, dtype=np.float64), np.ones(4, dtype=bool))
    return SpatialIndex(points, k=3), field


class TestSeedOrder(unittest.TestCase):
    def test_00_ascending_curvature_skips_invalid(self):
        field = NormalField(np.zeros((4, 3)), np.array([0.3, np.nan, 0.1, 0.1]),
                            np.array([True, False, True, True]))
        np.testing.assert_array_equal(seed_order(field), [2, 3, 0])


class TestRegionGrowing(unittest.TestCase):
    def setUp(self):
        self.points = _two_separated_planes()
        self.index = SpatialIndex(self.points, k=8)
        self.field = estimate_normals(self.points, self.index, viewpoint=(50.0, 50.0, 50.0))

    def test_00_two_planes_two_ranked_clusters(self):
        clusters = region_growing(self.index, self.field)
        self.assertEqual(clusters.number, 2)
        self.assertEqual([clu.cluster_id for clu in clusters], [0, 1])
        np.testing.assert_array_equal(clusters[0].indices, np.arange(100))
        np.testing.assert_array_equal(clusters[1].indices, np.arange(100, 136))
        np.testing.assert_allclose(np.abs(clusters[0].mean_normal), [0.0, 0.0, 1.0], atol=1e-9)

    def test_01_small_regions_are_dropped(self):
        clusters = region_growing(self.index, self.field, min_cluster_size=50)
        self.assertEqual(clusters.number, 1)
        self.assertEqual(clusters[0].number, 100)

    def test_02_max_cluster_size_caps_regions(self):
        clusters = region_growing(self.index, self.field, min_cluster_size=1, max_cluster_size=30)
        self.assertTrue(all(clu.number <= 30 for clu in clusters))
        self.assertEqual(clusters[0].number, 30)
        # regions never overlap
        labels = clusters.labels(self.points.shape[0], full=False)
        self.assertEqual(int((labels >= 0).sum()), sum(clu.number for clu in clusters))

    def test_03_deterministic(self):
        first = region_growing(self.index, self.field)
        second = region_growing(self.index, self.field)
        self.assertEqual(first.number, second.number)
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.indices, b.indices)

    def test_04_high_curvature_points_join_but_do_not_expand(self):
        index, field = _line_field([0.0, 0.0, 0.5, 0.0])
        clusters = region_growing(index, field, min_cluster_size=1, curvature_threshold=0.2)
        self.assertEqual(clusters.number, 2)
        np.testing.assert_array_equal(clusters[0].indices, [0, 1, 2])
        np.testing.assert_array_equal(clusters[1].indices, [3])

        clusters = region_growing(index, field, min_cluster_size=1, curvature_threshold=None)
        self.assertEqual(clusters.number, 1)
        np.testing.assert_array_equal(clusters[0].indices, [0, 1, 2, 3])

    def test_05_smoothness_rejects_bent_neighbours(self):
        index, field = _line_field([0.0, 0.0, 0.0, 0.0])
        field.normals[3] = [0.0, 1.0, 0.0]
        clusters = region_growing(index, field, min_cluster_size=1, smoothness_threshold=8.0)
        np.testing.assert_array_equal(clusters[0].indices, [0, 1, 2])
        np.testing.assert_array_equal(clusters[1].indices, [3])

    def test_06_no_valid_normals(self):
        field = NormalField(np.full((4, 3), np.nan), np.full(4, np.nan), np.zeros(4, dtype=bool))
        index, _ = _line_field([0.0] * 4)
        self.assertEqual(region_growing(index, field).number, 0)


if __name__ == '__main__':
    unittest.main(verbosity=2)

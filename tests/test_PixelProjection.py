"""Unit tests for pixel back-projection and the regression overlay"""

import unittest

import numpy as np

from planeseg import PixelProjection
from planeseg.SurfaceFit import PlaneEquation, SphereEquation
from tests import pixel_set, plane_x5_map


class TestComputeIndices(unittest.TestCase):
    def setUp(self):
        # x = 5 plane with a few pixels pushed off it by known amounts
        self.xyz = plane_x5_map(H=6, W=6)
        self.xyz[1, 1, 0] += 0.01  # d^2 = 1e-4
        self.xyz[2, 4, 0] -= 0.1  # d^2 = 1e-2
        self.xyz[5, 5, 0] += 1.0  # d^2 = 1
        self.valid = np.ones((6, 6), dtype=bool)
        self.plane = PlaneEquation(1.0, 0.0, 0.0, -5.0)

    def test_00_row_major_members(self):
        indices = PixelProjection.compute_plane_indices(self.xyz, self.valid, self.plane, 0.0005)
        self.assertEqual(indices.shape, (34, 2))
        self.assertEqual(indices.dtype, np.int64)
        self.assertEqual([tuple(p) for p in indices], sorted(tuple(p) for p in indices))
        self.assertNotIn((2, 4), pixel_set(indices))
        self.assertIn((1, 1), pixel_set(indices))

    def test_01_threshold_is_strict(self):
        xyz = self.xyz.copy()
        xyz[0, 0, 0] = 5.5  # d^2 = 0.25
        members = pixel_set(PixelProjection.compute_indices(xyz, self.valid, self.plane, 0.25))
        self.assertNotIn((0, 0), members)
        members = pixel_set(PixelProjection.compute_indices(xyz, self.valid, self.plane, 0.2500001))
        self.assertIn((0, 0), members)

    def test_02_monotone_in_threshold(self):
        previous = set()
        for threshold in (1e-6, 5e-4, 0.05, 2.0):
            members = pixel_set(PixelProjection.compute_indices(self.xyz, self.valid, self.plane, threshold))
            self.assertTrue(previous <= members)
            previous = members
        self.assertEqual(len(previous), 36)

    def test_03_invalid_pixels_excluded(self):
        valid = self.valid.copy()
        valid[0, :] = False
        members = pixel_set(PixelProjection.compute_indices(self.xyz, valid, self.plane, 2.0))
        self.assertEqual(len(members), 30)
        self.assertFalse(any(r == 0 for r, _ in members))

    def test_04_no_equation(self):
        indices = PixelProjection.compute_indices(self.xyz, self.valid, None, 1.0)
        self.assertEqual(indices.shape, (0, 2))
        indices = PixelProjection.compute_indices(self.xyz, np.zeros((6, 6), dtype=bool), self.plane, 1.0)
        self.assertEqual(indices.shape, (0, 2))

    def test_05_mask(self):
        indices = np.array([[0, 1], [3, 2]])
        mask = PixelProjection.indices_to_mask(indices, (4, 4))
        self.assertEqual(int(mask.sum()), 2)
        self.assertTrue(mask[0, 1] and mask[3, 2])
        self.assertFalse(PixelProjection.indices_to_mask(PixelProjection.empty_indices(), (4, 4)).any())

    def test_06_sphere_members(self):
        sphere = SphereEquation(0.0, 0.0, 0.0, 5.0)
        xyz = np.array([[[3.0, 4.0, 0.0], [0.0, 0.0, 5.001]],
                        [[0.0, 0.0, 6.0], [0.0, 0.0, 0.0]]])
        valid = np.array([[True, True], [True, False]])
        indices = PixelProjection.compute_sphere_indices(xyz, valid, sphere, 0.0005)
        self.assertEqual(pixel_set(indices), {(0, 0), (0, 1)})


class TestRegressionOverlay(unittest.TestCase):
    def test_00_overlay_matches_membership(self):
        xyz = plane_x5_map(H=8, W=8)
        xyz[4, 4, 0] += 1.0
        valid = np.ones((8, 8), dtype=bool)
        valid[0, 0] = False
        plane = PlaneEquation(1.0, 0.0, 0.0, -5.0)
        indices = PixelProjection.compute_plane_indices(xyz, valid, plane, 0.0005)
        image, count = PixelProjection.draw_plane_regression_points(xyz, valid, plane, 0.0005)
        self.assertEqual(image.shape, (8, 8, 3))
        self.assertEqual(image.dtype, np.uint8)
        self.assertEqual(count, len(indices))
        painted = np.all(image == PixelProjection.PLANE_COLOR, axis=2)
        self.assertEqual(pixel_set(np.argwhere(painted)), pixel_set(indices))
        # drawing never changes the index set
        np.testing.assert_array_equal(
            PixelProjection.compute_plane_indices(xyz, valid, plane, 0.0005), indices)

    def test_01_shade_depth_keeps_invalid_black(self):
        xyz = plane_x5_map(H=4, W=4)
        valid = np.ones((4, 4), dtype=bool)
        valid[1, 2] = False
        image = PixelProjection.shade_depth(xyz, valid)
        np.testing.assert_array_equal(image[1, 2], [0, 0, 0])
        # z grows with the row, so the last row is the brightest
        self.assertGreater(int(image[3, 0, 0]), int(image[0, 0, 0]))


if __name__ == '__main__':
    unittest.main(verbosity=2)

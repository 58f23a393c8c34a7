"""Synthetic xyzMaps shared by the unit tests."""

import numpy as np

from planeseg.Utils import setup_logger

# Set to True for detailed output
verbose = False
setup_logger(verbose)


def plane_x5_map(H=40, W=40, spacing=2.0, z0=400.0):
    """Every pixel lies on x = 5; y follows the column, z the row."""
    xyz = np.zeros((H, W, 3), dtype=np.float64)
    rows, cols = np.mgrid[0:H, 0:W]
    xyz[:, :, 0] = 5.0
    xyz[:, :, 1] = (cols - W / 2) * spacing
    xyz[:, :, 2] = z0 + rows * spacing
    return xyz


def noisy_plane_x5_map(H=40, W=40, spacing=2.0, sigma=0.05, seed=0):
    xyz = plane_x5_map(H, W, spacing)
    rng = np.random.default_rng(seed)
    xyz[:, :, 0] += rng.normal(scale=sigma, size=(H, W))
    return xyz


def two_plane_map(H=40, spacing=2.0):
    """
    Left 40 columns: the plane z = 400 (1600 px).
    Right 20 columns: the plane x = 60, well apart from the first one (800 px).
    """
    W_a, W_b = 40, 20
    xyz = np.zeros((H, W_a + W_b, 3), dtype=np.float64)
    rows, cols = np.mgrid[0:H, 0:W_a]
    xyz[:, :W_a, 0] = (cols - W_a) * spacing
    xyz[:, :W_a, 1] = rows * spacing
    xyz[:, :W_a, 2] = 400.0
    rows, cols = np.mgrid[0:H, 0:W_b]
    xyz[:, W_a:, 0] = 60.0
    xyz[:, W_a:, 1] = rows * spacing
    xyz[:, W_a:, 2] = 402.0 + cols * spacing
    return xyz


def sphere_cap_map(center=(0.0, 0.0, 500.0), radius=100.0, half_width=60.0, step=3.0):
    """Depth image of the near side of a sphere seen from the origin along +z."""
    cx, cy, cz = center
    xs = np.arange(-half_width, half_width + 1e-9, step)
    X, Y = np.meshgrid(xs + cx, xs + cy, indexing='xy')
    r2 = radius ** 2 - (X - cx) ** 2 - (Y - cy) ** 2
    xyz = np.zeros(X.shape + (3,), dtype=np.float64)
    inside = r2 > 0
    xyz[inside, 0] = X[inside]
    xyz[inside, 1] = Y[inside]
    xyz[inside, 2] = cz - np.sqrt(r2[inside])
    return xyz


def hemisphere_points(center=(0.0, 0.0, 500.0), radius=100.0, n_theta=20, n_phi=40):
    """Points on the half of the sphere facing the origin (z <= cz)."""
    theta = np.linspace(np.pi / 2, np.pi, n_theta)  # polar angle from +z
    phi = np.linspace(0.0, 2 * np.pi, n_phi, endpoint=False)
    T, P = np.meshgrid(theta, phi, indexing='ij')
    pts = np.column_stack([
        radius * np.sin(T).ravel() * np.cos(P).ravel(),
        radius * np.sin(T).ravel() * np.sin(P).ravel(),
        radius * np.cos(T).ravel(),
    ])
    pts = np.unique(np.round(pts, 12), axis=0)
    return pts + np.asarray(center, dtype=np.float64)


def normalized_plane(coeffs):
    """Scale (a, b, c, d) to unit normal with a positive first non-zero component."""
    v = np.asarray(coeffs, dtype=np.float64)
    v = v / np.linalg.norm(v[:3])
    lead = v[:3][np.flatnonzero(np.abs(v[:3]) > 1e-9)[0]]
    return v if lead > 0 else -v


def pixel_set(indices):
    return {(int(r), int(c)) for r, c in indices}

"""
Least-squares plane and sphere regression on the points of one cluster.

Both fits raise InsufficientData when there are too few distinct points and
IllConditionedFit when the geometry cannot pin the model down; neither ever
returns a NaN-filled equation.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from planeseg.Errors import IllConditionedFit, InsufficientData


@dataclass(frozen=True)
class PlaneEquation:
    """a*x + b*y + c*z + d = 0 with ||(a, b, c)|| = 1."""
    a: float
    b: float
    c: float
    d: float

    @property
    def normal(self) -> np.ndarray:
        return np.array([self.a, self.b, self.c], dtype=np.float64)

    def as_list(self) -> List[float]:
        return [self.a, self.b, self.c, self.d]

    def signed_distance(self, points: np.ndarray) -> np.ndarray:
        n = self.normal
        return (np.asarray(points, dtype=np.float64) @ n + self.d) / np.linalg.norm(n)

    def squared_distance(self, points: np.ndarray) -> np.ndarray:
        n = self.normal
        residual = np.asarray(points, dtype=np.float64) @ n + self.d
        return residual * residual / float(n @ n)


@dataclass(frozen=True)
class SphereEquation:
    cx: float
    cy: float
    cz: float
    r: float

    @property
    def center(self) -> np.ndarray:
        return np.array([self.cx, self.cy, self.cz], dtype=np.float64)

    def as_list(self) -> List[float]:
        return [self.cx, self.cy, self.cz, self.r]

    def squared_distance(self, points: np.ndarray) -> np.ndarray:
        dist = np.linalg.norm(np.asarray(points, dtype=np.float64) - self.center, axis=1)
        return (dist - self.r) ** 2


def _distinct_count(points: np.ndarray) -> int:
    return np.unique(points, axis=0).shape[0] if points.shape[0] else 0


def fit_plane_lse(points: np.ndarray, rank_tolerance: float = 1e-10,
                  viewpoint: Sequence[float] = (0.0, 0.0, 0.0)) -> PlaneEquation:
    """Fit plane Ax+By+Cz+D=0 minimising orthogonal residuals.

    The smallest-eigenvalue eigenvector of the centred covariance is the normal,
    oriented so that the viewpoint lies on the positive side.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if points.shape[0] < 3:
        raise InsufficientData(f"Plane fit: {points.shape[0]} points, need at least 3")
    if _distinct_count(points) < 3:
        raise InsufficientData("Plane fit: fewer than 3 distinct points")

    centroid = points.mean(axis=0)
    X = points - centroid
    cov = X.T @ X / float(points.shape[0])
    w, V = np.linalg.eigh(cov)
    # collinear: only one direction carries any spread
    if w[2] <= 0 or w[1] <= rank_tolerance * w[2]:
        raise IllConditionedFit(f"Plane fit: points are collinear (eigenvalues {w.tolist()})")

    n = V[:, 0]
    n = n / np.linalg.norm(n)
    D = -float(n @ centroid)
    if float(n @ np.asarray(viewpoint, dtype=np.float64)) + D < 0:
        n, D = -n, -D
    if not np.all(np.isfinite(n)) or not np.isfinite(D):
        raise IllConditionedFit("Plane fit: non-finite coefficients")
    return PlaneEquation(float(n[0]), float(n[1]), float(n[2]), D)


def fit_sphere_lse(points: np.ndarray, max_condition_number: float = 1e8,
                   max_residual_ratio: float = 0.5) -> SphereEquation:
    """Algebraic sphere fit.

    Solves x^2+y^2+z^2 = 2cx*x + 2cy*y + 2cz*z + (r^2 - cx^2 - cy^2 - cz^2) as a
    4-unknown linear least-squares problem. Coordinates are centred and scaled to
    unit RMS radius first so the condition number reflects geometry, not units.

    Nearly flat patches are rejected: the RMS distance to the sphere must be below
    `max_residual_ratio` times the RMS distance to the best plane.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if points.shape[0] < 4:
        raise InsufficientData(f"Sphere fit: {points.shape[0]} points, need at least 4")
    if _distinct_count(points) < 4:
        raise InsufficientData("Sphere fit: fewer than 4 distinct points")

    c0 = points.mean(axis=0)
    Q = points - c0
    scale = float(np.sqrt(np.mean(np.einsum('ij,ij->i', Q, Q))))
    if not scale > 0:
        raise InsufficientData("Sphere fit: all points coincide")
    Q = Q / scale

    A = np.column_stack([2.0 * Q, np.ones(Q.shape[0])])
    b = np.einsum('ij,ij->i', Q, Q)
    sol, _, rank, sv = np.linalg.lstsq(A, b, rcond=None)
    if rank < 4:
        raise IllConditionedFit(f"Sphere fit: rank-deficient system (rank {rank})")
    cond = float(sv[0] / sv[-1])
    if not np.isfinite(cond) or cond > max_condition_number:
        raise IllConditionedFit(f"Sphere fit: condition number {cond:.3g} > {max_condition_number:.3g}")

    center_q = sol[:3]
    r2 = float(sol[3] + center_q @ center_q)
    if not np.isfinite(r2) or r2 <= 0:
        raise IllConditionedFit(f"Sphere fit: invalid squared radius {r2}")

    center = c0 + scale * center_q
    r = scale * np.sqrt(r2)
    if not np.all(np.isfinite(center)) or not np.isfinite(r):
        raise IllConditionedFit("Sphere fit: non-finite coefficients")

    sphere_rms = float(np.sqrt(np.mean((np.linalg.norm(points - center, axis=1) - r) ** 2)))
    # smallest covariance eigenvalue = mean squared distance to the best plane
    plane_rms = float(np.sqrt(max(np.linalg.eigvalsh(Q.T @ Q / float(Q.shape[0]))[0], 0.0))) * scale
    if not sphere_rms < max_residual_ratio * plane_rms:
        raise IllConditionedFit(f"Sphere fit: residual {sphere_rms:.3g} not clearly below plane residual "
                                f"{plane_rms:.3g}, points are too flat for a sphere")
    return SphereEquation(float(center[0]), float(center[1]), float(center[2]), float(r))

"""Shadow-ray tests with Möller-Trumbore intersection.

Tests rays cast from a fixed test point toward the sun against the
triangles of a shade layer mesh. The inner-loop functions are compiled
with Numba ``@njit(cache=True)``; the batched kernel runs in parallel
over ray directions (one direction per timestamp).

Design Notes
------------
- **Brute force**: every triangle of a mesh is tested. Layer meshes are
  small hand-built scenes (a few thousand triangles), so a hierarchy
  costs more to build than it saves for a single test point.
- **No back-face culling**: a ray striking either face of a triangle
  is a hit.
- **Precision**: float64 throughout; ε = 1e-7 for the determinant and
  the near-origin tests.

References
----------
- Möller, T. & Trumbore, B. (1997). "Fast, Minimum Storage Ray-Triangle
  Intersection." J. Graphics Tools, 2(1), 21-28.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numba import njit, prange

from shade_core.mesh import Mesh

logger = logging.getLogger(__name__)

# ===================================================================
# Constants
# ===================================================================

DEFAULT_EPSILON: float = 1e-7


# ===================================================================
# RAY
# ===================================================================


@dataclass(frozen=True)
class Ray:
    """A half-line R(t) = origin + t * direction, t > 0.

    Attributes
    ----------
    origin : np.ndarray
        Ray origin [x, y, z] (east, north, up). Shape: (3,).
    direction : np.ndarray
        Unit direction vector. Shape: (3,). Must be normalized by the
        caller; it is never normalized here.
    """

    origin: np.ndarray
    direction: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "origin", np.asarray(self.origin, dtype=np.float64))
        object.__setattr__(self, "direction", np.asarray(self.direction, dtype=np.float64))
        if self.origin.shape != (3,) or self.direction.shape != (3,):
            raise ValueError(
                f"Ray origin and direction must have shape (3,), got "
                f"{self.origin.shape} and {self.direction.shape}"
            )

    def along(self, t: float) -> np.ndarray:
        """Point at parametric distance ``t`` along the ray."""
        return self.origin + t * self.direction


# ===================================================================
# MÖLLER-TRUMBORE RAY-TRIANGLE INTERSECTION (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def moller_trumbore(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    epsilon: float,
) -> float:
    """Möller-Trumbore ray-triangle intersection test.

    Tests if a ray R(t) = origin + t * dir intersects the triangle
    defined by vertices v0, v1, v2. Returns the parametric distance t
    if hit, or -1.0 if miss.

    Parameters
    ----------
    ray_origin : np.ndarray
        Ray origin point [x, y, z]. Shape: (3,).
    ray_dir : np.ndarray
        Ray direction vector [dx, dy, dz]. Shape: (3,).
    v0, v1, v2 : np.ndarray
        Triangle vertex positions. Shape: (3,) each.
    epsilon : float
        Zero-test tolerance for the determinant and for t.

    Returns
    -------
    float
        Parametric distance t >= epsilon if hit, -1.0 if no intersection.

    Notes
    -----
    ``fastmath=False`` keeps the floating-point evaluation order intact
    so the epsilon comparisons behave identically on every platform.
    """
    # Edge vectors
    e1_x = v1[0] - v0[0]
    e1_y = v1[1] - v0[1]
    e1_z = v1[2] - v0[2]

    e2_x = v2[0] - v0[0]
    e2_y = v2[1] - v0[1]
    e2_z = v2[2] - v0[2]

    # P = ray_dir × e2
    p_x = ray_dir[1] * e2_z - ray_dir[2] * e2_y
    p_y = ray_dir[2] * e2_x - ray_dir[0] * e2_z
    p_z = ray_dir[0] * e2_y - ray_dir[1] * e2_x

    # Determinant = e1 · P. Negative is the back face, which still counts.
    det = e1_x * p_x + e1_y * p_y + e1_z * p_z

    # Ray parallel to the triangle plane, or degenerate triangle
    if det > -epsilon and det < epsilon:
        return -1.0

    inv_det = 1.0 / det

    # T = ray_origin - v0
    t_x = ray_origin[0] - v0[0]
    t_y = ray_origin[1] - v0[1]
    t_z = ray_origin[2] - v0[2]

    # u = (T · P) * inv_det, first barycentric coordinate
    u = (t_x * p_x + t_y * p_y + t_z * p_z) * inv_det

    if u < 0.0 or u > 1.0:
        return -1.0

    # Q = T × e1
    q_x = t_y * e1_z - t_z * e1_y
    q_y = t_z * e1_x - t_x * e1_z
    q_z = t_x * e1_y - t_y * e1_x

    # v = (ray_dir · Q) * inv_det, second barycentric coordinate
    v = (ray_dir[0] * q_x + ray_dir[1] * q_y + ray_dir[2] * q_z) * inv_det

    if v < 0.0 or u + v > 1.0:
        return -1.0

    # t = (e2 · Q) * inv_det, parametric distance along ray
    t_dist = (e2_x * q_x + e2_y * q_y + e2_z * q_z) * inv_det

    # Line intersection behind (or at) the origin is not a ray intersection
    if t_dist < epsilon:
        return -1.0

    return t_dist


@njit(cache=True, fastmath=False)
def _nearest_hit(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    tri_verts: np.ndarray,
    epsilon: float,
) -> float:
    """Distance to the nearest triangle hit, or -1.0 if nothing is hit.

    Parameters
    ----------
    ray_origin, ray_dir : np.ndarray
        Ray origin and unit direction. Shape: (3,).
    tri_verts : np.ndarray
        Triangle vertices. Shape: (num_triangles, 3, 3).
    epsilon : float
        Intersection epsilon.
    """
    nearest = -1.0
    for i in range(tri_verts.shape[0]):
        t_hit = moller_trumbore(
            ray_origin, ray_dir, tri_verts[i, 0], tri_verts[i, 1], tri_verts[i, 2], epsilon
        )
        if t_hit < 0.0:
            continue
        if nearest < 0.0 or t_hit < nearest:
            nearest = t_hit
    return nearest


@njit(cache=True, fastmath=False)
def _any_hit(
    ray_origin: np.ndarray,
    ray_dir: np.ndarray,
    tri_verts: np.ndarray,
    epsilon: float,
) -> bool:
    """Test if a shadow ray hits ANY triangle.

    Returns True on the FIRST hit (early exit) since occlusion is binary.
    """
    for i in range(tri_verts.shape[0]):
        t_hit = moller_trumbore(
            ray_origin, ray_dir, tri_verts[i, 0], tri_verts[i, 1], tri_verts[i, 2], epsilon
        )
        if t_hit >= 0.0:
            return True
    return False


@njit(cache=True, parallel=True, fastmath=False)
def compute_ray_hits(
    ray_origin: np.ndarray,
    ray_dirs: np.ndarray,
    tri_verts: np.ndarray,
    epsilon: float,
) -> np.ndarray:
    """Compute a binary occlusion flag for each of a batch of shadow rays.

    All rays share one origin (the test point); each direction points
    toward the sun at one timestamp. Iterations are independent and the
    mesh is read-only, so the loop runs with ``prange``.

    Parameters
    ----------
    ray_origin : np.ndarray
        Common ray origin. Shape: (3,).
    ray_dirs : np.ndarray
        Unit directions toward the sun. Shape: (num_rays, 3).
    tri_verts : np.ndarray
        Triangle vertices. Shape: (num_triangles, 3, 3).
    epsilon : float
        Intersection epsilon.

    Returns
    -------
    hits : np.ndarray
        True where the ray is occluded by the mesh. Shape: (num_rays,).
    """
    num_rays = ray_dirs.shape[0]
    hits = np.zeros(num_rays, dtype=np.bool_)

    for i in prange(num_rays):
        hits[i] = _any_hit(ray_origin, ray_dirs[i], tri_verts, epsilon)

    return hits


# ===================================================================
# HIGH-LEVEL API
# ===================================================================


def triangle_vertices(mesh: Mesh) -> np.ndarray:
    """Pre-extract all triangle vertex positions of a mesh.

    Parameters
    ----------
    mesh : Mesh
        Indexed mesh.

    Returns
    -------
    tri_verts : np.ndarray
        Contiguous vertex positions. Shape: (num_triangles, 3, 3),
        dtype: float64.
    """
    num_triangles = mesh.triangles.shape[0]
    tri_verts = np.empty((num_triangles, 3, 3), dtype=np.float64)
    for k in range(3):
        tri_verts[:, k, :] = mesh.vertices[mesh.triangles[:, k]]
    return tri_verts


def intersect_triangle(
    ray: Ray,
    triangle: np.ndarray,
    epsilon: float = DEFAULT_EPSILON,
) -> tuple[float, bool]:
    """Intersect a ray with a single triangle.

    Parameters
    ----------
    ray : Ray
        The ray (unit direction).
    triangle : array-like
        The three vertices. Shape: (3, 3).
    epsilon : float
        Intersection epsilon.

    Returns
    -------
    distance : float
        Distance along the ray to the hit, 0.0 on a miss.
    hit : bool
        Whether the ray strikes the triangle (either face).
    """
    tri = np.asarray(triangle, dtype=np.float64)
    if tri.shape != (3, 3):
        raise ValueError(f"Triangle must have shape (3, 3), got {tri.shape}")

    t_hit = moller_trumbore(ray.origin, ray.direction, tri[0], tri[1], tri[2], epsilon)
    if t_hit < 0.0:
        return 0.0, False
    return float(t_hit), True


def intersect_mesh(
    ray: Ray,
    mesh: Mesh,
    epsilon: float = DEFAULT_EPSILON,
) -> tuple[float, bool]:
    """Intersect a ray with every triangle of a mesh.

    Returns
    -------
    distance : float
        Distance to the nearest hit, 0.0 on a miss.
    hit : bool
        True if any triangle is hit. A mesh with no triangles never is.
    """
    nearest = _nearest_hit(ray.origin, ray.direction, triangle_vertices(mesh), epsilon)
    if nearest < 0.0:
        return 0.0, False
    return float(nearest), True


def occludes(ray: Ray, mesh: Mesh, epsilon: float = DEFAULT_EPSILON) -> bool:
    """Return True if the mesh blocks the ray."""
    return bool(_any_hit(ray.origin, ray.direction, triangle_vertices(mesh), epsilon))

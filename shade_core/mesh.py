"""Indexed triangle meshes for shade layers.

A shade layer mesh arrives from the mesh loader as a triangle soup (three
unshared vertices per triangle). Welding turns it into indexed geometry:
a list of unique vertices and, per triangle, three indices into it.

Notes
-----
Two vertices are merged iff their coordinates are bit-for-bit equal.
No tolerance is applied: exporters write shared corners with identical
bits, and a tolerance would silently merge distinct geometry.

Coordinates are in the model frame::

    Z/up
    |  Y/north
    | /
    |/____ X/east
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Mesh:
    """Immutable indexed triangle mesh.

    Attributes
    ----------
    vertices : np.ndarray
        Unique vertex positions. Shape: (num_vertices, 3), dtype: float64.
        Columns are (x, y, z) = (east, north, up).
    triangles : np.ndarray
        Triangle vertex indices. Shape: (num_triangles, 3), dtype: int64.
        Indices are trusted to be valid.
    """

    vertices: np.ndarray
    triangles: np.ndarray

    def __post_init__(self) -> None:
        vertices = np.array(self.vertices, dtype=np.float64)
        triangles = np.array(self.triangles, dtype=np.int64)

        # Allow empty inputs such as [] for an empty layer
        if vertices.size == 0:
            vertices = vertices.reshape(0, 3)
        if triangles.size == 0:
            triangles = triangles.reshape(0, 3)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise ValueError(f"Mesh vertices must have shape (N, 3), got {vertices.shape}")
        if triangles.ndim != 2 or triangles.shape[1] != 3:
            raise ValueError(f"Mesh triangles must have shape (M, 3), got {triangles.shape}")

        vertices.flags.writeable = False
        triangles.flags.writeable = False
        object.__setattr__(self, "vertices", vertices)
        object.__setattr__(self, "triangles", triangles)

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def num_triangles(self) -> int:
        return int(self.triangles.shape[0])

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """Axis-aligned bounding box (min corner, max corner).

        Raises
        ------
        ValueError
            If the mesh has no vertices.
        """
        if self.num_vertices == 0:
            raise ValueError("Empty mesh has no bounds.")
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mesh):
            return NotImplemented
        return (
            np.array_equal(self.vertices, other.vertices)
            and np.array_equal(self.triangles, other.triangles)
        )

    __hash__ = None  # type: ignore[assignment]


def weld_triangles(soup: np.ndarray) -> Mesh:
    """Build an indexed mesh from a triangle soup by vertex welding.

    Parameters
    ----------
    soup : array-like
        Unwelded triangles, 9 floats each. Shape: (num_triangles, 9) or
        (num_triangles, 3, 3).

    Returns
    -------
    Mesh
        Mesh whose vertices appear in order of first use and whose
        triangles index into them.

    Raises
    ------
    ValueError
        If the soup cannot be viewed as triangles of 3D vertices.
    """
    flat = np.ascontiguousarray(soup, dtype=np.float64)
    if flat.size % 9 != 0:
        raise ValueError(
            f"Triangle soup must hold 9 floats per triangle, got {flat.size} values"
        )
    num_triangles = flat.size // 9
    corners = flat.reshape(num_triangles * 3, 3)

    if num_triangles == 0:
        return Mesh(
            vertices=np.empty((0, 3), dtype=np.float64),
            triangles=np.empty((0, 3), dtype=np.int64),
        )

    # View each corner as an opaque 24-byte record so equality is bitwise
    keys = corners.view(np.dtype((np.void, corners.dtype.itemsize * 3))).ravel()
    _, first_index, inverse = np.unique(keys, return_index=True, return_inverse=True)
    inverse = inverse.reshape(-1)

    # np.unique sorts by byte pattern; renumber by order of first appearance
    order = np.argsort(first_index, kind="stable")
    rank = np.empty_like(order)
    rank[order] = np.arange(order.shape[0])

    vertices = corners[first_index[order]]
    triangles = rank[inverse].reshape(num_triangles, 3)

    logger.debug(
        "Welded %d triangles: %d corners → %d unique vertices",
        num_triangles,
        corners.shape[0],
        vertices.shape[0],
    )

    return Mesh(vertices=vertices, triangles=triangles)

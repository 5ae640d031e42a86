"""Shade layers and their transmissivity models.

A shade layer binds an occluding mesh to a transmissivity function
τ(t) ∈ [0, 1], the fraction of direct sunlight passing through the layer
at time t, and to a building/foliage classification.

- **Buildings** are opaque: τ ≡ 0.
- **Foliage** follows the leaf cycle of deciduous trees. Foliated and
  defoliated crowns transmit ~5 % and ~50 % of direct radiation
  (Konarska et al., 2014). The meteorological seasons set the
  transitions::

      τ
      0.50 ──────┐                         ┌──────
                  ╲                       ╱
                   ╲                     ╱
      0.05          └─────────────────┘
          Jan  Feb 28   May 31    Aug 31   Nov 30  Dec
               (59)     (151)     (243)    (334)

References
----------
- Konarska, J. et al. (2014). "Transmissivity of solar radiation through
  crowns of single urban trees—application for outdoor thermal comfort
  modelling." Theor. Appl. Climatol., 117, 363-376.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable

import numpy as np

from shade_core.mesh import Mesh
from shade_core.raytracer import triangle_vertices

logger = logging.getLogger(__name__)

Transmissivity = Callable[[datetime], float]


def opaque_transmissivity(t: datetime) -> float:
    """Transmissivity of a building: nothing passes, at any time."""
    return 0.0


@dataclass(frozen=True)
class FoliageTransmissivity:
    """Seasonal piecewise-linear transmissivity of a deciduous canopy.

    Day-of-year boundaries assume a non-leap year. The model is tuned for
    mid-latitudes in the northern hemisphere.

    Attributes
    ----------
    defoliated : float
        Transmissivity with bare branches (winter), in [0, 1).
    foliated : float
        Transmissivity in full leaf (summer), in [0, 1).
    leaf_out_start : int
        Last day of winter; leaf-out runs from the following day.
    full_leaf : int
        Last day of the spring transition.
    leaf_fall_start : int
        Last day of summer; leaf fall runs from the following day.
    bare : int
        Last day of the autumn transition.
    """

    defoliated: float = 0.5
    foliated: float = 0.05
    leaf_out_start: int = 59
    full_leaf: int = 151
    leaf_fall_start: int = 243
    bare: int = 334

    def __post_init__(self) -> None:
        if not (0 < self.leaf_out_start < self.full_leaf < self.leaf_fall_start < self.bare <= 366):
            raise ValueError(
                "Foliage season boundaries must be strictly increasing days of year, got "
                f"{self.leaf_out_start}, {self.full_leaf}, {self.leaf_fall_start}, {self.bare}"
            )
        for name in ("defoliated", "foliated"):
            value = getattr(self, name)
            # Foliage-shadowed implies light < 1
            if not (0.0 <= value < 1.0):
                raise ValueError(f"{name} transmissivity must be in [0, 1), got {value}")

    def at_day(self, day: int) -> float:
        """Transmissivity on a given day of year (1-based)."""
        if day <= self.leaf_out_start:
            return self.defoliated
        if day <= self.full_leaf:
            frac = (day - self.leaf_out_start) / (self.full_leaf - self.leaf_out_start)
            return self.defoliated + frac * (self.foliated - self.defoliated)
        if day <= self.leaf_fall_start:
            return self.foliated
        if day <= self.bare:
            frac = (day - self.leaf_fall_start) / (self.bare - self.leaf_fall_start)
            return self.foliated + frac * (self.defoliated - self.foliated)
        return self.defoliated

    def __call__(self, t: date) -> float:
        return self.at_day(t.timetuple().tm_yday)


@dataclass(frozen=True, eq=False)
class ShadeLayer:
    """An occluding mesh with its transmissivity and classification.

    Attributes
    ----------
    mesh : Mesh
        Occluding geometry (shared, read-only).
    transmissivity : Callable[[datetime], float]
        τ(t) ∈ [0, 1].
    foliage : bool
        True for vegetation, False for opaque buildings.
    tri_verts : np.ndarray
        Pre-extracted triangle vertices for the ray kernel.
        Shape: (num_triangles, 3, 3).
    """

    mesh: Mesh
    transmissivity: Transmissivity
    foliage: bool = False
    tri_verts: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tri_verts", triangle_vertices(self.mesh))

    @property
    def kind(self) -> str:
        return "foliage" if self.foliage else "building"

    def transmissivities(self, timestamps: list[datetime]) -> np.ndarray:
        """Evaluate τ at each timestamp."""
        return np.fromiter(
            (self.transmissivity(t) for t in timestamps),
            dtype=np.float64,
            count=len(timestamps),
        )

    def fingerprint(self) -> tuple:
        """Content description of the layer, used to key cached results.

        Dataclass transmissivity models are described by their fields;
        module-level functions by their qualified name. Lambdas and closures
        cannot be described and raise ``TypeError`` when keyed.
        """
        return (self.mesh, self.foliage, self.transmissivity)

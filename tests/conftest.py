"""Pytest configuration and shared fixtures for SunShade tests."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shade_core.mesh import Mesh, weld_triangles  # noqa: E402
from solar.ephemeris import Ephemeris  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


class FixedEphemeris(Ephemeris):
    """Deterministic ephemeris returning the same sun position for every time.

    Counts calls so tests can tell cache hits from recomputation.
    """

    def __init__(self, altitude: float = 45.0, azimuth: float = 180.0) -> None:
        self.altitude = altitude
        self.azimuth = azimuth
        self.calls = 0
        self.name = f"fixed:{altitude}:{azimuth}"

    def _positions_utc(
        self,
        times_utc: list[datetime],
        lat_deg: float,
        lon_deg: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        self.calls += 1
        n = len(times_utc)
        return np.full(n, self.altitude), np.full(n, self.azimuth)


def square_soup(center: tuple[float, float, float], half: float, normal_axis: int) -> np.ndarray:
    """Two triangles forming an axis-aligned square. Shape: (2, 3, 3)."""
    c = np.asarray(center, dtype=np.float64)
    a, b = [i for i in range(3) if i != normal_axis]

    def corner(da: float, db: float) -> np.ndarray:
        p = c.copy()
        p[a] += da
        p[b] += db
        return p

    p00, p10 = corner(-half, -half), corner(half, -half)
    p11, p01 = corner(half, half), corner(-half, half)
    return np.array([[p00, p10, p11], [p00, p11, p01]], dtype=np.float64)


@pytest.fixture
def fixed_ephemeris() -> FixedEphemeris:
    """Sun due south at 45° altitude."""
    return FixedEphemeris(altitude=45.0, azimuth=180.0)


@pytest.fixture
def south_wall() -> Mesh:
    """A 20 x 20 wall facing north, 5 units south of the origin.

    Blocks a ray from the origin toward a southern sun at 45°, which
    crosses y = -5 at z = 5, away from the diagonal between its triangles.
    """
    return weld_triangles(square_soup((3.0, -5.0, 4.0), 10.0, normal_axis=1))


@pytest.fixture
def north_wall() -> Mesh:
    """A wall north of the origin, never in the way of a southern sun."""
    return weld_triangles(square_soup((0.0, 5.0, 5.0), 10.0, normal_axis=1))


@pytest.fixture
def summer_times() -> list[datetime]:
    """Hourly timestamps on a day in full leaf (day 180)."""
    return [datetime(2021, 6, 29, h) for h in range(24)]


@pytest.fixture
def winter_times() -> list[datetime]:
    """Hourly timestamps on a bare-branch day (day 15)."""
    return [datetime(2021, 1, 15, h) for h in range(24)]

"""Solar ephemeris for a fixed site on Earth.

Computes the Sun's horizontal (altitude/azimuth) position for a site at
any set of timestamps, and converts positions into unit direction
vectors and shadow rays in the model frame.

Two interchangeable backends implement the same contract
``positions(timestamps, lat, lon) → (altitude°, azimuth°)``:

- :class:`PvlibEphemeris` — NREL Solar Position Algorithm through
  ``pvlib.solarposition``. Analytic, offline, vectorized. Default.
- :class:`SkyfieldEphemeris` — JPL DE421 (or DE440) kernel through
  Skyfield, including light-time, aberration, and deflection.

References
----------
- Reda, I. & Andreas, A. (2004). "Solar position algorithm for solar
  radiation applications." Solar Energy, 76(5), 577-589.
- Folkner, W.M. et al. (2014). "The Planetary and Lunar Ephemerides
  DE430 and DE431." IPN Progress Report 42-196.

Notes
-----
Conventions:

- altitude: degrees above the horizon, 90 = zenith, negative = below.
- azimuth: degrees clockwise from true north, in [0, 360).
- Frame: x = east, y = north, z = up.
- Naive datetimes are interpreted as UTC.

Altitudes are geometric (no atmospheric refraction).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pandas as pd
import pvlib

from shade_core.raytracer import Ray

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DEFAULT_DATA_DIR = Path("data")
_DEFAULT_KERNEL = "de421.bsp"


# ---------------------------------------------------------------------------
# Sun position
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SunPosition:
    """Horizontal position of the Sun at one instant.

    Attributes
    ----------
    timestamp : datetime
        Observation time.
    altitude : float
        Altitude above the horizon [deg], in [-90, 90].
    azimuth : float
        Azimuth clockwise from north [deg], in [0, 360).
    """

    timestamp: datetime
    altitude: float
    azimuth: float

    @property
    def above_horizon(self) -> bool:
        return self.altitude >= 0.0

    @property
    def direction(self) -> np.ndarray:
        """Unit vector toward the sun (east, north, up). Shape: (3,)."""
        return sun_direction(np.array([self.altitude]), np.array([self.azimuth]))[0]

    def ray(self, origin: Sequence[float] | np.ndarray) -> Ray:
        """Shadow ray from ``origin`` toward the sun."""
        return ray_toward_sun(self, origin)


def sun_direction(altitude_deg: np.ndarray, azimuth_deg: np.ndarray) -> np.ndarray:
    """Convert horizontal sun positions to unit vectors in the model frame.

    Parameters
    ----------
    altitude_deg : np.ndarray
        Altitudes [deg]. Shape: (N,).
    azimuth_deg : np.ndarray
        Azimuths clockwise from north [deg]. Shape: (N,).

    Returns
    -------
    directions : np.ndarray
        Unit vectors (sin(az)·cos(al), cos(az)·cos(al), sin(al)).
        Shape: (N, 3).
    """
    al = np.radians(np.asarray(altitude_deg, dtype=np.float64))
    az = np.radians(np.asarray(azimuth_deg, dtype=np.float64))

    directions = np.empty((al.shape[0], 3), dtype=np.float64)
    directions[:, 0] = np.sin(az) * np.cos(al)
    directions[:, 1] = np.cos(az) * np.cos(al)
    directions[:, 2] = np.sin(al)

    # Normalize for safety
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)
    return directions


def ray_toward_sun(position: SunPosition, origin: Sequence[float] | np.ndarray) -> Ray:
    """Build the shadow ray from a test point toward the sun.

    Parameters
    ----------
    position : SunPosition
        Sun position at the instant of interest.
    origin : array-like
        Test point (east, north, up). Shape: (3,).

    Returns
    -------
    Ray
        Ray with a unit direction toward the sun.
    """
    return Ray(origin=np.asarray(origin, dtype=np.float64), direction=position.direction)


def as_utc(t: datetime) -> datetime:
    """Return ``t`` as an aware UTC datetime; naive input is taken as UTC."""
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Ephemeris backends
# ---------------------------------------------------------------------------


class Ephemeris(ABC):
    """Pluggable source of sun positions for a site.

    Subclasses implement :meth:`_positions_utc`; timezone handling and
    the empty-input case are handled here.
    """

    #: Identifier of the backend, part of the result cache key.
    name: str = "ephemeris"

    @abstractmethod
    def _positions_utc(
        self,
        times_utc: list[datetime],
        lat_deg: float,
        lon_deg: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Altitudes and azimuths [deg] for non-empty aware UTC times."""

    def positions(
        self,
        timestamps: Sequence[datetime],
        lat_deg: float,
        lon_deg: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Compute sun altitude and azimuth for every timestamp.

        Parameters
        ----------
        timestamps : sequence of datetime
            Observation times.
        lat_deg, lon_deg : float
            Site location [deg], north and east positive.

        Returns
        -------
        altitude : np.ndarray
            Altitudes [deg]. Shape: (N,).
        azimuth : np.ndarray
            Azimuths clockwise from north [deg], in [0, 360). Shape: (N,).
        """
        if len(timestamps) == 0:
            return np.empty(0, dtype=np.float64), np.empty(0, dtype=np.float64)

        times_utc = [as_utc(t) for t in timestamps]
        altitude, azimuth = self._positions_utc(times_utc, lat_deg, lon_deg)

        altitude = np.asarray(altitude, dtype=np.float64)
        azimuth = np.mod(np.asarray(azimuth, dtype=np.float64), 360.0)
        return altitude, azimuth

    def sun_position(self, t: datetime, lat_deg: float, lon_deg: float) -> SunPosition:
        """Sun position at a single instant."""
        altitude, azimuth = self.positions([t], lat_deg, lon_deg)
        return SunPosition(t, float(altitude[0]), float(azimuth[0]))

    def sun_positions(
        self,
        timestamps: Sequence[datetime],
        lat_deg: float,
        lon_deg: float,
    ) -> list[SunPosition]:
        """Sun positions for a sequence of instants, in input order."""
        altitude, azimuth = self.positions(timestamps, lat_deg, lon_deg)
        return [
            SunPosition(t, float(al), float(az))
            for t, al, az in zip(timestamps, altitude, azimuth)
        ]


class PvlibEphemeris(Ephemeris):
    """NREL SPA sun positions via pvlib.

    Parameters
    ----------
    method : str
        ``pvlib.solarposition.get_solarposition`` method
        (default: 'nrel_numpy').
    """

    def __init__(self, method: str = "nrel_numpy") -> None:
        self._method = method
        self.name = f"pvlib:{method}"

    def _positions_utc(
        self,
        times_utc: list[datetime],
        lat_deg: float,
        lon_deg: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        index = pd.DatetimeIndex(times_utc)
        solpos = pvlib.solarposition.get_solarposition(
            index, lat_deg, lon_deg, method=self._method
        )
        return solpos["elevation"].to_numpy(), solpos["azimuth"].to_numpy()


class SkyfieldEphemeris(Ephemeris):
    """High-precision sun positions from a JPL kernel via Skyfield.

    The class lazily loads the JPL kernel file and caches it for
    subsequent calls.

    Parameters
    ----------
    kernel_name : str
        JPL ephemeris kernel filename (default: 'de421.bsp').
    data_dir : Path or str
        Directory for storing downloaded kernel files.
    """

    def __init__(
        self,
        kernel_name: str = _DEFAULT_KERNEL,
        data_dir: Path | str = _DEFAULT_DATA_DIR,
    ) -> None:
        self._kernel_name = kernel_name
        self._data_dir = Path(data_dir)
        self.name = f"skyfield:{kernel_name}"

        # Lazily loaded
        self._ephemeris: Any = None
        self._timescale: Any = None
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def _ensure_loaded(self) -> None:
        """Load ephemeris kernel, downloading if necessary."""
        if self._loaded:
            return

        from skyfield.api import Loader

        self._data_dir.mkdir(parents=True, exist_ok=True)
        loader = Loader(str(self._data_dir), verbose=False)
        kernel_path = self._data_dir / self._kernel_name

        if kernel_path.exists():
            logger.info("Loading ephemeris kernel from: %s", kernel_path)
        else:
            logger.info(
                "Ephemeris kernel not found at %s. Downloading %s...",
                kernel_path,
                self._kernel_name,
            )

        try:
            self._ephemeris = loader(self._kernel_name)
        except Exception as e:
            raise FileNotFoundError(
                f"Failed to load or download JPL kernel '{self._kernel_name}' "
                f"to '{self._data_dir}'. Check your internet connection.\n"
                f"You can manually download it from:\n"
                f"  https://naif.jpl.nasa.gov/pub/naif/generic_kernels/spk/planets/{self._kernel_name}\n"
                f"and place it in '{self._data_dir}'."
            ) from e

        self._timescale = loader.timescale()
        self._loaded = True

        logger.info("Ephemeris loaded: %s", self._kernel_name)

    def _positions_utc(
        self,
        times_utc: list[datetime],
        lat_deg: float,
        lon_deg: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        from skyfield.api import wgs84

        self._ensure_loaded()

        t = self._timescale.from_datetimes(times_utc)
        observer = self._ephemeris["earth"] + wgs84.latlon(lat_deg, lon_deg)
        alt, az, _ = observer.at(t).observe(self._ephemeris["sun"]).apparent().altaz()
        return np.atleast_1d(alt.degrees), np.atleast_1d(az.degrees)


def create_ephemeris(backend: str = "pvlib", kernel: str = _DEFAULT_KERNEL,
                     data_dir: Path | str = _DEFAULT_DATA_DIR) -> Ephemeris:
    """Create an ephemeris backend by name.

    Raises
    ------
    ValueError
        If ``backend`` is not 'pvlib' or 'skyfield'.
    """
    if backend == "pvlib":
        return PvlibEphemeris()
    if backend == "skyfield":
        return SkyfieldEphemeris(kernel_name=kernel, data_dir=data_dir)
    raise ValueError(f"Unknown ephemeris backend: {backend!r}")

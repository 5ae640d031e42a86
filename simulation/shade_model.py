"""Shade model — sunlight reaching a test point through occluding layers.

For every timestamp the model:
1. Computes the sun position for the site (ephemeris).
2. Skips timestamps with the sun below the horizon (light = 0).
3. Casts a ray from the test point toward the sun.
4. Tests the ray against every shade layer; each layer hit multiplies
   the direct-beam multiplier by the layer's transmissivity at that time.
5. Flags samples shadowed by foliage alone.

Results are memoized in a content-addressed :class:`ResultCache`; a
year at one-minute resolution is ~525,600 ray batches per layer.

Notes
-----
Layer aggregation is commutative (multiplication and OR), so the order
in which layers are added changes neither results nor the cache key.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Sequence

import numpy as np

from shade_core.config import ShadeConfig
from shade_core.insolation import global_intensity, global_intensity_array
from shade_core.layers import FoliageTransmissivity, ShadeLayer, Transmissivity, opaque_transmissivity
from shade_core.mesh import Mesh
from shade_core.raytracer import DEFAULT_EPSILON, compute_ray_hits
from simulation.cache import CACHE_SCHEMA_VERSION, CacheKey, ResultCache, make_cache_key
from solar.ephemeris import Ephemeris, PvlibEphemeris, SunPosition, create_ephemeris, sun_direction

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 65536
DEFAULT_INCREMENT = timedelta(minutes=1)


class SimulationCancelled(Exception):
    """Raised when a query is cancelled through its ``cancel_event``."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SunLight:
    """Sunlight reaching the test point at one instant.

    Attributes
    ----------
    position : SunPosition
        Sun position at the sample time.
    light : float
        Direct-beam multiplier in [0, 1]; 0 with the sun below the horizon.
    foliage : bool
        True when the point is shadowed by foliage and by no building.
    """

    position: SunPosition
    light: float
    foliage: bool

    def global_intensity(self, elevation_feet: float = 0.0) -> float:
        """Global intensity at the test point [W/m²]."""
        return global_intensity(self.position.altitude, self.light, elevation_feet)


@dataclass
class IntensityOverTime:
    """A year (or any span) of sunlight samples at a fixed increment.

    Attributes
    ----------
    samples : list[SunLight]
        Samples in timestamp order.
    elevation_feet : float
        Site elevation used for the intensity [ft].
    increment : timedelta
        Spacing between samples.
    """

    samples: list[SunLight]
    elevation_feet: float
    increment: timedelta = timedelta(minutes=1)

    def altitudes(self) -> np.ndarray:
        return np.array([s.position.altitude for s in self.samples], dtype=np.float64)

    def lights(self) -> np.ndarray:
        return np.array([s.light for s in self.samples], dtype=np.float64)

    def intensities(self) -> np.ndarray:
        """Global intensity for every sample [W/m²]. Shape: (N,)."""
        return global_intensity_array(self.altitudes(), self.lights(), self.elevation_feet)

    def daily_energy(self) -> dict[date, float]:
        """Insolation per calendar date [kWh/m²].

        Each sample contributes its intensity held constant over one
        increment. Dates come from the timestamps' own calendar.
        """
        hours = self.increment / timedelta(hours=1)
        energy: dict[date, float] = {}
        for sample, intensity in zip(self.samples, self.intensities()):
            day = sample.position.timestamp.date()
            energy[day] = energy.get(day, 0.0) + float(intensity) * hours / 1000.0
        return energy

    def sun_hours(self) -> float:
        """Hours of direct sun, weighted by the direct-beam multiplier."""
        hours = self.increment / timedelta(hours=1)
        return float(self.lights().sum() * hours)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def year_timestamps(
    year: int,
    increment: timedelta = timedelta(minutes=1),
    tz: tzinfo | None = None,
) -> list[datetime]:
    """Every instant of a calendar year at a fixed increment.

    Steps are taken in absolute time, so a daylight-saving change neither
    repeats nor skips samples.

    Parameters
    ----------
    year : int
        Calendar year in ``tz``.
    increment : timedelta
        Spacing between instants (must be positive).
    tz : tzinfo, optional
        Time zone of the calendar year and of the returned datetimes.
        Default: UTC.

    Returns
    -------
    list[datetime]
        Aware datetimes from Jan 1 00:00 up to, excluding, Jan 1 of the
        following year.
    """
    if increment <= timedelta(0):
        raise ValueError(f"Timestamp increment must be positive, got {increment}")
    if tz is None:
        tz = timezone.utc

    start = datetime(year, 1, 1, tzinfo=tz).astimezone(timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=tz).astimezone(timezone.utc)
    count = -(-(end - start) // increment)
    return [(start + i * increment).astimezone(tz) for i in range(count)]


# ---------------------------------------------------------------------------
# Shade model
# ---------------------------------------------------------------------------


class ShadeModel:
    """Occluding layers at a site and the sunlight they let through.

    Parameters
    ----------
    latitude, longitude : float
        Site location [deg], north and east positive.
    elevation_feet : float
        Site elevation above sea level [ft].
    ephemeris : Ephemeris, optional
        Sun position backend. Default: :class:`PvlibEphemeris`.
    cache : ResultCache, optional
        Result cache. Default: a disabled cache (always recompute).
    epsilon : float
        Ray-triangle intersection epsilon.
    chunk_size : int
        Timestamps per ray batch; cancellation is checked between batches.
    foliage_model : FoliageTransmissivity, optional
        Transmissivity used by :meth:`add_foliage` when none is given.
    test_point : array-like, optional
        Default test point for :meth:`intensity_over_year`.
    increment : timedelta
        Default sample spacing for :meth:`intensity_over_year`.
    """

    def __init__(
        self,
        latitude: float,
        longitude: float,
        elevation_feet: float = 0.0,
        *,
        ephemeris: Ephemeris | None = None,
        cache: ResultCache | None = None,
        epsilon: float = DEFAULT_EPSILON,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        foliage_model: FoliageTransmissivity | None = None,
        test_point: Sequence[float] | np.ndarray | None = None,
        increment: timedelta = DEFAULT_INCREMENT,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if increment <= timedelta(0):
            raise ValueError(f"increment must be positive, got {increment}")
        self.latitude = float(latitude)
        self.longitude = float(longitude)
        self.elevation_feet = float(elevation_feet)
        self._ephemeris = ephemeris if ephemeris is not None else PvlibEphemeris()
        self._cache = cache if cache is not None else ResultCache(enabled=False)
        self._epsilon = float(epsilon)
        self._chunk_size = int(chunk_size)
        self._foliage_model = foliage_model if foliage_model is not None else FoliageTransmissivity()
        self.test_point = _as_point(test_point) if test_point is not None else None
        self.increment = increment

        self._layers: list[ShadeLayer] = []
        self._sealed = False
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ShadeConfig, cache: ResultCache | None = None) -> ShadeModel:
        """Build a model for the configured site, ephemeris, and cache."""
        ephemeris = create_ephemeris(
            config.ephemeris.backend,
            kernel=config.ephemeris.kernel,
            data_dir=config.ephemeris.data_dir,
        )
        if cache is None:
            cache = ResultCache(config.cache.directory, enabled=config.cache.enabled)
        return cls(
            config.site.latitude_deg,
            config.site.longitude_deg,
            config.site.elevation_feet,
            ephemeris=ephemeris,
            cache=cache,
            epsilon=config.raytracer.epsilon,
            chunk_size=config.run.chunk_size,
            foliage_model=config.foliage.build(),
            test_point=config.site.test_point,
            increment=timedelta(minutes=config.run.increment_minutes),
        )

    # ----- layers -----

    @property
    def layers(self) -> tuple[ShadeLayer, ...]:
        return tuple(self._layers)

    @property
    def ephemeris(self) -> Ephemeris:
        return self._ephemeris

    @property
    def sealed(self) -> bool:
        """True once a query has run; no more layers may be added."""
        return self._sealed

    def add_layer(self, mesh: Mesh, transmissivity: Transmissivity, foliage: bool = False) -> ShadeLayer:
        """Add an occluding layer.

        A foliage layer's transmissivity should stay below 1, so that a
        foliage-shadowed sample always has light < 1. Transmissivities
        keyed into the result cache must be module-level functions or
        dataclasses.

        Raises
        ------
        RuntimeError
            If the model has already been queried.
        """
        with self._lock:
            if self._sealed:
                raise RuntimeError("Cannot add layers to a shade model after it has been queried")
            layer = ShadeLayer(mesh=mesh, transmissivity=transmissivity, foliage=foliage)
            self._layers.append(layer)

        logger.info(
            "Added %s layer: %d vertices, %d triangles",
            layer.kind,
            mesh.num_vertices,
            mesh.num_triangles,
        )
        return layer

    def add_buildings(self, mesh: Mesh) -> ShadeLayer:
        """Add an opaque building layer."""
        return self.add_layer(mesh, opaque_transmissivity, foliage=False)

    def add_foliage(self, mesh: Mesh, transmissivity: Transmissivity | None = None) -> ShadeLayer:
        """Add a foliage layer (seasonal transmissivity by default)."""
        if transmissivity is None:
            transmissivity = self._foliage_model
        return self.add_layer(mesh, transmissivity, foliage=True)

    # ----- queries -----

    def cache_key(self, test_point: Sequence[float] | np.ndarray, timestamps: Sequence[datetime]) -> CacheKey:
        """Key identifying a query's result for this model."""
        point = _as_point(test_point)
        layer_digests = sorted(make_cache_key(*layer.fingerprint()).digest for layer in self._layers)
        return make_cache_key(
            CACHE_SCHEMA_VERSION,
            layer_digests,
            self.latitude,
            self.longitude,
            point,
            list(timestamps),
            self._ephemeris.name,
            self._epsilon,
        )

    def query(
        self,
        test_point: Sequence[float] | np.ndarray,
        timestamps: Sequence[datetime],
        cancel_event: threading.Event | None = None,
    ) -> list[SunLight]:
        """Sunlight at ``test_point`` for each timestamp, in input order.

        The result cache is consulted first; on a miss the result is
        computed and saved. The first call seals the model.

        Raises
        ------
        SimulationCancelled
            If ``cancel_event`` is set before the computation finishes.
        """
        point = _as_point(test_point)
        timestamps = list(timestamps)
        with self._lock:
            self._sealed = True

        # Keys are only derived when caching; transmissivities that cannot be
        # keyed (closures, lambdas) still work with a disabled cache
        key = self.cache_key(point, timestamps) if self._cache.enabled else None
        cached, found = self._cache.load(key) if key is not None else (None, False)
        if found:
            logger.info("Cache hit for %d timestamps (%s)", len(timestamps), key.digest[:12])
            return _to_sun_lights(timestamps, *cached)

        logger.info(
            "Computing sunlight: %d timestamps, %d layers, test point (%.2f, %.2f, %.2f)",
            len(timestamps),
            len(self._layers),
            point[0],
            point[1],
            point[2],
        )
        wall_start = time.perf_counter()
        arrays = self._compute(point, timestamps, cancel_event)
        logger.info("Sunlight computed in %.2f s", time.perf_counter() - wall_start)

        if key is not None:
            self._cache.save(key, arrays)
        return _to_sun_lights(timestamps, *arrays)

    def compute_sun_light(
        self,
        test_point: Sequence[float] | np.ndarray,
        timestamps: Sequence[datetime],
        cancel_event: threading.Event | None = None,
    ) -> list[SunLight]:
        """Uncached sunlight computation; see :meth:`query`."""
        timestamps = list(timestamps)
        arrays = self._compute(_as_point(test_point), timestamps, cancel_event)
        return _to_sun_lights(timestamps, *arrays)

    def intensity_over_year(
        self,
        year: int,
        test_point: Sequence[float] | np.ndarray | None = None,
        increment: timedelta | None = None,
        tz: tzinfo | None = None,
        cancel_event: threading.Event | None = None,
    ) -> IntensityOverTime:
        """Query a whole calendar year at ``increment`` spacing.

        ``test_point`` and ``increment`` default to the model's own.
        """
        if test_point is None:
            if self.test_point is None:
                raise ValueError("No test point given and the model has no default test point")
            test_point = self.test_point
        if increment is None:
            increment = self.increment
        timestamps = year_timestamps(year, increment, tz)
        samples = self.query(test_point, timestamps, cancel_event)
        return IntensityOverTime(samples=samples, elevation_feet=self.elevation_feet, increment=increment)

    def _compute(
        self,
        point: np.ndarray,
        timestamps: list[datetime],
        cancel_event: threading.Event | None,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Per-timestamp altitude, azimuth, light, and foliage-only flag arrays."""
        n = len(timestamps)
        altitude, azimuth = self._ephemeris.positions(timestamps, self.latitude, self.longitude)

        light = np.zeros(n, dtype=np.float64)
        foliage = np.zeros(n, dtype=np.bool_)
        building = np.zeros(n, dtype=np.bool_)

        # Below the horizon: no light and no ray tests
        up = np.flatnonzero(altitude >= 0.0)
        light[up] = 1.0
        directions = sun_direction(altitude[up], azimuth[up])
        logger.debug("%d of %d timestamps have the sun above the horizon", up.size, n)

        for start in range(0, up.size, self._chunk_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Sunlight computation cancelled at %d of %d timestamps", start, up.size)
                raise SimulationCancelled(f"Cancelled after {start} of {up.size} timestamps")

            idx = up[start:start + self._chunk_size]
            dirs = np.ascontiguousarray(directions[start:start + self._chunk_size])

            for layer in self._layers:
                if layer.mesh.num_triangles == 0:
                    continue
                hits = compute_ray_hits(point, dirs, layer.tri_verts, self._epsilon)
                hit_idx = idx[hits]
                if hit_idx.size == 0:
                    continue

                lit = hit_idx[light[hit_idx] != 0.0]
                if lit.size:
                    light[lit] *= layer.transmissivities([timestamps[i] for i in lit])

                if layer.foliage:
                    foliage[hit_idx] = True
                else:
                    building[hit_idx] = True

        foliage &= ~building
        return altitude, azimuth, light, foliage


def _as_point(test_point: Sequence[float] | np.ndarray) -> np.ndarray:
    point = np.asarray(test_point, dtype=np.float64)
    if point.shape != (3,):
        raise ValueError(f"Test point must have shape (3,), got {point.shape}")
    return point


def _to_sun_lights(
    timestamps: list[datetime],
    altitude: np.ndarray,
    azimuth: np.ndarray,
    light: np.ndarray,
    foliage: np.ndarray,
) -> list[SunLight]:
    return [
        SunLight(SunPosition(t, float(al), float(az)), float(li), bool(fo))
        for t, al, az, li, fo in zip(timestamps, altitude, azimuth, light, foliage)
    ]

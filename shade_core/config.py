"""Site parameters, model constants, and configuration loader.

Run-time settings are loaded from YAML configuration files into typed,
frozen dataclasses. This module provides a validated interface to the
configuration plus the documented model-assumptions registry.

References
----------
- Konarska et al. (2014) for crown transmissivity
- Kasten & Young (1989) for relative air mass
- Meinel & Meinel (1976) for elevation-dependent direct irradiance
"""

from __future__ import annotations

import logging
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

from shade_core.layers import FoliageTransmissivity

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default_config.yaml"

_EPHEMERIS_BACKENDS = ("pvlib", "skyfield")

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SiteConfig:
    """Geographic location of the model origin.

    Attributes
    ----------
    latitude_deg : float
        Latitude [deg], north positive.
    longitude_deg : float
        Longitude [deg], east positive.
    elevation_feet : float
        Elevation above sea level [ft].
    test_point : tuple[float, float, float]
        Default test point in model coordinates (east, north, up).
    """

    latitude_deg: float
    longitude_deg: float
    elevation_feet: float
    test_point: tuple[float, float, float]


@dataclass(frozen=True)
class RaytracerConfig:
    """Raytracer configuration.

    Attributes
    ----------
    epsilon : float
        Zero-test epsilon for the Möller-Trumbore algorithm.
    """

    epsilon: float


@dataclass(frozen=True)
class FoliageConfig:
    """Seasonal foliage transmissivity parameters.

    Attributes
    ----------
    defoliated : float
        Winter transmissivity [-].
    foliated : float
        Summer transmissivity [-].
    leaf_out_start_day, full_leaf_day, leaf_fall_start_day, bare_day : int
        Day-of-year season boundaries (non-leap year).
    """

    defoliated: float
    foliated: float
    leaf_out_start_day: int
    full_leaf_day: int
    leaf_fall_start_day: int
    bare_day: int

    def build(self) -> FoliageTransmissivity:
        """Create the transmissivity model described by this config."""
        return FoliageTransmissivity(
            defoliated=self.defoliated,
            foliated=self.foliated,
            leaf_out_start=self.leaf_out_start_day,
            full_leaf=self.full_leaf_day,
            leaf_fall_start=self.leaf_fall_start_day,
            bare=self.bare_day,
        )


@dataclass(frozen=True)
class EphemerisConfig:
    """Solar ephemeris backend selection.

    Attributes
    ----------
    backend : str
        'pvlib' (analytic NREL SPA) or 'skyfield' (JPL kernel).
    kernel : str
        JPL kernel filename for the Skyfield backend.
    data_dir : str
        Directory where Skyfield stores downloaded kernels.
    """

    backend: str
    kernel: str
    data_dir: str


@dataclass(frozen=True)
class CacheConfig:
    """Result cache settings.

    Attributes
    ----------
    directory : str
        Cache directory. Safe to delete at any time.
    enabled : bool
        If False, every query recomputes and nothing is written.
    """

    directory: str
    enabled: bool


@dataclass(frozen=True)
class RunConfig:
    """Simulation run settings.

    Attributes
    ----------
    increment_minutes : float
        Spacing of generated timestamps [min].
    chunk_size : int
        Timestamps per ray batch; cancellation is checked between batches.
    """

    increment_minutes: float
    chunk_size: int


@dataclass(frozen=True)
class Assumption:
    """A documented model assumption.

    Attributes
    ----------
    parameter : str
        Name of the assumed parameter.
    value : str
        Assumed value (string representation).
    source : str
        Literature source or rationale.
    uncertainty : str
        Uncertainty estimate or 'N/A'.
    """

    parameter: str
    value: str
    source: str
    uncertainty: str


@dataclass
class ShadeConfig:
    """Top-level configuration loaded from YAML.

    Attributes
    ----------
    site : SiteConfig
        Model origin location.
    raytracer : RaytracerConfig
        Intersection settings.
    foliage : FoliageConfig
        Seasonal transmissivity parameters.
    ephemeris : EphemerisConfig
        Sun position backend.
    cache : CacheConfig
        Result cache settings.
    run : RunConfig
        Timestamp generation and batching.
    assumptions : list[Assumption]
        Registry of documented model assumptions.
    """

    site: SiteConfig
    raytracer: RaytracerConfig
    foliage: FoliageConfig
    ephemeris: EphemerisConfig
    cache: CacheConfig
    run: RunConfig
    assumptions: list[Assumption] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def default_config_path() -> Path:
    """Path of the configuration file shipped with the repository."""
    return _DEFAULT_CONFIG_PATH


def load_config(config_path: str | Path | None = None) -> ShadeConfig:
    """Load and validate a configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path, optional
        Path to the YAML configuration file. Default: the shipped
        ``config/default_config.yaml``.

    Returns
    -------
    ShadeConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If required configuration keys are missing or values are invalid.
    """
    config_path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f)

    logger.info("Loading configuration from: %s", config_path)

    try:
        config = _parse_config(raw)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e!r}") from e

    _validate_config(config)
    logger.info(
        "Configuration loaded successfully. %d assumptions registered.",
        len(config.assumptions),
    )

    return config


def _parse_config(raw: dict[str, Any]) -> ShadeConfig:
    """Build the typed configuration from the raw YAML mapping."""
    # --- Parse site ---
    s = raw["site"]
    point = s["test_point"]
    site = SiteConfig(
        latitude_deg=float(s["latitude_deg"]),
        longitude_deg=float(s["longitude_deg"]),
        elevation_feet=float(s["elevation_feet"]),
        test_point=(float(point[0]), float(point[1]), float(point[2])),
    )

    # --- Parse raytracer config ---
    rt = raw["raytracer"]
    raytracer = RaytracerConfig(epsilon=float(rt["epsilon"]))

    # --- Parse foliage model ---
    fol = raw["foliage"]
    seasons = fol["season_days"]
    foliage = FoliageConfig(
        defoliated=float(fol["defoliated_transmissivity"]),
        foliated=float(fol["foliated_transmissivity"]),
        leaf_out_start_day=int(seasons["leaf_out_start"]),
        full_leaf_day=int(seasons["full_leaf"]),
        leaf_fall_start_day=int(seasons["leaf_fall_start"]),
        bare_day=int(seasons["bare"]),
    )

    # --- Parse ephemeris ---
    eph = raw["ephemeris"]
    ephemeris = EphemerisConfig(
        backend=str(eph["backend"]),
        kernel=str(eph["kernel"]),
        data_dir=str(eph["data_dir"]),
    )

    # --- Parse cache ---
    c = raw["cache"]
    cache = CacheConfig(directory=str(c["directory"]), enabled=bool(c["enabled"]))

    # --- Parse run settings ---
    r = raw["run"]
    run = RunConfig(
        increment_minutes=float(r["increment_minutes"]),
        chunk_size=int(r["chunk_size"]),
    )

    return ShadeConfig(
        site=site,
        raytracer=raytracer,
        foliage=foliage,
        ephemeris=ephemeris,
        cache=cache,
        run=run,
        assumptions=_build_assumptions_registry(foliage),
    )


def _build_assumptions_registry(foliage: FoliageConfig) -> list[Assumption]:
    """Build the documented assumptions registry.

    Parameters
    ----------
    foliage : FoliageConfig
        Loaded foliage parameters.

    Returns
    -------
    list[Assumption]
        List of all documented assumptions.
    """
    return [
        Assumption(
            "Foliated Transmissivity",
            str(foliage.foliated),
            "Konarska et al., 2014",
            "±0.03",
        ),
        Assumption(
            "Defoliated Transmissivity",
            str(foliage.defoliated),
            "Konarska et al., 2014",
            "±0.1",
        ),
        Assumption(
            "Leaf Seasons",
            "Meteorological seasons",
            "Northern hemisphere, mid-latitudes",
            "±2 weeks",
        ),
        Assumption("Calendar", "Non-leap year", "Simplification", "1 day"),
        Assumption("Air Mass", "Kasten-Young", "Kasten & Young, 1989", "<0.5% above 5°"),
        Assumption("Direct Irradiance", "1353 W/m² · 0.7^(AM^0.678)", "Meinel & Meinel, 1976", "N/A"),
        Assumption("Diffuse Skylight", "10% of direct", "Simplification", "Unknown"),
        Assumption("Occlusion", "Binary per layer", "Point sun, no penumbra", "N/A"),
        Assumption("No Multi-bounce", "Excluded", "Single-bounce model", "N/A"),
    ]


def _validate_config(config: ShadeConfig) -> None:
    """Validate physical constraints on configuration values.

    Parameters
    ----------
    config : ShadeConfig
        Configuration to validate.

    Raises
    ------
    ValueError
        If any value is physically invalid.
    """
    if not (-90.0 <= config.site.latitude_deg <= 90.0):
        raise ValueError(f"Latitude must be in [-90, 90], got {config.site.latitude_deg}")
    if not (-180.0 <= config.site.longitude_deg <= 180.0):
        raise ValueError(f"Longitude must be in [-180, 180], got {config.site.longitude_deg}")
    if config.raytracer.epsilon <= 0:
        raise ValueError("Raytracer epsilon must be positive.")
    if config.ephemeris.backend not in _EPHEMERIS_BACKENDS:
        raise ValueError(
            f"Unknown ephemeris backend {config.ephemeris.backend!r}; "
            f"expected one of {_EPHEMERIS_BACKENDS}"
        )
    if config.run.increment_minutes <= 0:
        raise ValueError("Timestamp increment must be positive.")
    if config.run.chunk_size <= 0:
        raise ValueError("Chunk size must be positive.")

    # Raises ValueError on bad season boundaries or transmissivities
    config.foliage.build()

    logger.debug("Configuration validation passed.")


def log_assumptions(config: ShadeConfig) -> None:
    """Log all documented model assumptions to the logger.

    Parameters
    ----------
    config : ShadeConfig
        Configuration with populated assumptions registry.
    """
    logger.info("=" * 70)
    logger.info("MODEL ASSUMPTIONS REGISTRY")
    logger.info("=" * 70)
    for i, a in enumerate(config.assumptions, 1):
        logger.info(
            "  [%02d] %-25s = %-26s | Source: %-34s | Uncertainty: %s",
            i,
            a.parameter,
            a.value,
            a.source,
            a.uncertainty,
        )
    logger.info("=" * 70)


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  Processor: %s", platform.processor())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s (threads: %d)", numba.__version__, numba.get_num_threads())
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)

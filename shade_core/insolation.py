"""Global solar intensity (insolation) at a sun-facing point.

Converts sun altitude and the occlusion multiplier from the shade model
into irradiance [W/m²] on a plane perpendicular to the sun.

    I_global = (0.1 + light) · I_direct

where ``light`` ∈ [0, 1] scales the direct beam and the constant 0.1 is
the diffuse skylight (~10 % of direct) reaching the point whenever the
sun is above the horizon, regardless of occlusion.

References
----------
- Kasten, F. & Young, A. T. (1989). "Revised optical air mass tables and
  approximation formula." Applied Optics, 28, 4735-4738.
- Meinel, A. B. & Meinel, M. P. (1976). Applied Solar Energy.
  Addison Wesley Publishing Co.
- https://www.pveducation.org/pvcdrom/properties-of-sunlight/air-mass
"""

from __future__ import annotations

import math

import numpy as np

# Extraterrestrial direct intensity used by the Meinel model [W/m²]
SOLAR_CONSTANT_W_M2: float = 1353.0
# Elevation gain coefficient [1/km]
ELEVATION_COEFFICIENT: float = 0.14
DIFFUSE_FRACTION: float = 0.1
FEET_TO_KM: float = 0.0003048


def air_mass(zenith_deg: float) -> float:
    """Relative optical air mass (Kasten & Young, 1989).

    ~1 with the sun overhead, ~38 at the horizon. The correction term
    accounts for the curvature of the Earth near the horizon.
    """
    return 1.0 / (
        math.cos(zenith_deg * (math.pi / 180.0))
        + 0.50572 * (96.07995 - zenith_deg) ** -1.6364
    )


def global_intensity(altitude_deg: float, light: float, elevation_feet: float = 0.0) -> float:
    """Global intensity of the sun at a point [W/m²].

    Parameters
    ----------
    altitude_deg : float
        Sun altitude above the horizon [deg].
    light : float
        Direct-beam multiplier from the shade model, in [0, 1].
    elevation_feet : float
        Site elevation above sea level [ft].

    Returns
    -------
    float
        Irradiance [W/m²]; exactly 0 with the sun below the horizon.
    """
    if altitude_deg < 0:
        return 0.0

    zenith_deg = 90.0 - altitude_deg
    am = air_mass(zenith_deg)

    # Elevation is handled here, not in the air mass
    h = elevation_feet * FEET_TO_KM
    a = ELEVATION_COEFFICIENT
    i_direct = SOLAR_CONSTANT_W_M2 * ((1.0 - a * h) * 0.7 ** (am ** 0.678) + a * h)

    return (DIFFUSE_FRACTION + light) * i_direct


def global_intensity_array(
    altitudes_deg: np.ndarray,
    lights: np.ndarray,
    elevation_feet: float = 0.0,
) -> np.ndarray:
    """Vectorized :func:`global_intensity`.

    Parameters
    ----------
    altitudes_deg : np.ndarray
        Sun altitudes [deg]. Shape: (N,).
    lights : np.ndarray
        Direct-beam multipliers. Shape: (N,).
    elevation_feet : float
        Site elevation [ft].

    Returns
    -------
    np.ndarray
        Irradiance [W/m²]. Shape: (N,).
    """
    altitudes_deg = np.asarray(altitudes_deg, dtype=np.float64)
    lights = np.asarray(lights, dtype=np.float64)
    out = np.zeros(altitudes_deg.shape, dtype=np.float64)

    # Below-horizon zeniths past 96.08° have no real air mass; skip them
    up = altitudes_deg >= 0
    zenith = 90.0 - altitudes_deg[up]
    am = 1.0 / (np.cos(zenith * (np.pi / 180.0)) + 0.50572 * (96.07995 - zenith) ** -1.6364)

    h = elevation_feet * FEET_TO_KM
    a = ELEVATION_COEFFICIENT
    i_direct = SOLAR_CONSTANT_W_M2 * ((1.0 - a * h) * 0.7 ** (am ** 0.678) + a * h)

    out[up] = (DIFFUSE_FRACTION + lights[up]) * i_direct
    return out

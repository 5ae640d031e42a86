"""Tests for shade layers and the seasonal foliage model."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import numpy as np
import pytest

from shade_core.layers import FoliageTransmissivity, ShadeLayer, opaque_transmissivity
from shade_core.mesh import Mesh


class TestFoliageTransmissivity:
    """Piecewise-linear leaf cycle."""

    @pytest.fixture
    def tau(self) -> FoliageTransmissivity:
        return FoliageTransmissivity()

    @pytest.mark.parametrize(
        "day, expected",
        [
            (1, 0.5),
            (59, 0.5),
            (105, 0.275),  # midway through leaf-out
            (151, 0.05),
            (200, 0.05),
            (243, 0.05),
            (334, 0.5),
            (365, 0.5),
        ],
    )
    def test_breakpoints(self, tau: FoliageTransmissivity, day: int, expected: float) -> None:
        assert tau.at_day(day) == pytest.approx(expected)

    def test_range_and_monotonic_transitions(self, tau: FoliageTransmissivity) -> None:
        values = np.array([tau.at_day(d) for d in range(1, 366)])

        assert np.all((values >= 0.05) & (values <= 0.5))
        # Strictly decreasing during leaf-out, strictly increasing during leaf fall
        assert np.all(np.diff(values[58:151]) < 0)
        assert np.all(np.diff(values[242:334]) > 0)

    def test_called_with_datetime(self, tau: FoliageTransmissivity) -> None:
        assert tau(datetime(2021, 7, 4, 12)) == pytest.approx(0.05)
        assert tau(datetime(2021, 12, 25)) == pytest.approx(0.5)

    def test_day_from_local_calendar(self, tau: FoliageTransmissivity) -> None:
        """The same day-of-year is used for every time on a date."""
        start = datetime(2021, 4, 15)
        values = {tau(start + timedelta(hours=h)) for h in range(24)}
        assert len(values) == 1

    def test_accepts_date(self, tau: FoliageTransmissivity) -> None:
        assert tau(date(2021, 1, 1)) == 0.5

    def test_custom_values(self) -> None:
        tau = FoliageTransmissivity(defoliated=0.8, foliated=0.2)
        assert tau.at_day(10) == pytest.approx(0.8)
        assert tau.at_day(200) == pytest.approx(0.2)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"defoliated": 1.5},
            {"defoliated": 1.0},
            {"foliated": 1.0},
            {"foliated": -0.1},
            {"full_leaf": 40},
            {"bare": 400},
        ],
    )
    def test_invalid_parameters(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            FoliageTransmissivity(**kwargs)


class TestShadeLayer:
    """ShadeLayer construction and helpers."""

    @pytest.fixture
    def mesh(self) -> Mesh:
        return Mesh(vertices=[[0, 0, 1], [1, 0, 1], [0, 1, 1]], triangles=[[0, 1, 2]])

    def test_opaque_is_zero(self) -> None:
        assert opaque_transmissivity(datetime(2021, 6, 1)) == 0.0

    def test_pre_extracts_triangles(self, mesh: Mesh) -> None:
        layer = ShadeLayer(mesh=mesh, transmissivity=opaque_transmissivity)

        assert layer.tri_verts.shape == (1, 3, 3)
        assert layer.kind == "building"

    def test_transmissivities(self, mesh: Mesh) -> None:
        layer = ShadeLayer(mesh=mesh, transmissivity=FoliageTransmissivity(), foliage=True)
        times = [datetime(2021, 1, 1), datetime(2021, 7, 1)]

        np.testing.assert_allclose(layer.transmissivities(times), [0.5, 0.05])
        assert layer.kind == "foliage"

    def test_frozen(self, mesh: Mesh) -> None:
        layer = ShadeLayer(mesh=mesh, transmissivity=opaque_transmissivity)
        with pytest.raises(AttributeError):
            layer.foliage = True  # type: ignore[misc]

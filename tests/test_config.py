"""Tests for configuration loading and validation."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

from shade_core.config import (
    ShadeConfig,
    default_config_path,
    load_config,
    log_assumptions,
    log_platform_info,
)
from shade_core.layers import FoliageTransmissivity


def _write_config(tmp_path: Path, **overrides: dict) -> Path:
    """Copy the default config with section-level overrides applied."""
    with open(default_config_path(), "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    for section, values in overrides.items():
        raw[section].update(values)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(raw), encoding="utf-8")
    return path


class TestLoadConfig:
    def test_default_config(self) -> None:
        config = load_config()

        assert isinstance(config, ShadeConfig)
        assert config.site.latitude_deg == pytest.approx(42.4195011)
        assert config.site.longitude_deg == pytest.approx(-71.2064993)
        assert config.site.test_point == (96.0, 216.0, 6.0)
        assert config.raytracer.epsilon == pytest.approx(1e-7)
        assert config.ephemeris.backend == "pvlib"
        assert config.run.increment_minutes == 1.0
        assert len(config.assumptions) > 0

    def test_foliage_builds_default_model(self) -> None:
        config = load_config()
        assert config.foliage.build() == FoliageTransmissivity()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_section(self, tmp_path: Path) -> None:
        path = tmp_path / "partial.yaml"
        path.write_text("site:\n  latitude_deg: 10.0\n", encoding="utf-8")

        with pytest.raises(ValueError):
            load_config(path)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"site": {"latitude_deg": 91.0}},
            {"site": {"longitude_deg": -181.0}},
            {"raytracer": {"epsilon": 0.0}},
            {"ephemeris": {"backend": "suncalc"}},
            {"run": {"increment_minutes": 0}},
            {"run": {"chunk_size": 0}},
            {"foliage": {"foliated_transmissivity": 1.5}},
            {"foliage": {"defoliated_transmissivity": 1.0}},
        ],
    )
    def test_invalid_values(self, tmp_path: Path, overrides: dict) -> None:
        with pytest.raises(ValueError):
            load_config(_write_config(tmp_path, **overrides))

    def test_valid_override(self, tmp_path: Path) -> None:
        config = load_config(_write_config(tmp_path, ephemeris={"backend": "skyfield"}))
        assert config.ephemeris.backend == "skyfield"


class TestLogging:
    def test_log_assumptions(self, caplog: pytest.LogCaptureFixture) -> None:
        config = load_config()
        with caplog.at_level(logging.INFO, logger="shade_core.config"):
            log_assumptions(config)

        assert "MODEL ASSUMPTIONS REGISTRY" in caplog.text
        assert "Kasten & Young" in caplog.text

    def test_log_platform_info(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="shade_core.config"):
            log_platform_info()

        assert "NumPy" in caplog.text
        assert "Numba" in caplog.text

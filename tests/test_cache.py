"""Tests for the content-addressed result cache."""

from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np
import pytest

from shade_core.layers import FoliageTransmissivity, opaque_transmissivity
from shade_core.mesh import Mesh
from simulation.cache import CACHE_SCHEMA_VERSION, CacheKey, ResultCache, make_cache_key


@pytest.fixture
def mesh() -> Mesh:
    return Mesh(vertices=[[0, 0, 0], [1, 0, 0], [0, 1, 0]], triangles=[[0, 1, 2]])


@pytest.fixture
def timestamps() -> list[datetime]:
    start = datetime(2021, 5, 1)
    return [start + timedelta(minutes=i) for i in range(100)]


@pytest.fixture
def cache(tmp_path) -> ResultCache:
    return ResultCache(tmp_path / "cache")


class TestMakeCacheKey:
    """Canonical hashing of query inputs."""

    def test_deterministic(self, mesh: Mesh, timestamps: list) -> None:
        a = make_cache_key(mesh, 42.4, -71.2, timestamps)
        b = make_cache_key(mesh, 42.4, -71.2, list(timestamps))

        assert a == b
        assert len(str(a)) == 64

    def test_equal_content_equal_key(self, mesh: Mesh) -> None:
        copy = Mesh(vertices=mesh.vertices.copy(), triangles=mesh.triangles.copy())
        assert make_cache_key(mesh) == make_cache_key(copy)

    @pytest.mark.parametrize(
        "a, b",
        [
            (1, 1.0),
            (1, "1"),
            (1, [1]),
            (True, 1),
            ([1, 2], (1, 2)),
            (("ab", "c"), ("a", "bc")),
            (0.0, -0.0),
            (None, 0),
            (np.zeros(3, dtype=np.float64), np.zeros(3, dtype=np.float32)),
            (np.zeros((2, 3)), np.zeros((3, 2))),
        ],
    )
    def test_distinct_inputs_distinct_keys(self, a, b) -> None:
        assert make_cache_key(a) != make_cache_key(b)

    def test_argument_order_matters(self) -> None:
        assert make_cache_key(1.0, 2.0) != make_cache_key(2.0, 1.0)

    def test_dict_order_ignored(self) -> None:
        assert make_cache_key({"a": 1, "b": 2}) == make_cache_key({"b": 2, "a": 1})

    def test_timezone_matters(self) -> None:
        naive = datetime(2021, 1, 1, 12)
        aware = datetime.fromisoformat("2021-01-01T12:00:00+00:00")
        assert make_cache_key(naive) != make_cache_key(aware)

    def test_transmissivity_descriptors(self) -> None:
        assert make_cache_key(FoliageTransmissivity()) == make_cache_key(FoliageTransmissivity())
        assert make_cache_key(FoliageTransmissivity()) != make_cache_key(
            FoliageTransmissivity(foliated=0.1)
        )
        assert make_cache_key(opaque_transmissivity) != make_cache_key(FoliageTransmissivity())

    def test_unsupported_type_raises(self) -> None:
        with pytest.raises(TypeError):
            make_cache_key(object())
        with pytest.raises(TypeError):
            make_cache_key([1, {2, 3}])

    def test_module_level_function_is_keyed_by_name(self) -> None:
        assert make_cache_key(opaque_transmissivity) == make_cache_key(opaque_transmissivity)

    def test_lambda_raises(self) -> None:
        with pytest.raises(TypeError, match="lambda"):
            make_cache_key(lambda t: 0.3)

    def test_closures_with_different_state_raise(self) -> None:
        # Both closures share a qualname, so a name-based key would collide
        def constant(value: float):
            def transmissivity(t: datetime) -> float:
                return value

            return transmissivity

        for tau in (constant(0.3), constant(0.7)):
            with pytest.raises(TypeError):
                make_cache_key(tau)

    def test_bound_method_raises(self) -> None:
        tau = FoliageTransmissivity()
        with pytest.raises(TypeError):
            make_cache_key(tau.at_day)


class TestResultCache:
    """Load/save behavior of the on-disk store."""

    def test_round_trip(self, cache: ResultCache, mesh: Mesh, timestamps: list) -> None:
        key = make_cache_key(mesh, 42.4195011, -71.2064993, timestamps)
        value = {"light": np.linspace(0, 1, 100), "foliage": [True, False]}

        cache.save(key, value)
        loaded, found = cache.load(key)

        assert found
        np.testing.assert_array_equal(loaded["light"], value["light"])
        assert loaded["foliage"] == [True, False]

    def test_miss(self, cache: ResultCache) -> None:
        assert cache.load(make_cache_key("absent")) == (None, False)

    def test_path_layout(self, cache: ResultCache) -> None:
        key = make_cache_key("x")
        assert cache.path_for(key) == cache.directory / f"{key.digest}.pkl"

    def test_corrupt_entry_is_miss(self, cache: ResultCache) -> None:
        key = make_cache_key("corrupt")
        cache.directory.mkdir(parents=True)
        cache.path_for(key).write_bytes(b"not a pickle")

        assert cache.load(key) == (None, False)

    def test_schema_mismatch_is_miss(self, cache: ResultCache) -> None:
        key = make_cache_key("old")
        cache.directory.mkdir(parents=True)
        with open(cache.path_for(key), "wb") as f:
            pickle.dump({"schema": CACHE_SCHEMA_VERSION + 1, "value": 1}, f)

        assert cache.load(key) == (None, False)

    def test_no_temp_files_left(self, cache: ResultCache) -> None:
        cache.save(make_cache_key("a"), [1, 2, 3])
        assert [p.suffix for p in cache.directory.iterdir()] == [".pkl"]

    def test_unwritable_directory_logs_warning(self, tmp_path, caplog) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where the cache directory should be")
        cache = ResultCache(blocker / "cache")

        with caplog.at_level(logging.WARNING, logger="simulation.cache"):
            cache.save(make_cache_key("v"), 1.0)

        assert "Error saving to cache" in caplog.text
        assert cache.load(make_cache_key("v")) == (None, False)

    def test_unpicklable_value_logs_warning(self, cache: ResultCache, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="simulation.cache"):
            cache.save(make_cache_key("lambda"), lambda: None)

        assert "Error saving to cache" in caplog.text
        assert list(cache.directory.iterdir()) == []

    def test_disabled(self, tmp_path) -> None:
        cache = ResultCache(tmp_path / "off", enabled=False)
        key = make_cache_key(1)
        cache.save(key, "value")

        assert cache.load(key) == (None, False)
        assert not (tmp_path / "off").exists()

    def test_clear(self, cache: ResultCache) -> None:
        for i in range(3):
            cache.save(make_cache_key(i), i)

        assert cache.clear() == 3
        assert cache.load(make_cache_key(0)) == (None, False)

    def test_clear_missing_directory(self, tmp_path) -> None:
        assert ResultCache(tmp_path / "never").clear() == 0


@dataclass(frozen=True)
class _Point:
    x: float
    y: float


def test_dataclass_keys_use_fields() -> None:
    assert make_cache_key(_Point(1.0, 2.0)) == make_cache_key(_Point(1.0, 2.0))
    assert make_cache_key(_Point(1.0, 2.0)) != make_cache_key(_Point(2.0, 1.0))
    assert isinstance(make_cache_key(_Point(0.0, 0.0)), CacheKey)

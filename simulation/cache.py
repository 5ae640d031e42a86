"""Content-addressed result cache.

Persists expensive shade-model results (a year of per-minute occlusion
samples) so identical queries skip the ray tests on later runs.

File layout under cache_dir/:
    <sha256 hex>.pkl   pickled envelope {"schema": int, "value": Any}

The key is a SHA-256 digest of a canonical serialization of the query
inputs, so equal inputs always map to the same file. There is no
eviction and no TTL; deleting the directory only costs recomputation.

Notes
-----
The canonical encoder writes a type tag before each value so that, for
example, ``1``, ``1.0``, ``"1"`` and ``[1]`` all hash differently.
Floats are hashed by their IEEE-754 bits. Inputs of any other type are a
programming error and raise ``TypeError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import inspect
import logging
import os
import pickle
import struct
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

#: Bump when the stored payload layout changes; older entries become misses.
CACHE_SCHEMA_VERSION = 1

_SUFFIX = ".pkl"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheKey:
    """Fixed-length content-derived identifier (64 hex characters)."""

    digest: str

    def __str__(self) -> str:
        return self.digest


def make_cache_key(*args: Any) -> CacheKey:
    """Derive a cache key from an ordered list of heterogeneous inputs.

    Parameters
    ----------
    *args
        Inputs such as meshes, coordinates, and timestamp lists. Nested
        lists, tuples, dicts, and dataclasses are supported.

    Returns
    -------
    CacheKey
        SHA-256 digest of the canonical serialization.

    Raises
    ------
    TypeError
        If an argument (or anything nested in it) has no canonical form.
    """
    h = hashlib.sha256()
    for arg in args:
        _encode(h, arg)
    return CacheKey(h.hexdigest())


def _write_tag(h: Any, tag: bytes, payload: bytes = b"") -> None:
    h.update(tag)
    h.update(struct.pack("<Q", len(payload)))
    h.update(payload)


def _encode(h: Any, obj: Any) -> None:
    """Feed the canonical serialization of ``obj`` into hash ``h``."""
    # bool before int: bool is a subclass of int
    if obj is None:
        _write_tag(h, b"N")
    elif isinstance(obj, (bool, np.bool_)):
        _write_tag(h, b"B", b"\x01" if obj else b"\x00")
    elif isinstance(obj, (int, np.integer)):
        _write_tag(h, b"I", str(int(obj)).encode("ascii"))
    elif isinstance(obj, (float, np.floating)):
        _write_tag(h, b"F", struct.pack("<d", float(obj)))
    elif isinstance(obj, str):
        _write_tag(h, b"S", obj.encode("utf-8"))
    elif isinstance(obj, bytes):
        _write_tag(h, b"Y", obj)
    elif isinstance(obj, datetime):
        # isoformat carries the UTC offset of aware datetimes
        _write_tag(h, b"T", obj.isoformat().encode("ascii"))
    elif isinstance(obj, date):
        _write_tag(h, b"D", obj.isoformat().encode("ascii"))
    elif isinstance(obj, time):
        _write_tag(h, b"C", obj.isoformat().encode("ascii"))
    elif isinstance(obj, timedelta):
        _write_tag(h, b"R", str(obj // timedelta(microseconds=1)).encode("ascii"))
    elif isinstance(obj, np.ndarray):
        if obj.dtype.hasobject:
            raise TypeError("Cannot derive a cache key from an object-dtype array")
        header = f"{obj.dtype.str}|{obj.shape}".encode("ascii")
        _write_tag(h, b"A", header)
        _write_tag(h, b"a", np.ascontiguousarray(obj).tobytes())
    elif isinstance(obj, (list, tuple)):
        _write_tag(h, b"L" if isinstance(obj, list) else b"U", str(len(obj)).encode("ascii"))
        for item in obj:
            _encode(h, item)
    elif isinstance(obj, dict):
        # Entries are ordered by the digest of their key
        entries = sorted(
            ((_digest(k), v) for k, v in obj.items()), key=lambda kv: kv[0]
        )
        _write_tag(h, b"M", str(len(entries)).encode("ascii"))
        for key_digest, value in entries:
            h.update(key_digest)
            _encode(h, value)
    elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        cls = type(obj)
        _write_tag(h, b"O", f"{cls.__module__}.{cls.__qualname__}".encode("utf-8"))
        for f in dataclasses.fields(obj):
            _write_tag(h, b"f", f.name.encode("utf-8"))
            _encode(h, getattr(obj, f.name))
    elif callable(obj) and hasattr(obj, "__qualname__"):
        # Only module-level named functions are identified by their name;
        # lambdas, nested functions, closures and bound methods carry state
        # the name does not capture
        qualname = obj.__qualname__
        if (
            "<lambda>" in qualname
            or "<locals>" in qualname
            or getattr(obj, "__closure__", None)
            or inspect.ismethod(obj)
        ):
            raise TypeError(
                f"Cannot derive a cache key from {qualname!r}: use a module-level "
                "function or a dataclass instead of a lambda, closure, or bound method"
            )
        _write_tag(h, b"P", f"{obj.__module__}.{qualname}".encode("utf-8"))
    else:
        raise TypeError(f"Cannot derive a cache key from {type(obj).__name__}: {obj!r:.80}")


def _digest(obj: Any) -> bytes:
    h = hashlib.sha256()
    _encode(h, obj)
    return h.digest()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ResultCache:
    """Directory of pickled values keyed by :class:`CacheKey`.

    Parameters
    ----------
    directory : Path or str
        Cache directory (created on first save).
    enabled : bool
        If False, :meth:`load` always misses and :meth:`save` is a no-op.
    """

    def __init__(self, directory: Path | str = ".cache", enabled: bool = True) -> None:
        self._dir = Path(directory)
        self._enabled = enabled

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def enabled(self) -> bool:
        return self._enabled

    def path_for(self, key: CacheKey) -> Path:
        return self._dir / f"{key.digest}{_SUFFIX}"

    def load(self, key: CacheKey) -> tuple[Any, bool]:
        """Retrieve a previously saved value.

        Never raises: a missing entry, an I/O error, a corrupt file, or a
        schema mismatch all count as a miss.

        Returns
        -------
        value : Any
            The stored value, or None on a miss.
        found : bool
            True on a hit.
        """
        if not self._enabled:
            return None, False

        path = self.path_for(key)
        try:
            with open(path, "rb") as f:
                envelope = pickle.load(f)
        except FileNotFoundError:
            logger.debug("Cache miss: %s", key)
            return None, False
        except Exception as e:
            logger.debug("Cache entry %s unreadable (%s); treating as miss", path, e)
            return None, False

        if not isinstance(envelope, dict) or envelope.get("schema") != CACHE_SCHEMA_VERSION:
            logger.debug("Cache entry %s has a stale schema; treating as miss", path)
            return None, False

        logger.debug("Cache hit: %s", key)
        return envelope.get("value"), True

    def save(self, key: CacheKey, value: Any) -> None:
        """Persist ``value`` under ``key``.

        The write goes to a temporary file that is renamed into place, so
        a reader never sees a partial entry. Failures are logged and
        otherwise ignored.
        """
        if not self._enabled:
            return

        path = self.path_for(key)
        tmp_name = None
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "wb", dir=self._dir, prefix=f".{key.digest[:16]}-", suffix=".tmp", delete=False
            ) as f:
                tmp_name = f.name
                pickle.dump(
                    {"schema": CACHE_SCHEMA_VERSION, "value": value},
                    f,
                    protocol=pickle.HIGHEST_PROTOCOL,
                )
            os.replace(tmp_name, path)
            tmp_name = None
            logger.debug("Saved cache entry %s", path)
        except (OSError, pickle.PicklingError, TypeError, AttributeError) as e:
            logger.warning("Error saving to cache %s: %s", path, e)
        finally:
            if tmp_name is not None:
                _remove_quietly(Path(tmp_name))

    def clear(self) -> int:
        """Delete every cache entry. Returns the number of files removed."""
        if not self._dir.exists():
            return 0
        removed = 0
        for path in self._dir.glob(f"*{_SUFFIX}"):
            if _remove_quietly(path):
                removed += 1
        logger.info("Cleared %d cache entries from %s", removed, self._dir)
        return removed


def _remove_quietly(path: Path) -> bool:
    try:
        path.unlink()
    except OSError as e:
        logger.debug("Could not remove %s: %s", path, e)
        return False
    return True

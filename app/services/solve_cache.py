"""Bounded LRU cache of solver results keyed by quantized panel inputs."""

from __future__ import annotations

from collections import OrderedDict
import logging
import threading
from typing import Callable, Dict, Hashable, Optional, Tuple

from schemas import PanelSpec, SolveResult

logger = logging.getLogger(__name__)

CacheKey = Tuple[Hashable, ...]
Solver = Callable[..., SolveResult]


def _q(value: Optional[float], resolution: int) -> Optional[int]:
    if value is None:
        return None
    return int(round(value * resolution))


def make_cache_key(
    spec: PanelSpec,
    mesh_step_mm: Optional[float],
    voltage_v: float = 1.0,
    resolution: int = 1000,
) -> CacheKey:
    """Every solve-affecting field rounded to ``1 / resolution``.

    Panels that differ only below the resolution share a key.
    """
    honeycomb = spec.is_honeycomb
    return (
        _q(spec.width_mm, resolution),
        _q(spec.height_mm, resolution),
        _q(spec.sheet_resistance, resolution),
        _q(spec.edge, resolution),
        _q(spec.busbar, resolution),
        spec.pattern,
        spec.busbar_orientation,
        _q(spec.clearance, resolution),
        _q(spec.hex_side_mm, resolution) if honeycomb else None,
        _q(spec.gap, resolution) if honeycomb else None,
        spec.hex_cols if honeycomb else None,
        spec.hex_rows if honeycomb else None,
        _q(mesh_step_mm, resolution),
        _q(voltage_v, resolution),
    )


class SolveCache:
    """Thread-safe LRU store shared by search workers."""

    def __init__(self, capacity: int = 256, resolution: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.resolution = resolution
        self._entries: "OrderedDict[CacheKey, SolveResult]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def key_for(self, spec: PanelSpec, mesh_step_mm: Optional[float], voltage_v: float = 1.0) -> CacheKey:
        return make_cache_key(spec, mesh_step_mm, voltage_v, self.resolution)

    def get(self, key: CacheKey) -> Optional[SolveResult]:
        with self._lock:
            result = self._entries.get(key)
            if result is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return result

    def put(self, key: CacheKey, result: SolveResult) -> None:
        with self._lock:
            self._entries[key] = result
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._entries),
                "capacity": self.capacity,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_or_solve(
        self,
        spec: PanelSpec,
        mesh_step_mm: float,
        voltage_v: float,
        solver: Solver,
    ) -> SolveResult:
        """Cached result, or run ``solver`` outside the lock and store what it returns.

        Two workers missing on the same key may both solve; the later put wins.
        """
        key = self.key_for(spec, mesh_step_mm, voltage_v)
        cached = self.get(key)
        if cached is not None:
            logger.debug("Solve cache hit: key=%s", key)
            return cached

        result = solver(spec, mesh_step_mm, voltage_v)
        self.put(key, result)
        return result

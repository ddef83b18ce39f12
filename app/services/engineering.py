"""Engineering facade: cached solves turned into mains-voltage design figures."""

from __future__ import annotations

import logging
from typing import Optional

from config import Settings, settings
from schemas import DesignEvaluation, PanelSpec, SolveResult
from services.electrical import area_m2, deviation_percent, power_density, raw_resistance, target_resistance
from services.estimator import HoneycombEstimator
from services.resistive_solver import SolverOptions, solve as solve_network
from services.solve_cache import SolveCache

logger = logging.getLogger(__name__)


class EngineeringFacade:
    """Single entry point for exact resistance; every solve goes through the cache."""

    def __init__(
        self,
        cache: SolveCache,
        cfg: Settings = settings,
        solver_options: Optional[SolverOptions] = None,
    ) -> None:
        self.cache = cache
        self.settings = cfg
        self.solver_options = solver_options or SolverOptions.from_settings(cfg)

    @property
    def mains_voltage(self) -> float:
        return self.settings.mains_voltage_v

    def resolve_mesh_step(self, spec: PanelSpec, mesh_step_mm: Optional[float] = None) -> float:
        if mesh_step_mm is not None:
            return mesh_step_mm
        if spec.mesh_step_mm is not None:
            return spec.mesh_step_mm
        return self.solver_options.default_mesh_step_mm

    def _run_solver(self, spec: PanelSpec, mesh_step_mm: float, voltage_v: float) -> SolveResult:
        return solve_network(spec, mesh_step_mm, voltage_v, self.solver_options)

    def solve(
        self,
        spec: PanelSpec,
        mesh_step_mm: Optional[float] = None,
        voltage_v: float = 1.0,
    ) -> SolveResult:
        dx = self.resolve_mesh_step(spec, mesh_step_mm)
        return self.cache.get_or_solve(spec, dx, voltage_v, self._run_solver)

    def evaluate(self, spec: PanelSpec, mesh_step_mm: Optional[float] = None) -> DesignEvaluation:
        """Solver resistance, path-length multiplier and power density at mains voltage.

        The solve runs at 1 V; resistance does not depend on the applied voltage.
        """
        raw = raw_resistance(spec)
        target_r = target_resistance(spec, self.mains_voltage)
        result = self.solve(spec, mesh_step_mm, 1.0)

        if not result.ok or result.resistance_ohm is None:
            logger.info("Design not achievable: %s (%s)", result.error, result.reason)
            return DesignEvaluation(
                ok=False,
                reason=result.reason,
                raw_resistance_ohm=raw,
                target_resistance_ohm=target_r,
                solve=result,
            )

        resistance = result.resistance_ohm
        power = power_density(resistance, area_m2(spec), self.mains_voltage)
        return DesignEvaluation(
            ok=True,
            raw_resistance_ohm=raw,
            target_resistance_ohm=target_r,
            resistance_ohm=resistance,
            multiplier=resistance / raw if raw > 0 else None,
            power_density_wm2=power,
            deviation_percent=deviation_percent(power, spec.target_power_wm2),
            solve=result,
        )

    def estimate_manual(self, spec: PanelSpec, estimator: HoneycombEstimator) -> DesignEvaluation:
        """Estimator-only figures for the panel's own side and gap."""
        raw = raw_resistance(spec)
        target_r = target_resistance(spec, self.mains_voltage)
        multiplier = estimator.estimate_multiplier(spec, spec.hex_side_mm or 0.0, spec.gap)
        resistance = raw * multiplier
        power = power_density(resistance, area_m2(spec), self.mains_voltage)
        deviation = deviation_percent(power, spec.target_power_wm2)

        logger.info(
            "Manual estimate: R_target=%s R_raw=%.4f mult=%.4f R=%.4f P=%.2f dev=%.2f",
            target_r,
            raw,
            multiplier,
            resistance,
            power,
            deviation,
        )
        if multiplier <= 0:
            return DesignEvaluation(
                ok=False,
                reason="hexagon side must be positive for an estimate",
                raw_resistance_ohm=raw,
                target_resistance_ohm=target_r,
                source="estimator",
            )
        return DesignEvaluation(
            ok=True,
            raw_resistance_ohm=raw,
            target_resistance_ohm=target_r,
            resistance_ohm=resistance,
            multiplier=multiplier,
            power_density_wm2=power,
            deviation_percent=deviation,
            source="estimator",
        )

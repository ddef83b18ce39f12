"""Two-phase search for manufacturable honeycomb designs.

Phase 1 ranks every (side, gap) pair of a range by the analytic estimator.
Phase 2 re-evaluates the top slice through the field solver on a worker pool
and re-ranks by solver deviation. Ties prefer gentler ablation (smaller
gap / side), then lower cell density.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
import math
from typing import Iterator, List, NamedTuple, Optional, Tuple

from config import Settings, settings
from schemas import CandidateDesign, MaxAchievable, PanelSpec
from services.electrical import area_m2, deviation_percent, power_density, raw_resistance
from services.engineering import EngineeringFacade
from services.estimator import HoneycombEstimator

logger = logging.getLogger(__name__)

SQRT3 = math.sqrt(3.0)


def _frange(start: float, stop: float, step: float) -> List[float]:
    """Inclusive arithmetic range built by index so steps do not accumulate error."""
    if step <= 0 or stop < start:
        return []
    count = int(math.floor((stop - start) / step + 1e-9))
    return [round(start + i * step, 9) for i in range(count + 1)]


@dataclass(frozen=True)
class SearchRange:
    a_min: float
    a_max: float
    a_step: float
    gap_min: float
    gap_max: float
    gap_step: float

    @classmethod
    def base(cls, cfg: Settings) -> "SearchRange":
        return cls(
            cfg.base_a_min, cfg.base_a_max, cfg.base_a_step,
            cfg.base_gap_min, cfg.base_gap_max, cfg.base_gap_step,
        )

    @classmethod
    def extended(cls, cfg: Settings) -> "SearchRange":
        return cls(
            cfg.ext_a_min, cfg.ext_a_max, cfg.ext_a_step,
            cfg.ext_gap_min, cfg.ext_gap_max, cfg.ext_gap_step,
        )

    def side_values(self) -> List[float]:
        return _frange(self.a_min, self.a_max, self.a_step)

    def gap_values(self) -> List[float]:
        return _frange(self.gap_min, self.gap_max, self.gap_step)

    def pairs(self) -> Iterator[Tuple[float, float]]:
        gaps = self.gap_values()
        for a in self.side_values():
            for gap in gaps:
                yield a, gap


@dataclass(frozen=True)
class SearchOptions:
    top_n: int
    tolerance_percent: float
    auto_expand: bool
    solver_top_k: int
    max_scan_top_k: int
    mesh_step_mm: float
    workers: int
    base_range: SearchRange
    extended_range: SearchRange

    @classmethod
    def from_settings(cls, cfg: Settings) -> "SearchOptions":
        return cls(
            top_n=cfg.search_top_n,
            tolerance_percent=cfg.search_tolerance_percent,
            auto_expand=cfg.search_auto_expand,
            solver_top_k=cfg.search_solver_top_k,
            max_scan_top_k=cfg.search_max_scan_top_k,
            mesh_step_mm=cfg.search_mesh_step_mm,
            workers=cfg.search_workers,
            base_range=SearchRange.base(cfg),
            extended_range=SearchRange.extended(cfg),
        )


class RankedCandidate(NamedTuple):
    design: CandidateDesign
    ablation_intensity: float
    cell_density: float

    def sort_key(self) -> Tuple[float, float, float]:
        return abs(self.design.deviation_percent), self.ablation_intensity, self.cell_density


def ablation_intensity(hex_side_mm: float, hex_gap_mm: float) -> float:
    return hex_gap_mm / hex_side_mm if hex_side_mm > 0 else math.inf


def cell_density(hex_side_mm: float, hex_gap_mm: float) -> float:
    step_x = 1.5 * hex_side_mm + hex_gap_mm
    step_y = SQRT3 * hex_side_mm + hex_gap_mm
    if step_x <= 0 or step_y <= 0:
        return math.inf
    return 1.0 / (step_x * step_y)


class CandidateSearch:
    def __init__(
        self,
        facade: EngineeringFacade,
        estimator: HoneycombEstimator,
        options: Optional[SearchOptions] = None,
    ) -> None:
        self.facade = facade
        self.estimator = estimator
        self.options = options or SearchOptions.from_settings(settings)

    def _within_tolerance(self, deviation: float) -> bool:
        return abs(deviation) <= self.options.tolerance_percent

    def rank_candidates(self, spec: PanelSpec, search_range: SearchRange) -> List[RankedCandidate]:
        """Phase 1: estimator figures for every pair in the range, best first."""
        voltage = self.facade.mains_voltage
        area = area_m2(spec)
        raw = raw_resistance(spec)
        target = spec.target_power_wm2

        ranked: List[RankedCandidate] = []
        for a, gap in search_range.pairs():
            multiplier = self.estimator.estimate_multiplier(spec, a, gap)
            if multiplier <= 0:
                continue
            resistance = raw * multiplier
            if resistance <= 0:
                continue
            power = power_density(resistance, area, voltage)
            deviation = deviation_percent(power, target)
            design = CandidateDesign(
                hex_side_mm=a,
                hex_gap_mm=gap,
                multiplier=multiplier,
                achieved_resistance_ohm=resistance,
                achieved_power_wm2=power,
                deviation_percent=deviation,
                within_tolerance=self._within_tolerance(deviation),
            )
            ranked.append(RankedCandidate(design, ablation_intensity(a, gap), cell_density(a, gap)))

        ranked.sort(key=RankedCandidate.sort_key)
        return ranked

    def _solve_candidate(self, spec: PanelSpec, candidate: RankedCandidate) -> Optional[RankedCandidate]:
        a = candidate.design.hex_side_mm
        gap = candidate.design.hex_gap_mm
        evaluation = self.facade.evaluate(spec.with_pattern(a, gap), self.options.mesh_step_mm)
        if (
            not evaluation.ok
            or evaluation.multiplier is None
            or evaluation.resistance_ohm is None
            or evaluation.power_density_wm2 is None
        ):
            logger.debug("Skipping a=%.2f gap=%.2f: %s", a, gap, evaluation.reason)
            return None

        deviation = evaluation.deviation_percent or 0.0
        design = CandidateDesign(
            hex_side_mm=a,
            hex_gap_mm=gap,
            multiplier=evaluation.multiplier,
            achieved_resistance_ohm=evaluation.resistance_ohm,
            achieved_power_wm2=evaluation.power_density_wm2,
            deviation_percent=deviation,
            within_tolerance=self._within_tolerance(deviation),
            solver_verified=True,
        )
        return candidate._replace(design=design)

    def verify_top_k(self, spec: PanelSpec, ranked: List[RankedCandidate]) -> List[CandidateDesign]:
        """Phase 2: solver figures for the top slice; failed solves are dropped."""
        if not ranked:
            return []

        k = min(len(ranked), max(self.options.solver_top_k, 3 * self.options.top_n))
        head = ranked[:k]
        with ThreadPoolExecutor(max_workers=self.options.workers) as pool:
            solved = [item for item in pool.map(lambda c: self._solve_candidate(spec, c), head) if item is not None]

        solved.sort(key=RankedCandidate.sort_key)
        if solved:
            logger.info(
                "Verified %d/%d candidates, best |dev|=%.2f%% at a=%.2f gap=%.2f",
                len(solved),
                k,
                abs(solved[0].design.deviation_percent),
                solved[0].design.hex_side_mm,
                solved[0].design.hex_gap_mm,
            )
        else:
            logger.warning("None of %d candidates could be solved", k)
        return [item.design for item in solved]

    def find_top_designs(self, spec: PanelSpec) -> List[CandidateDesign]:
        """At most ``top_n`` solver-verified designs, closest to the target first.

        Falls back to the extended range when nothing in the base range meets
        the tolerance; if neither does, the closest designs are returned with
        ``within_tolerance=False``.
        """
        ranges = [("base", self.options.base_range)]
        if self.options.auto_expand:
            ranges.append(("extended", self.options.extended_range))

        limit = max(1, self.options.top_n)
        verified: List[CandidateDesign] = []
        for label, search_range in ranges:
            ranked = self.rank_candidates(spec, search_range)
            logger.info("Search %s range: %d candidates ranked", label, len(ranked))
            verified = self.verify_top_k(spec, ranked)
            accepted = [design for design in verified if design.within_tolerance]
            if accepted:
                return accepted[:limit]
            logger.info("Search %s range: nothing within %.1f%%", label, self.options.tolerance_percent)

        return verified[:limit]

    def estimate_max_achievable(self, spec: PanelSpec) -> MaxAchievable:
        """Highest solver multiplier among the top estimator candidates of the extended range."""
        estimates: List[Tuple[float, float, float]] = []
        for a, gap in self.options.extended_range.pairs():
            multiplier = self.estimator.estimate_multiplier(spec, a, gap)
            if multiplier > 0:
                estimates.append((multiplier, a, gap))

        if not estimates:
            return MaxAchievable(max_multiplier=0.0, max_power_wm2=0.0, best_hex_side_mm=0.0, best_hex_gap_mm=0.0)

        estimates.sort(key=lambda item: -item[0])
        k = min(len(estimates), max(self.options.max_scan_top_k, 6 * self.options.top_n))
        mesh_step = self.options.mesh_step_mm

        with ThreadPoolExecutor(max_workers=self.options.workers) as pool:
            evaluations = list(
                pool.map(lambda item: self.facade.evaluate(spec.with_pattern(item[1], item[2]), mesh_step), estimates[:k])
            )

        best = MaxAchievable(max_multiplier=0.0, max_power_wm2=0.0, best_hex_side_mm=0.0, best_hex_gap_mm=0.0)
        for (_, a, gap), evaluation in zip(estimates[:k], evaluations):
            if not evaluation.ok or evaluation.multiplier is None or evaluation.power_density_wm2 is None:
                continue
            if evaluation.multiplier > best.max_multiplier:
                best = MaxAchievable(
                    max_multiplier=evaluation.multiplier,
                    max_power_wm2=evaluation.power_density_wm2,
                    best_hex_side_mm=a,
                    best_hex_gap_mm=gap,
                )

        logger.info(
            "Max achievable: mult=%.3f power=%.1f W/m2 at a=%.2f gap=%.2f (%d solved)",
            best.max_multiplier,
            best.max_power_wm2,
            best.best_hex_side_mm,
            best.best_hex_gap_mm,
            k,
        )
        return best

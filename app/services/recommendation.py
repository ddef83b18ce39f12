"""User-facing guidance assembled from a design search."""

from __future__ import annotations

import logging
from typing import Optional

from schemas import MaxAchievable, PanelSpec, ProductionResult
from services.candidate_search import CandidateSearch, SearchRange
from services.electrical import raw_resistance, target_resistance
from services.estimator import HoneycombEstimator

logger = logging.getLogger(__name__)

ACHIEVABLE_MESSAGE = "Target is achievable. Pick a design and apply it."


def required_multiplier(spec: PanelSpec, voltage_v: float) -> Optional[float]:
    """Target resistance over unpatterned resistance; None without a usable target."""
    raw = raw_resistance(spec)
    target = target_resistance(spec, voltage_v)
    if raw <= 0 or target is None:
        return None
    return target / raw


def _min_side_for(
    spec: PanelSpec, estimator: HoneycombEstimator, rng: SearchRange, required: float
) -> Optional[float]:
    for a in rng.side_values():
        if estimator.estimate_multiplier(spec, a, rng.gap_min) >= required:
            return a
    return None


def _min_gap_for(
    spec: PanelSpec, estimator: HoneycombEstimator, rng: SearchRange, required: float
) -> Optional[float]:
    for gap in rng.gap_values():
        if estimator.estimate_multiplier(spec, rng.a_min, gap) >= required:
            return gap
    return None


def generate_recommendation(
    spec: PanelSpec,
    max_achievable: MaxAchievable,
    estimator: HoneycombEstimator,
    ext_range: SearchRange,
    voltage_v: float,
) -> str:
    if raw_resistance(spec) <= 0:
        return "Invalid unpatterned resistance. Check panel size, sheet resistance and busbar orientation."

    required = required_multiplier(spec, voltage_v)
    if required is None:
        return "No target power density given, nothing to recommend."

    if required > max_achievable.max_multiplier:
        return (
            f"Not achievable within the current ranges. Required multiplier ~{required:.2f}, "
            f"maximum ~{max_achievable.max_multiplier:.2f} "
            f"(best: a={max_achievable.best_hex_side_mm:.1f} mm, gap={max_achievable.best_hex_gap_mm:.1f} mm). "
            "Use a coating with lower sheet resistance or relax the production limits."
        )

    parts = [f"Required multiplier ~{required:.2f}."]
    side = _min_side_for(spec, estimator, ext_range, required)
    if side is not None:
        parts.append(f"Reduce the hexagon side to ~{side:.1f} mm at gap ~{ext_range.gap_min:.1f} mm.")
    gap = _min_gap_for(spec, estimator, ext_range, required)
    if gap is not None:
        parts.append(f"Alternatively reduce the gap to ~{gap:.1f} mm at a ~{ext_range.a_min:.1f} mm.")
    parts.append("Prefer the design with the smaller |dev| and gentler ablation.")
    return " ".join(parts)


def build_production_result(search: CandidateSearch, spec: PanelSpec) -> ProductionResult:
    """Top designs, the achievable ceiling and a recommendation for the panel."""
    voltage = search.facade.mains_voltage
    designs = search.find_top_designs(spec)
    required = required_multiplier(spec, voltage)
    max_achievable = search.estimate_max_achievable(spec)

    achievable = bool(designs) and abs(designs[0].deviation_percent) <= search.options.tolerance_percent
    if achievable:
        recommendation = ACHIEVABLE_MESSAGE
    else:
        recommendation = generate_recommendation(
            spec, max_achievable, search.estimator, search.options.extended_range, voltage
        )

    logger.info(
        "Production summary: required_mult=%s achievable=%s designs=%d max_mult=%.3f max_power=%.1f",
        f"{required:.3f}" if required is not None else "n/a",
        achievable,
        len(designs),
        max_achievable.max_multiplier,
        max_achievable.max_power_wm2,
    )
    return ProductionResult(
        designs=designs,
        achievable=achievable,
        recommendation=recommendation,
        required_multiplier=required,
        max_multiplier=max_achievable.max_multiplier,
        max_achievable_power_wm2=max_achievable.max_power_wm2,
    )

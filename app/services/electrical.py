"""Mains-voltage electrical figures for a heated panel."""

from __future__ import annotations

from typing import Optional

from schemas import PanelSpec


def area_m2(spec: PanelSpec) -> float:
    return spec.width_mm * spec.height_mm / 1_000_000.0


def raw_resistance(spec: PanelSpec) -> float:
    """Unpatterned coating resistance ``Rs * L / W`` with L along the current direction."""
    if spec.current_along_height:
        length, width = spec.height_mm, spec.width_mm
    else:
        length, width = spec.width_mm, spec.height_mm
    if width <= 0:
        return 0.0
    return spec.sheet_resistance * length / width


def target_resistance(spec: PanelSpec, voltage_v: float) -> Optional[float]:
    """Resistance that dissipates ``target_power_wm2`` at ``voltage_v``; None without a target."""
    target = spec.target_power_wm2
    area = area_m2(spec)
    if target is None or target <= 0 or area <= 0:
        return None
    return voltage_v * voltage_v / (target * area)


def power_density(resistance_ohm: float, area: float, voltage_v: float) -> float:
    if resistance_ohm <= 0 or area <= 0:
        return 0.0
    return voltage_v * voltage_v / resistance_ohm / area


def deviation_percent(achieved: float, target: Optional[float]) -> float:
    """Signed deviation of ``achieved`` from ``target``, 0 when there is no target."""
    if target is None or target <= 0:
        return 0.0
    return (achieved - target) / target * 100.0

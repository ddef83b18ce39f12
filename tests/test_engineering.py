"""Electrical helpers and engineering facade tests."""

from __future__ import annotations

import math

from config import settings
from schemas import PanelSpec
from services.electrical import area_m2, deviation_percent, power_density, raw_resistance, target_resistance
from services.engineering import EngineeringFacade
from services.estimator import HoneycombEstimator
from services.solve_cache import SolveCache


def _panel(**overrides) -> PanelSpec:
    values = {
        "width_mm": 100.0,
        "height_mm": 60.0,
        "sheet_resistance": 10.0,
        "busbar_width_mm": 5.0,
        "pattern": "uniform",
        "target_power_wm2": 500.0,
    }
    values.update(overrides)
    return PanelSpec(**values)


def _facade() -> EngineeringFacade:
    return EngineeringFacade(SolveCache(capacity=16), settings)


def test_electrical_helpers() -> None:
    panel = _panel()
    assert math.isclose(area_m2(panel), 0.006)
    assert math.isclose(raw_resistance(panel), 10.0 * 60.0 / 100.0)
    assert math.isclose(raw_resistance(_panel(busbar_orientation="left_right")), 10.0 * 100.0 / 60.0)
    assert math.isclose(target_resistance(panel, 220.0), 220.0**2 / (500.0 * 0.006))
    assert target_resistance(_panel(target_power_wm2=None), 220.0) is None
    assert math.isclose(power_density(20.0, 0.5, 220.0), 220.0**2 / 20.0 / 0.5)
    assert power_density(0.0, 0.5, 220.0) == 0.0
    assert power_density(10.0, 0.0, 220.0) == 0.0
    assert math.isclose(deviation_percent(550.0, 500.0), 10.0)
    assert deviation_percent(550.0, None) == 0.0


def test_evaluate_reports_solver_figures_at_mains_voltage() -> None:
    facade = _facade()
    panel = _panel()
    evaluation = facade.evaluate(panel, 2.0)

    assert evaluation.ok
    assert evaluation.source == "solver"
    assert evaluation.solve is not None and evaluation.solve.ok
    resistance = evaluation.resistance_ohm
    assert math.isclose(evaluation.multiplier, resistance / 6.0)
    expected_power = settings.mains_voltage_v**2 / resistance / 0.006
    assert math.isclose(evaluation.power_density_wm2, expected_power)
    assert math.isclose(evaluation.deviation_percent, (expected_power - 500.0) / 500.0 * 100.0)


def test_evaluate_shares_cache_with_solve() -> None:
    facade = _facade()
    panel = _panel()
    facade.solve(panel, 2.0)
    facade.evaluate(panel, 2.0)
    assert facade.cache.stats()["hits"] == 1


def test_evaluate_invalid_design_degrades_gracefully() -> None:
    evaluation = _facade().evaluate(_panel(edge_offset_mm=40.0), 2.0)
    assert not evaluation.ok
    assert evaluation.reason
    assert evaluation.multiplier is None
    assert evaluation.solve is not None
    assert evaluation.solve.error == "InvalidInput"


def test_resolve_mesh_step_precedence() -> None:
    facade = _facade()
    assert facade.resolve_mesh_step(_panel(mesh_step_mm=3.0), 5.0) == 5.0
    assert facade.resolve_mesh_step(_panel(mesh_step_mm=3.0)) == 3.0
    assert facade.resolve_mesh_step(_panel()) == settings.solver_default_mesh_step_mm


def test_estimate_manual_uses_estimator_only() -> None:
    facade = _facade()
    estimator = HoneycombEstimator()
    panel = _panel(pattern="honeycomb", hex_side_mm=20.0, hex_gap_mm=2.0)

    evaluation = facade.estimate_manual(panel, estimator)

    multiplier = estimator.estimate_multiplier(panel, 20.0, 2.0)
    assert evaluation.ok
    assert evaluation.source == "estimator"
    assert evaluation.solve is None
    assert math.isclose(evaluation.multiplier, multiplier)
    assert math.isclose(evaluation.resistance_ohm, 6.0 * multiplier)
    assert facade.cache.stats()["misses"] == 0


def test_estimate_manual_without_side_is_not_ok() -> None:
    evaluation = _facade().estimate_manual(_panel(pattern="honeycomb"), HoneycombEstimator())
    assert not evaluation.ok
    assert evaluation.reason

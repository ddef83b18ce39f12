"""HTTP API tests."""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

import main

client = TestClient(main.app)


def _panel(**overrides) -> dict:
    panel = {
        "width_mm": 100.0,
        "height_mm": 60.0,
        "sheet_resistance": 10.0,
        "busbar_width_mm": 5.0,
        "pattern": "uniform",
    }
    panel.update(overrides)
    return panel


def test_health() -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_solve_returns_resistance() -> None:
    response = client.post("/api/solve", json={"panel": _panel(), "mesh_step_mm": 2.0})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["resistance_ohm"] > 0
    assert body["converged"] is True


def test_invalid_solve_is_not_an_http_error() -> None:
    response = client.post("/api/solve", json={"panel": _panel(edge_offset_mm=40.0), "mesh_step_mm": 2.0})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "invalid"
    assert body["error"] == "InvalidInput"
    assert body["reason"]


def test_solve_timeout_becomes_invalid_result(monkeypatch) -> None:
    async def _too_slow(func, *args):
        raise asyncio.TimeoutError

    monkeypatch.setattr(main, "_run_with_deadline", _too_slow)
    response = client.post("/api/solve", json={"panel": _panel(), "mesh_step_mm": 2.0})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "invalid"
    assert body["error"] == "Timeout"
    assert body["mesh_step_mm"] == 2.0


def test_search_timeout_is_gateway_timeout(monkeypatch) -> None:
    async def _too_slow(func, *args):
        raise asyncio.TimeoutError

    monkeypatch.setattr(main, "_run_with_deadline", _too_slow)
    response = client.post("/api/designs", json={"panel": _panel(target_power_wm2=500.0)})
    assert response.status_code == 504


def test_evaluate_and_cache_stats() -> None:
    main.solve_cache.clear()
    payload = {"panel": _panel(target_power_wm2=500.0), "mesh_step_mm": 2.0}

    first = client.post("/api/evaluate", json=payload)
    second = client.post("/api/evaluate", json=payload)

    assert first.status_code == 200
    assert first.json() == second.json()
    assert first.json()["ok"] is True
    stats = client.get("/api/cache").json()
    assert stats["hits"] == 1
    assert stats["misses"] == 1

    cleared = client.delete("/api/cache").json()
    assert cleared["size"] == 0


def test_estimate_uses_estimator() -> None:
    panel = _panel(pattern="honeycomb", hex_side_mm=20.0, hex_gap_mm=2.0, target_power_wm2=500.0)
    response = client.post("/api/estimate", json={"panel": panel})
    assert response.status_code == 200
    assert response.json()["source"] == "estimator"


def test_geometry_export_matches_solver_tiling() -> None:
    panel = _panel(pattern="honeycomb", hex_side_mm=10.0, hex_gap_mm=1.0)
    response = client.post("/api/geometry", json={"panel": panel})
    assert response.status_code == 200
    body = response.json()
    assert body["cell_count"] > 0
    assert len(body["segments"]) % 6 == 0
    assert body["clip"] == {"xmin": 0.0, "ymin": 6.0, "xmax": 100.0, "ymax": 54.0}


def test_geometry_rejects_pattern_too_fine_for_panel() -> None:
    for panel in (
        _panel(pattern="honeycomb", hex_side_mm=0.001, hex_gap_mm=0.0),
        _panel(pattern="honeycomb", hex_side_mm=10.0, hex_gap_mm=1.0, hex_cols=10**9),
    ):
        response = client.post("/api/geometry", json={"panel": panel})
        assert response.status_code == 422
        assert "pattern too fine for panel" in response.json()["detail"]


def test_solve_with_pattern_too_fine_is_invalid_input() -> None:
    panel = _panel(pattern="honeycomb", hex_side_mm=0.001, hex_gap_mm=0.0)
    response = client.post("/api/solve", json={"panel": panel, "mesh_step_mm": 2.0})
    assert response.status_code == 200
    assert response.json()["error"] == "InvalidInput"


def test_geometry_rejects_uniform_panel() -> None:
    response = client.post("/api/geometry", json={"panel": _panel()})
    assert response.status_code == 400


def test_design_search_requires_target() -> None:
    response = client.post("/api/designs", json={"panel": _panel()})
    assert response.status_code == 422


def test_unknown_panel_field_is_rejected() -> None:
    response = client.post("/api/solve", json={"panel": _panel(color="blue")})
    assert response.status_code == 422

"""Geometry classifier tests: working rectangle, tiling, predicates and clipping."""

from __future__ import annotations

import math

import numpy as np
import pytest

from schemas import PanelSpec
from services.honeycomb_geometry import (
    SQRT3,
    ClipRect,
    TilingTooLargeError,
    build_ablation_segments,
    clip_polygon,
    clipped_cell_outlines,
    compute_clip_rect,
    electrode_at,
    hex_layout,
    hexagon_vertices,
    in_busbar_clearance,
    in_removed_edge,
    node_masks,
)


def _panel(**overrides) -> PanelSpec:
    values = {
        "width_mm": 200.0,
        "height_mm": 100.0,
        "sheet_resistance": 10.0,
        "edge_offset_mm": 5.0,
        "busbar_width_mm": 10.0,
        "busbar_clearance_mm": 3.0,
        "hex_side_mm": 10.0,
        "hex_gap_mm": 2.0,
    }
    values.update(overrides)
    return PanelSpec(**values)


def test_clip_rect_reserves_busbar_and_clearance_along_current() -> None:
    assert compute_clip_rect(_panel()) == ClipRect(5.0, 18.0, 195.0, 82.0)
    assert compute_clip_rect(_panel(busbar_orientation="left_right")) == ClipRect(18.0, 5.0, 182.0, 95.0)


def test_clip_rect_clearance_defaults_to_gap() -> None:
    clip = compute_clip_rect(_panel(busbar_clearance_mm=None, hex_gap_mm=4.0))
    assert clip.ymin == 5.0 + 10.0 + 4.0
    assert clip.ymax == 100.0 - 5.0 - 10.0 - 4.0


def test_degenerate_clip_collapses_to_zero_and_builds_no_segments() -> None:
    panel = _panel(height_mm=40.0, busbar_width_mm=15.0)
    clip = compute_clip_rect(panel)
    assert clip.height == 0.0
    assert clip.is_empty
    assert build_ablation_segments(panel) == []


def test_hex_layout_steps_and_start() -> None:
    layout = hex_layout(_panel())
    assert layout is not None
    assert math.isclose(layout.step_x, 1.5 * 10.0 + 2.0)
    assert math.isclose(layout.step_y, SQRT3 * 10.0 + 2.0)
    assert math.isclose(layout.start_x, 5.0 + 10.0)
    assert math.isclose(layout.start_y, 18.0 + SQRT3 * 10.0 / 2.0)
    assert layout.cols == math.ceil(190.0 / layout.step_x) + 1
    assert layout.rows == math.ceil(64.0 / layout.step_y) + 1


def test_hex_layout_overrides_only_raise_counts() -> None:
    minimal = hex_layout(_panel())
    lowered = hex_layout(_panel(hex_cols=1, hex_rows=1))
    raised = hex_layout(_panel(hex_cols=40, hex_rows=30))
    assert minimal is not None and lowered is not None and raised is not None
    assert (lowered.cols, lowered.rows) == (minimal.cols, minimal.rows)
    assert (raised.cols, raised.rows) == (40, 30)


def test_cell_budget_is_inclusive() -> None:
    layout = hex_layout(_panel())
    assert layout is not None
    assert layout.cell_count == (layout.cols + 2) * (layout.rows + 2)
    assert hex_layout(_panel(), max_cells=layout.cell_count) == layout
    with pytest.raises(TilingTooLargeError):
        hex_layout(_panel(), max_cells=layout.cell_count - 1)


def test_tiny_side_is_rejected_before_tiling() -> None:
    panel = _panel(width_mm=1000.0, height_mm=1000.0, hex_side_mm=0.01, hex_gap_mm=0.0)
    with pytest.raises(TilingTooLargeError, match="pattern too fine for panel"):
        hex_layout(panel)
    with pytest.raises(TilingTooLargeError):
        build_ablation_segments(panel)
    with pytest.raises(TilingTooLargeError):
        clipped_cell_outlines(panel)


def test_vanishing_side_does_not_overflow() -> None:
    with pytest.raises(TilingTooLargeError):
        hex_layout(_panel(hex_side_mm=1e-320, hex_gap_mm=0.0))


def test_huge_cell_count_override_is_rejected() -> None:
    with pytest.raises(TilingTooLargeError):
        build_ablation_segments(_panel(hex_cols=10**9))
    with pytest.raises(TilingTooLargeError):
        build_ablation_segments(_panel(hex_cols=1000, hex_rows=1000), max_cells=500_000)


def test_odd_columns_are_offset_by_half_step() -> None:
    layout = hex_layout(_panel())
    assert layout is not None
    centers = list(layout.centers())
    per_col = layout.rows + 2
    even_first = centers[per_col]  # column 0, row -1
    odd_first = centers[2 * per_col]  # column 1, row -1
    assert math.isclose(odd_first[1] - even_first[1], layout.step_y / 2.0)


def test_segments_cover_layout_with_overscan_ring() -> None:
    panel = _panel()
    layout = hex_layout(panel)
    assert layout is not None
    segments = build_ablation_segments(panel)
    assert len(segments) == 6 * (layout.cols + 2) * (layout.rows + 2)
    for seg in segments[:12]:
        assert math.isclose(math.hypot(seg.x2 - seg.x1, seg.y2 - seg.y1), 10.0)


def test_uniform_or_missing_side_builds_no_segments() -> None:
    assert build_ablation_segments(_panel(pattern="uniform")) == []
    assert build_ablation_segments(_panel(hex_side_mm=None)) == []
    assert build_ablation_segments(_panel(hex_side_mm=0.0)) == []


def test_hexagon_vertices_are_regular() -> None:
    vertices = hexagon_vertices(50.0, 40.0, 8.0)
    assert len(vertices) == 6
    for i, (x, y) in enumerate(vertices):
        nx, ny = vertices[(i + 1) % 6]
        assert math.isclose(math.hypot(nx - x, ny - y), 8.0)
        assert math.isclose(math.hypot(x - 50.0, y - 40.0), 8.0)


def test_point_predicates() -> None:
    panel = _panel()
    assert in_removed_edge(panel, 2.0, 50.0)
    assert in_removed_edge(panel, 100.0, 97.0)
    assert not in_removed_edge(panel, 5.0, 5.0)

    assert electrode_at(panel, 100.0, 10.0) == "hot"
    assert electrode_at(panel, 100.0, 92.0) == "cold"
    assert electrode_at(panel, 100.0, 50.0) is None
    assert electrode_at(panel, 2.0, 10.0) is None

    side = _panel(busbar_orientation="left_right")
    assert electrode_at(side, 10.0, 50.0) == "hot"
    assert electrode_at(side, 192.0, 50.0) == "cold"

    assert in_busbar_clearance(panel, 100.0, 18.0)
    assert in_busbar_clearance(panel, 100.0, 82.0)
    assert not in_busbar_clearance(panel, 100.0, 50.0)
    assert not in_busbar_clearance(_panel(busbar_clearance_mm=0.0), 100.0, 15.5)


def test_node_masks_match_point_predicates() -> None:
    for orientation in ("top_bottom", "left_right"):
        panel = _panel(busbar_orientation=orientation)
        xs = np.arange(0.0, 201.0, 3.0)
        ys = np.arange(0.0, 101.0, 3.0)
        masks = node_masks(panel, xs, ys)
        assert masks.hot.shape == (len(ys), len(xs))
        for iy, y in enumerate(ys):
            for ix, x in enumerate(xs):
                assert masks.removed_edge[iy, ix] == in_removed_edge(panel, x, y)
                kind = electrode_at(panel, x, y)
                assert masks.hot[iy, ix] == (kind == "hot")
                assert masks.cold[iy, ix] == (kind == "cold")
                assert masks.clearance[iy, ix] == in_busbar_clearance(panel, x, y)


def test_clip_polygon_against_rectangle() -> None:
    rect = ClipRect(0.0, 0.0, 10.0, 10.0)
    inside = [(1.0, 1.0), (5.0, 1.0), (5.0, 5.0)]
    assert clip_polygon(inside, rect) == inside

    outside = [(20.0, 20.0), (30.0, 20.0), (30.0, 30.0)]
    assert clip_polygon(outside, rect) == []

    straddling = [(-5.0, 2.0), (5.0, 2.0), (5.0, 8.0), (-5.0, 8.0)]
    clipped = clip_polygon(straddling, rect)
    xs = [p[0] for p in clipped]
    assert min(xs) == 0.0
    assert max(xs) == 5.0
    assert len(clipped) == 4


def test_clipped_outlines_stay_inside_working_rectangle() -> None:
    panel = _panel()
    clip = compute_clip_rect(panel)
    outlines = clipped_cell_outlines(panel)
    assert outlines
    for outline in outlines:
        assert len(outline) >= 3
        for x, y in outline:
            assert clip.xmin - 1e-9 <= x <= clip.xmax + 1e-9
            assert clip.ymin - 1e-9 <= y <= clip.ymax + 1e-9

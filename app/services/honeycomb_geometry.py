"""Honeycomb ablation geometry: working rectangle, hex tiling and node predicates.

The solver and the drawing exporters both go through this module so that the
pattern that is cut matches the pattern that was analysed.
"""

from __future__ import annotations

from enum import Enum
import logging
import math
from typing import Iterator, List, NamedTuple, Optional, Tuple

import numpy as np

from config import settings
from schemas import PanelSpec

logger = logging.getLogger(__name__)

SQRT3 = math.sqrt(3.0)

Point = Tuple[float, float]


class TilingTooLargeError(ValueError):
    """The hex tiling needs more cells than the configured budget."""


class AblationSegment(NamedTuple):
    x1: float
    y1: float
    x2: float
    y2: float


class ClipRect(NamedTuple):
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return max(0.0, self.xmax - self.xmin)

    @property
    def height(self) -> float:
        return max(0.0, self.ymax - self.ymin)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0.0 or self.height <= 0.0


class HexLayout(NamedTuple):
    side: float
    gap: float
    step_x: float
    step_y: float
    start_x: float
    start_y: float
    cols: int
    rows: int

    @property
    def cell_count(self) -> int:
        """Cells actually tiled, overscan ring included."""
        return (self.cols + 2) * (self.rows + 2)

    def centers(self) -> Iterator[Tuple[float, float]]:
        """Cell centres including one overscan ring on every side."""
        for col in range(-1, self.cols + 1):
            cx = self.start_x + col * self.step_x
            col_offset = self.step_y / 2.0 if col % 2 else 0.0
            for row in range(-1, self.rows + 1):
                yield cx, self.start_y + row * self.step_y + col_offset


class NodeMasks(NamedTuple):
    removed_edge: np.ndarray
    hot: np.ndarray
    cold: np.ndarray
    clearance: np.ndarray


def compute_clip_rect(spec: PanelSpec) -> ClipRect:
    """Panel minus edge margin, minus busbar and clearance along the current direction."""
    edge = spec.edge
    reserve = spec.busbar + spec.clearance
    left, right = edge, spec.width_mm - edge
    top, bottom = edge, spec.height_mm - edge

    if spec.current_along_height:
        top = edge + reserve
        bottom = spec.height_mm - edge - reserve
    else:
        left = edge + reserve
        right = spec.width_mm - edge - reserve

    if right < left:
        right = left
    if bottom < top:
        bottom = top
    return ClipRect(left, top, right, bottom)


def hex_layout(spec: PanelSpec, max_cells: Optional[int] = None) -> Optional[HexLayout]:
    """Tiling parameters for the panel, or None when no honeycomb applies.

    Raises TilingTooLargeError when the tiling exceeds max_cells (default from
    settings), before any cell is generated.
    """
    if not spec.is_honeycomb:
        return None
    side = spec.hex_side_mm
    if side is None or side <= 0:
        return None

    clip = compute_clip_rect(spec)
    if clip.is_empty:
        logger.warning(
            "Honeycomb clip area is empty (%.3f x %.3f mm), no ablation segments",
            clip.width,
            clip.height,
        )
        return None

    gap = spec.gap
    hex_height = SQRT3 * side
    step_x = 1.5 * side + gap
    step_y = hex_height + gap

    limit = settings.geometry_max_cells if max_cells is None else max_cells
    span_x = clip.width / step_x
    span_y = clip.height / step_y
    if (span_x + 3.0) * (span_y + 3.0) > limit:
        raise TilingTooLargeError(f"pattern too fine for panel: side {side} mm needs more than {limit} hex cells")

    # Minimum counts that cover the clip area; overrides may only add cells.
    min_cols = max(1, math.ceil(span_x) + 1)
    min_rows = max(1, math.ceil(span_y) + 1)
    cols = max(min_cols, spec.hex_cols or 0)
    rows = max(min_rows, spec.hex_rows or 0)

    layout = HexLayout(
        side=side,
        gap=gap,
        step_x=step_x,
        step_y=step_y,
        start_x=clip.xmin + side,
        start_y=clip.ymin + hex_height / 2.0,
        cols=cols,
        rows=rows,
    )
    if layout.cell_count > limit:
        raise TilingTooLargeError(
            f"pattern too fine for panel: {layout.cell_count} hex cells exceed the limit of {limit}"
        )
    return layout


def hexagon_vertices(cx: float, cy: float, side: float) -> List[Point]:
    """Flat-topped hexagon, clockwise in screen coordinates (y down)."""
    h = SQRT3 * side / 2.0
    x0 = cx - side / 2.0
    x1 = cx + side / 2.0
    return [
        (x0, cy - h),
        (x1, cy - h),
        (cx + side, cy),
        (x1, cy + h),
        (x0, cy + h),
        (cx - side, cy),
    ]


def build_ablation_segments(spec: PanelSpec, max_cells: Optional[int] = None) -> List[AblationSegment]:
    """Six boundary segments per hexagon tiling the working rectangle."""
    layout = hex_layout(spec, max_cells)
    if layout is None:
        return []

    segments: List[AblationSegment] = []
    for cx, cy in layout.centers():
        vertices = hexagon_vertices(cx, cy, layout.side)
        for i, (xa, ya) in enumerate(vertices):
            xb, yb = vertices[(i + 1) % 6]
            segments.append(AblationSegment(xa, ya, xb, yb))

    logger.debug(
        "Honeycomb segments built: cols=%d rows=%d cells=%d segments=%d",
        layout.cols,
        layout.rows,
        len(segments) // 6,
        len(segments),
    )
    return segments


def in_removed_edge(spec: PanelSpec, x: float, y: float) -> bool:
    edge = spec.edge
    return x < edge or x > spec.width_mm - edge or y < edge or y > spec.height_mm - edge


def electrode_at(spec: PanelSpec, x: float, y: float) -> Optional[str]:
    """``"hot"``, ``"cold"`` or None for a point inside the working margin."""
    edge = spec.edge
    bus = spec.busbar
    if spec.current_along_height:
        if x < edge or x > spec.width_mm - edge:
            return None
        along, length = y, spec.height_mm
    else:
        if y < edge or y > spec.height_mm - edge:
            return None
        along, length = x, spec.width_mm

    if edge <= along <= edge + bus:
        return "hot"
    if length - edge - bus <= along <= length - edge:
        return "cold"
    return None


def in_busbar_clearance(spec: PanelSpec, x: float, y: float) -> bool:
    clearance = spec.clearance
    if clearance <= 0:
        return False
    reserve = spec.edge + spec.busbar + clearance
    if spec.current_along_height:
        return y <= reserve or y >= spec.height_mm - reserve
    return x <= reserve or x >= spec.width_mm - reserve


def node_masks(spec: PanelSpec, xs: np.ndarray, ys: np.ndarray) -> NodeMasks:
    """Vectorised form of the point predicates over a ``(len(ys), len(xs))`` grid."""
    X, Y = np.meshgrid(xs, ys)
    edge = spec.edge
    bus = spec.busbar
    width = spec.width_mm
    height = spec.height_mm

    removed = (X < edge) | (X > width - edge) | (Y < edge) | (Y > height - edge)

    if spec.current_along_height:
        span = (X >= edge) & (X <= width - edge)
        along, length = Y, height
    else:
        span = (Y >= edge) & (Y <= height - edge)
        along, length = X, width

    hot = span & (along >= edge) & (along <= edge + bus)
    cold = span & (along >= length - edge - bus) & (along <= length - edge) & ~hot

    clearance = spec.clearance
    if clearance > 0:
        reserve = edge + bus + clearance
        near_bus = (along <= reserve) | (along >= length - reserve)
    else:
        near_bus = np.zeros_like(removed)

    return NodeMasks(removed_edge=removed, hot=hot, cold=cold, clearance=near_bus)


class ClipEdge(Enum):
    LEFT = "left"
    RIGHT = "right"
    TOP = "top"
    BOTTOM = "bottom"


def _inside(edge: ClipEdge, point: Point, rect: ClipRect) -> bool:
    x, y = point
    if edge is ClipEdge.LEFT:
        return x >= rect.xmin
    if edge is ClipEdge.RIGHT:
        return x <= rect.xmax
    if edge is ClipEdge.TOP:
        return y >= rect.ymin
    return y <= rect.ymax


def _intersect(edge: ClipEdge, a: Point, b: Point, rect: ClipRect) -> Point:
    (xa, ya), (xb, yb) = a, b
    if edge in (ClipEdge.LEFT, ClipEdge.RIGHT):
        x = rect.xmin if edge is ClipEdge.LEFT else rect.xmax
        t = (x - xa) / (xb - xa)
        return x, ya + t * (yb - ya)
    y = rect.ymin if edge is ClipEdge.TOP else rect.ymax
    t = (y - ya) / (yb - ya)
    return xa + t * (xb - xa), y


def clip_polygon(polygon: List[Point], rect: ClipRect) -> List[Point]:
    """Sutherland-Hodgman clip of a polygon against an axis-aligned rectangle."""
    output = list(polygon)
    for edge in ClipEdge:
        if not output:
            break
        source = output
        output = []
        previous = source[-1]
        for current in source:
            current_in = _inside(edge, current, rect)
            previous_in = _inside(edge, previous, rect)
            if current_in:
                if not previous_in:
                    output.append(_intersect(edge, previous, current, rect))
                output.append(current)
            elif previous_in:
                output.append(_intersect(edge, previous, current, rect))
            previous = current
    return output


def clipped_cell_outlines(spec: PanelSpec, max_cells: Optional[int] = None) -> List[List[Point]]:
    """Hexagon outlines cut to the working rectangle, for drawing exporters."""
    layout = hex_layout(spec, max_cells)
    if layout is None:
        return []
    clip = compute_clip_rect(spec)
    outlines: List[List[Point]] = []
    for cx, cy in layout.centers():
        clipped = clip_polygon(hexagon_vertices(cx, cy, layout.side), clip)
        if len(clipped) >= 3:
            outlines.append(clipped)
    return outlines

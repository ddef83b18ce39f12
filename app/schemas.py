"""Pydantic models for panel inputs, solver results and the design API."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AppBaseModel(BaseModel):
    """Base model with strict field handling."""

    model_config = ConfigDict(extra="forbid")


class FrozenModel(BaseModel):
    """Immutable value shared between solver threads."""

    model_config = ConfigDict(extra="forbid", frozen=True)


BusbarOrientation = Literal["top_bottom", "left_right"]
PatternType = Literal["honeycomb", "uniform"]
SolveErrorKind = Literal[
    "InvalidInput",
    "DegenerateMesh",
    "NoFreeNodes",
    "NoCurrentFlow",
    "Timeout",
]


class PanelSpec(FrozenModel):
    """Glass panel, busbar placement and honeycomb pattern, lengths in millimetres.

    Dimensions are not range-checked here: the solver reports non-positive
    values as an ``InvalidInput`` result instead of raising.
    """

    width_mm: float
    height_mm: float
    sheet_resistance: float
    edge_offset_mm: float = Field(default=0.0)
    busbar_width_mm: float = Field(default=10.0)
    busbar_orientation: BusbarOrientation = Field(default="top_bottom")
    busbar_clearance_mm: Optional[float] = Field(default=None)
    pattern: PatternType = Field(default="honeycomb")
    hex_side_mm: Optional[float] = Field(default=None)
    hex_gap_mm: Optional[float] = Field(default=None)
    hex_cols: Optional[int] = Field(default=None, ge=1)
    hex_rows: Optional[int] = Field(default=None, ge=1)
    mesh_step_mm: Optional[float] = Field(default=None)
    target_power_wm2: Optional[float] = Field(default=None)

    @property
    def is_honeycomb(self) -> bool:
        return self.pattern == "honeycomb"

    @property
    def current_along_height(self) -> bool:
        """True when busbars sit on the top/bottom edges."""
        return self.busbar_orientation == "top_bottom"

    @property
    def edge(self) -> float:
        return max(0.0, self.edge_offset_mm)

    @property
    def busbar(self) -> float:
        return max(0.0, self.busbar_width_mm)

    @property
    def gap(self) -> float:
        if self.hex_gap_mm is None or self.hex_gap_mm < 0:
            return 0.0
        return self.hex_gap_mm

    @property
    def clearance(self) -> float:
        """Busbar clearance, falling back to the gap when unset."""
        if self.busbar_clearance_mm is None:
            return self.gap
        return max(0.0, self.busbar_clearance_mm)

    def with_pattern(self, hex_side_mm: float, hex_gap_mm: float) -> "PanelSpec":
        """Copy of this panel with a honeycomb of the given side and gap."""
        return self.model_copy(
            update={
                "pattern": "honeycomb",
                "hex_side_mm": hex_side_mm,
                "hex_gap_mm": hex_gap_mm,
                "hex_cols": None,
                "hex_rows": None,
            }
        )


class SolveResult(FrozenModel):
    """Outcome of one field solve; ``status == "invalid"`` carries a reason."""

    status: Literal["ok", "invalid"]
    error: Optional[SolveErrorKind] = None
    reason: Optional[str] = None
    resistance_ohm: Optional[float] = None
    total_current_a: Optional[float] = None
    mesh_step_mm: Optional[float] = None
    nx: int = 0
    ny: int = 0
    segment_count: int = 0
    converged: bool = True
    cg_iterations: int = 0
    residual_norm: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def success(
        cls,
        resistance_ohm: float,
        total_current_a: float,
        mesh_step_mm: float,
        nx: int,
        ny: int,
        segment_count: int,
        converged: bool,
        cg_iterations: int,
        residual_norm: float,
    ) -> "SolveResult":
        return cls(
            status="ok",
            resistance_ohm=resistance_ohm,
            total_current_a=total_current_a,
            mesh_step_mm=mesh_step_mm,
            nx=nx,
            ny=ny,
            segment_count=segment_count,
            converged=converged,
            cg_iterations=cg_iterations,
            residual_norm=residual_norm,
        )

    @classmethod
    def invalid(
        cls,
        error: SolveErrorKind,
        reason: str,
        mesh_step_mm: Optional[float] = None,
        nx: int = 0,
        ny: int = 0,
        segment_count: int = 0,
    ) -> "SolveResult":
        return cls(
            status="invalid",
            error=error,
            reason=reason,
            mesh_step_mm=mesh_step_mm,
            nx=nx,
            ny=ny,
            segment_count=segment_count,
        )


class DesignEvaluation(FrozenModel):
    """Electrical figures for one panel design, from the solver or the estimator."""

    ok: bool
    reason: Optional[str] = None
    raw_resistance_ohm: float
    target_resistance_ohm: Optional[float] = None
    resistance_ohm: Optional[float] = None
    multiplier: Optional[float] = None
    power_density_wm2: Optional[float] = None
    deviation_percent: Optional[float] = None
    source: Literal["solver", "estimator"] = "solver"
    solve: Optional[SolveResult] = None


class CandidateDesign(FrozenModel):
    """One (island side, gap) design with its achieved electrical figures."""

    hex_side_mm: float
    hex_gap_mm: float
    multiplier: float
    achieved_resistance_ohm: float
    achieved_power_wm2: float
    deviation_percent: float
    within_tolerance: bool = False
    solver_verified: bool = False


class MaxAchievable(FrozenModel):
    max_multiplier: float
    max_power_wm2: float
    best_hex_side_mm: float
    best_hex_gap_mm: float


class ProductionResult(FrozenModel):
    """Search outcome plus guidance shown to the user."""

    designs: List[CandidateDesign]
    achievable: bool
    recommendation: str
    required_multiplier: Optional[float] = None
    max_multiplier: Optional[float] = None
    max_achievable_power_wm2: Optional[float] = None


class PanelRequest(AppBaseModel):
    panel: PanelSpec


class SolveRequest(AppBaseModel):
    panel: PanelSpec
    mesh_step_mm: Optional[float] = Field(default=None, gt=0)
    voltage_v: float = Field(default=1.0, gt=0)


class EvaluateRequest(AppBaseModel):
    panel: PanelSpec
    mesh_step_mm: Optional[float] = Field(default=None, gt=0)


class DesignSearchRequest(AppBaseModel):
    panel: PanelSpec
    top_n: Optional[int] = Field(default=None, ge=1, le=50)
    tolerance_percent: Optional[float] = Field(default=None, gt=0, le=100)

    @model_validator(mode="after")
    def validate_target(self) -> "DesignSearchRequest":
        target = self.panel.target_power_wm2
        if target is None or target <= 0:
            raise ValueError("panel.target_power_wm2 must be a positive number for a design search")
        return self


class ClipRectModel(AppBaseModel):
    xmin: float
    ymin: float
    xmax: float
    ymax: float


class GeometryResponse(AppBaseModel):
    """Ablation pattern exactly as the solver sees it."""

    clip: ClipRectModel
    cell_count: int
    segments: List[List[float]]
    outlines: List[List[List[float]]]


class CacheStatsResponse(AppBaseModel):
    hits: int
    misses: int
    size: int
    capacity: int

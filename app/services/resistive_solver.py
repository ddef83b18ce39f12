"""Finite-difference resistive network solver for ablated thin-film coatings.

Solves div(sigma grad V) = 0 on a regular grid with dx = dy = mesh step:

- coating edge conductance g0 = 1 / Rs (a grid square has resistance Rs)
- ablated nodes keep a small conductivity floor so the system stays non-singular
- busbars are ideal electrodes (Dirichlet), hot at U and cold at 0
- the removed edge margin is treated as ablated

The result is R = U / I with I the total current leaving the hot busbar.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from config import Settings, settings
from schemas import PanelSpec, SolveResult
from services.honeycomb_geometry import AblationSegment, TilingTooLargeError, build_ablation_segments, node_masks
from services.segment_index import SegmentIndex

logger = logging.getLogger(__name__)

# (dy, dx) for the four grid neighbours.
_NEIGHBOR_OFFSETS = ((0, 1), (0, -1), (1, 0), (-1, 0))


class SolverOptions(NamedTuple):
    default_mesh_step_mm: float
    sigma_ablation: float
    cg_tol: float
    cg_max_iter: int
    cg_tol_coarse: float
    cg_max_iter_coarse: int
    coarse_mesh_mm: float
    jacobi_precondition: bool
    max_grid_nodes: int
    max_cells: int

    @classmethod
    def from_settings(cls, cfg: Settings) -> "SolverOptions":
        return cls(
            default_mesh_step_mm=cfg.solver_default_mesh_step_mm,
            sigma_ablation=cfg.solver_sigma_ablation,
            cg_tol=cfg.solver_cg_tol,
            cg_max_iter=cfg.solver_cg_max_iter,
            cg_tol_coarse=cfg.solver_cg_tol_coarse,
            cg_max_iter_coarse=cfg.solver_cg_max_iter_coarse,
            coarse_mesh_mm=cfg.solver_coarse_mesh_mm,
            jacobi_precondition=cfg.solver_jacobi_precondition,
            max_grid_nodes=cfg.solver_max_grid_nodes,
            max_cells=cfg.geometry_max_cells,
        )

    def cg_limits(self, mesh_step_mm: float) -> Tuple[float, int]:
        """Looser, shorter CG runs for exploratory coarse meshes."""
        if mesh_step_mm >= self.coarse_mesh_mm:
            return self.cg_tol_coarse, self.cg_max_iter_coarse
        return self.cg_tol, self.cg_max_iter


class ConductivityGrid(NamedTuple):
    """Per-node fields indexed ``[iy, ix]``."""

    xs: np.ndarray
    ys: np.ndarray
    sigma: np.ndarray
    dirichlet: np.ndarray
    potential: np.ndarray
    hot: np.ndarray

    @property
    def nx(self) -> int:
        return int(self.xs.shape[0])

    @property
    def ny(self) -> int:
        return int(self.ys.shape[0])


class SparseSystem(NamedTuple):
    """Reduced system over the free nodes, CSR storage."""

    matrix: sp.csr_matrix
    rhs: np.ndarray
    unknown_index: np.ndarray

    @property
    def size(self) -> int:
        return int(self.rhs.shape[0])

    def multiply(self, vector: np.ndarray) -> np.ndarray:
        return self.matrix @ vector


class CgOutcome(NamedTuple):
    x: np.ndarray
    iterations: int
    residual_norm: float
    converged: bool


def _default_options() -> SolverOptions:
    return SolverOptions.from_settings(settings)


def _pair_slices(dy: int, dx: int) -> Tuple[Tuple[slice, slice], Tuple[slice, slice]]:
    """Slices selecting (node, neighbour) pairs for one stencil direction."""

    def axis(d: int) -> Tuple[slice, slice]:
        if d > 0:
            return slice(None, -d), slice(d, None)
        if d < 0:
            return slice(-d, None), slice(None, d)
        return slice(None), slice(None)

    src_y, dst_y = axis(dy)
    src_x, dst_x = axis(dx)
    return (src_y, src_x), (dst_y, dst_x)


def grid_node_counts(width_mm: float, height_mm: float, mesh_step_mm: float) -> Tuple[int, int]:
    return math.ceil(width_mm / mesh_step_mm) + 1, math.ceil(height_mm / mesh_step_mm) + 1


def build_conductivity_grid(
    spec: PanelSpec,
    mesh_step_mm: float,
    voltage_v: float,
    segments: Sequence[AblationSegment],
    sigma_ablation: float,
) -> ConductivityGrid:
    """Classify every grid node: margin, electrode, clearance strip, ablation band or coating."""
    nx, ny = grid_node_counts(spec.width_mm, spec.height_mm, mesh_step_mm)
    xs = np.arange(nx, dtype=float) * mesh_step_mm
    ys = np.arange(ny, dtype=float) * mesh_step_mm
    masks = node_masks(spec, xs, ys)

    sigma = np.ones((ny, nx), dtype=float)
    sigma[masks.removed_edge] = sigma_ablation

    hot = masks.hot & ~masks.removed_edge
    cold = masks.cold & ~masks.removed_edge
    dirichlet = hot | cold
    potential = np.zeros((ny, nx), dtype=float)
    potential[hot] = voltage_v

    gap = spec.gap
    if spec.is_honeycomb and gap > 0 and segments:
        index = SegmentIndex.build(segments, gap / 2.0)
        candidates = ~(masks.removed_edge | dirichlet | masks.clearance)
        x_list = xs.tolist()
        y_list = ys.tolist()
        ablated = 0
        for iy, ix in np.argwhere(candidates).tolist():
            if index.is_near_any(x_list[ix], y_list[iy]):
                sigma[iy, ix] = sigma_ablation
                ablated += 1
        logger.debug(
            "Ablation classification: candidates=%d ablated=%d buckets=%d",
            int(candidates.sum()),
            ablated,
            index.bucket_count,
        )

    return ConductivityGrid(xs=xs, ys=ys, sigma=sigma, dirichlet=dirichlet, potential=potential, hot=hot)


def assemble_system(grid: ConductivityGrid, sheet_resistance: float) -> Optional[SparseSystem]:
    """Assemble the 5-point conductance matrix over free nodes; None when no node is free."""
    free = ~grid.dirichlet
    unknown_count = int(free.sum())
    if unknown_count == 0:
        return None

    unknown_index = np.full(grid.sigma.shape, -1, dtype=np.int64)
    unknown_index[free] = np.arange(unknown_count, dtype=np.int64)

    g0 = 1.0 / sheet_resistance
    diag = np.zeros(unknown_count, dtype=float)
    rhs = np.zeros(unknown_count, dtype=float)
    rows: List[np.ndarray] = []
    cols: List[np.ndarray] = []
    vals: List[np.ndarray] = []

    for dy, dx in _NEIGHBOR_OFFSETS:
        src, dst = _pair_slices(dy, dx)
        src_free = free[src]
        if not src_free.any():
            continue

        g = g0 * 0.5 * (grid.sigma[src] + grid.sigma[dst])
        g = g[src_free]
        row = unknown_index[src][src_free]
        diag[row] += g

        dst_fixed = grid.dirichlet[dst][src_free]
        if dst_fixed.any():
            rhs[row[dst_fixed]] += g[dst_fixed] * grid.potential[dst][src_free][dst_fixed]

        dst_free = ~dst_fixed
        rows.append(row[dst_free])
        cols.append(unknown_index[dst][src_free][dst_free])
        vals.append(-g[dst_free])

    diagonal_index = np.arange(unknown_count, dtype=np.int64)
    rows.append(diagonal_index)
    cols.append(diagonal_index)
    vals.append(diag)

    matrix = sp.csr_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
        shape=(unknown_count, unknown_count),
    )
    return SparseSystem(matrix=matrix, rhs=rhs, unknown_index=unknown_index)


def cg_solve(
    matvec: Callable[[np.ndarray], np.ndarray],
    b: np.ndarray,
    tol: float = 1e-10,
    maxiter: int = 5000,
    inv_diag: Optional[np.ndarray] = None,
) -> CgOutcome:
    """Conjugate Gradient from x = 0 for SPD systems, optionally Jacobi-preconditioned.

    Convergence is judged on the 2-norm of the unpreconditioned residual. When
    ``maxiter`` is reached the last iterate is returned with ``converged=False``.
    """
    b = np.asarray(b, dtype=float)
    x = np.zeros_like(b)
    r = b.copy()
    residual = float(np.linalg.norm(r))
    if residual < tol:
        return CgOutcome(x, 0, residual, True)

    z = r * inv_diag if inv_diag is not None else r
    p = z.copy()
    rz_old = float(r @ z)

    iterations = 0
    for iterations in range(1, maxiter + 1):
        Ap = matvec(p)
        denom = float(p @ Ap)
        if denom <= 0.0:
            break
        alpha = rz_old / denom
        x += alpha * p
        r -= alpha * Ap
        residual = float(np.linalg.norm(r))
        if residual < tol:
            return CgOutcome(x, iterations, residual, True)

        z = r * inv_diag if inv_diag is not None else r
        rz_new = float(r @ z)
        p = z + (rz_new / rz_old) * p
        rz_old = rz_new

    return CgOutcome(x, iterations, residual, False)


def node_potentials(grid: ConductivityGrid, solution: np.ndarray) -> np.ndarray:
    """Full ``[iy, ix]`` potential field from the free-node solution."""
    field = grid.potential.copy()
    field[~grid.dirichlet] = solution
    return field


def extract_current(grid: ConductivityGrid, field: np.ndarray, sheet_resistance: float) -> float:
    """Current leaving hot electrode nodes towards lower-potential neighbours."""
    g0 = 1.0 / sheet_resistance
    total = 0.0
    for dy, dx in _NEIGHBOR_OFFSETS:
        src, dst = _pair_slices(dy, dx)
        drop = field[src] - field[dst]
        g = g0 * 0.5 * (grid.sigma[src] + grid.sigma[dst])
        outflow = grid.hot[src] & (drop > 0.0)
        total += float(np.sum(g[outflow] * drop[outflow]))
    return total


def _validate(spec: PanelSpec, voltage_v: float) -> Optional[str]:
    for name, value in (
        ("width", spec.width_mm),
        ("height", spec.height_mm),
        ("sheet resistance", spec.sheet_resistance),
        ("voltage", voltage_v),
    ):
        if not math.isfinite(value) or value <= 0:
            return f"{name} must be positive (got {value})"
    edge = spec.edge
    if 2.0 * edge >= spec.width_mm or 2.0 * edge >= spec.height_mm:
        return f"edge margin {edge} mm leaves no working region"
    return None


def solve(
    spec: PanelSpec,
    mesh_step_mm: Optional[float] = None,
    voltage_v: float = 1.0,
    options: Optional[SolverOptions] = None,
) -> SolveResult:
    """Equivalent resistance between the busbars; failures come back as invalid results."""
    opts = options or _default_options()

    problem = _validate(spec, voltage_v)
    if problem is not None:
        return SolveResult.invalid("InvalidInput", problem)

    dx = mesh_step_mm if mesh_step_mm is not None else spec.mesh_step_mm
    if dx is None:
        dx = opts.default_mesh_step_mm
    if not math.isfinite(dx) or dx <= 0:
        return SolveResult.invalid("DegenerateMesh", f"mesh step must be positive (got {dx})")
    if (spec.width_mm / dx + 1.0) * (spec.height_mm / dx + 1.0) > opts.max_grid_nodes:
        return SolveResult.invalid(
            "InvalidInput",
            f"mesh too fine for panel: step {dx} mm needs more than {opts.max_grid_nodes} nodes",
            mesh_step_mm=dx,
        )

    nx, ny = grid_node_counts(spec.width_mm, spec.height_mm, dx)
    if nx < 3 or ny < 3:
        return SolveResult.invalid(
            "DegenerateMesh",
            f"degenerate mesh: {nx}x{ny} nodes, need at least 3 per axis",
            mesh_step_mm=dx,
            nx=nx,
            ny=ny,
        )
    if nx * ny > opts.max_grid_nodes:
        return SolveResult.invalid(
            "InvalidInput",
            f"mesh too fine for panel: {nx}x{ny} nodes exceed the limit of {opts.max_grid_nodes}",
            mesh_step_mm=dx,
            nx=nx,
            ny=ny,
        )

    try:
        segments = build_ablation_segments(spec, opts.max_cells) if spec.is_honeycomb else []
    except TilingTooLargeError as exc:
        return SolveResult.invalid("InvalidInput", str(exc), mesh_step_mm=dx, nx=nx, ny=ny)
    grid = build_conductivity_grid(spec, dx, voltage_v, segments, opts.sigma_ablation)

    system = assemble_system(grid, spec.sheet_resistance)
    if system is None:
        return SolveResult.invalid(
            "NoFreeNodes",
            "no free nodes: the whole grid is covered by electrodes",
            mesh_step_mm=dx,
            nx=nx,
            ny=ny,
            segment_count=len(segments),
        )

    tol, maxiter = opts.cg_limits(dx)
    inv_diag = 1.0 / system.matrix.diagonal() if opts.jacobi_precondition else None
    outcome = cg_solve(system.multiply, system.rhs, tol=tol, maxiter=maxiter, inv_diag=inv_diag)
    if outcome.converged:
        logger.debug(
            "CG converged in %d iterations, resid=%.3e, unknowns=%d",
            outcome.iterations,
            outcome.residual_norm,
            system.size,
        )
    else:
        logger.warning(
            "CG stopped at %d iterations without converging, resid=%.3e (tol=%.1e), using last iterate",
            outcome.iterations,
            outcome.residual_norm,
            tol,
        )

    field = node_potentials(grid, outcome.x)
    current = extract_current(grid, field, spec.sheet_resistance)
    if not current > 0.0:
        return SolveResult.invalid(
            "NoCurrentFlow",
            "no current flow, check geometry and isolation zones",
            mesh_step_mm=dx,
            nx=nx,
            ny=ny,
            segment_count=len(segments),
        )

    return SolveResult.success(
        resistance_ohm=voltage_v / current,
        total_current_a=current,
        mesh_step_mm=dx,
        nx=nx,
        ny=ny,
        segment_count=len(segments),
        converged=outcome.converged,
        cg_iterations=outcome.iterations,
        residual_norm=outcome.residual_norm,
    )

"""App configuration for the solver, cache, search and API."""

from __future__ import annotations

from dataclasses import dataclass
import os


def _to_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    solver_default_mesh_step_mm: float
    solver_sigma_ablation: float
    solver_cg_tol: float
    solver_cg_max_iter: int
    solver_cg_tol_coarse: float
    solver_cg_max_iter_coarse: int
    solver_coarse_mesh_mm: float
    solver_jacobi_precondition: bool
    solver_max_grid_nodes: int
    geometry_max_cells: int

    solve_cache_capacity: int
    solve_cache_resolution: int

    mains_voltage_v: float

    search_top_n: int
    search_tolerance_percent: float
    search_auto_expand: bool
    search_solver_top_k: int
    search_max_scan_top_k: int
    search_mesh_step_mm: float
    search_workers: int

    base_a_min: float
    base_a_max: float
    base_a_step: float
    base_gap_min: float
    base_gap_max: float
    base_gap_step: float
    ext_a_min: float
    ext_a_max: float
    ext_a_step: float
    ext_gap_min: float
    ext_gap_max: float
    ext_gap_step: float

    estimator_model: str
    estimator_pattern: str
    estimator_alpha: float
    estimator_tortuosity_coeff: float
    estimator_min_conduct_fraction: float
    estimator_legacy_coeff: float
    estimator_scale: float

    api_max_concurrency: int
    api_queue_wait_seconds: float
    api_timeout_seconds: float
    log_level: str

    @staticmethod
    def from_env() -> "Settings":
        """Create settings from environment variables with defaults."""
        return Settings(
            solver_default_mesh_step_mm=_float("SOLVER_DEFAULT_MESH_STEP_MM", 2.0),
            # Near-zero floor keeps the reduced system non-singular.
            solver_sigma_ablation=_float("SOLVER_SIGMA_ABLATION", 1e-6),
            solver_cg_tol=_float("SOLVER_CG_TOL", 1e-8),
            solver_cg_max_iter=max(1, _int("SOLVER_CG_MAX_ITER", 4000)),
            solver_cg_tol_coarse=_float("SOLVER_CG_TOL_COARSE", 3e-8),
            solver_cg_max_iter_coarse=max(1, _int("SOLVER_CG_MAX_ITER_COARSE", 1500)),
            solver_coarse_mesh_mm=_float("SOLVER_COARSE_MESH_MM", 4.0),
            solver_jacobi_precondition=_to_bool(os.getenv("SOLVER_JACOBI_PRECONDITION"), True),
            solver_max_grid_nodes=max(9, _int("SOLVER_MAX_GRID_NODES", 4_000_000)),
            geometry_max_cells=max(1, _int("GEOMETRY_MAX_CELLS", 200_000)),
            solve_cache_capacity=max(1, _int("SOLVE_CACHE_CAPACITY", 256)),
            solve_cache_resolution=max(1, _int("SOLVE_CACHE_RESOLUTION", 1000)),
            mains_voltage_v=_float("MAINS_VOLTAGE_V", 220.0),
            search_top_n=max(1, _int("SEARCH_TOP_N", 5)),
            search_tolerance_percent=_float("SEARCH_TOLERANCE_PERCENT", 10.0),
            search_auto_expand=_to_bool(os.getenv("SEARCH_AUTO_EXPAND"), True),
            search_solver_top_k=max(1, _int("SEARCH_SOLVER_TOP_K", 30)),
            search_max_scan_top_k=max(1, _int("SEARCH_MAX_SCAN_TOP_K", 20)),
            search_mesh_step_mm=_float("SEARCH_MESH_STEP_MM", 4.0),
            search_workers=max(1, _int("SEARCH_WORKERS", 4)),
            base_a_min=_float("SEARCH_BASE_A_MIN", 10.0),
            base_a_max=_float("SEARCH_BASE_A_MAX", 70.0),
            base_a_step=_float("SEARCH_BASE_A_STEP", 1.0),
            base_gap_min=_float("SEARCH_BASE_GAP_MIN", 0.5),
            base_gap_max=_float("SEARCH_BASE_GAP_MAX", 10.0),
            base_gap_step=_float("SEARCH_BASE_GAP_STEP", 0.5),
            ext_a_min=_float("SEARCH_EXT_A_MIN", 5.0),
            ext_a_max=_float("SEARCH_EXT_A_MAX", 80.0),
            ext_a_step=_float("SEARCH_EXT_A_STEP", 0.5),
            ext_gap_min=_float("SEARCH_EXT_GAP_MIN", 0.5),
            ext_gap_max=_float("SEARCH_EXT_GAP_MAX", 12.0),
            ext_gap_step=_float("SEARCH_EXT_GAP_STEP", 0.5),
            estimator_model=os.getenv("ESTIMATOR_MODEL", "physical").strip().lower() or "physical",
            estimator_pattern=os.getenv("ESTIMATOR_PATTERN", "islands").strip().lower() or "islands",
            estimator_alpha=_float("ESTIMATOR_ALPHA", 1.0),
            estimator_tortuosity_coeff=_float("ESTIMATOR_TORTUOSITY_COEFF", 1.5),
            estimator_min_conduct_fraction=_float("ESTIMATOR_MIN_CONDUCT_FRACTION", 0.10),
            estimator_legacy_coeff=_float("ESTIMATOR_LEGACY_COEFF", 0.35),
            estimator_scale=_float("ESTIMATOR_SCALE", 1.0),
            api_max_concurrency=max(1, _int("API_MAX_CONCURRENCY", 2)),
            api_queue_wait_seconds=max(0.1, _float("API_QUEUE_WAIT_SECONDS", 8.0)),
            api_timeout_seconds=max(1.0, _float("API_TIMEOUT_SECONDS", 90.0)),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


settings = Settings.from_env()

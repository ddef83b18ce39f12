"""FastAPI entrypoint for the heated-glass honeycomb calculator.

Run locally with:
    uvicorn main:app --app-dir app --reload
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from typing import Any, Callable, TypeVar

from fastapi import FastAPI, HTTPException

from config import settings
from logging_config import setup_logging
from schemas import (
    CacheStatsResponse,
    ClipRectModel,
    DesignEvaluation,
    DesignSearchRequest,
    EvaluateRequest,
    GeometryResponse,
    MaxAchievable,
    PanelRequest,
    ProductionResult,
    SolveRequest,
    SolveResult,
)
from services.candidate_search import CandidateSearch, SearchOptions
from services.engineering import EngineeringFacade
from services.estimator import HoneycombEstimator
from services.honeycomb_geometry import (
    TilingTooLargeError,
    build_ablation_segments,
    clipped_cell_outlines,
    compute_clip_rect,
)
from services.recommendation import build_production_result
from services.solve_cache import SolveCache

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Heated Glass Honeycomb API", version="0.1.0")

solve_cache = SolveCache(settings.solve_cache_capacity, settings.solve_cache_resolution)
facade = EngineeringFacade(solve_cache, settings)
estimator = HoneycombEstimator.from_settings(settings)
search_options = SearchOptions.from_settings(settings)

SOLVE_SEMAPHORE = asyncio.Semaphore(settings.api_max_concurrency)

T = TypeVar("T")


async def _acquire_slot() -> None:
    try:
        await asyncio.wait_for(SOLVE_SEMAPHORE.acquire(), timeout=settings.api_queue_wait_seconds)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=429,
            detail=(
                "Server busy. "
                f"Max concurrency={settings.api_max_concurrency}, "
                f"queue wait>{settings.api_queue_wait_seconds:.0f}s. "
                "Try again in a moment."
            ),
        )


async def _run_with_deadline(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking computation in a worker thread under the API deadline."""
    return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=settings.api_timeout_seconds)


@app.get("/health")
@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/solve", response_model=SolveResult)
@app.post("/api/solve", response_model=SolveResult)
async def solve(request: SolveRequest) -> SolveResult:
    """Equivalent resistance between the busbars; failures come back with ``status="invalid"``."""
    await _acquire_slot()
    try:
        return await _run_with_deadline(facade.solve, request.panel, request.mesh_step_mm, request.voltage_v)
    except asyncio.TimeoutError:
        logger.warning("Solve timed out after %.0fs", settings.api_timeout_seconds)
        return SolveResult.invalid(
            "Timeout",
            f"solve exceeded {settings.api_timeout_seconds:.0f}s, use a coarser mesh step",
            mesh_step_mm=facade.resolve_mesh_step(request.panel, request.mesh_step_mm),
        )
    finally:
        SOLVE_SEMAPHORE.release()


@app.post("/evaluate", response_model=DesignEvaluation)
@app.post("/api/evaluate", response_model=DesignEvaluation)
async def evaluate(request: EvaluateRequest) -> DesignEvaluation:
    await _acquire_slot()
    try:
        return await _run_with_deadline(facade.evaluate, request.panel, request.mesh_step_mm)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=504,
            detail=f"Evaluation timeout (>{settings.api_timeout_seconds:.0f}s). Use a coarser mesh step.",
        )
    finally:
        SOLVE_SEMAPHORE.release()


@app.post("/estimate", response_model=DesignEvaluation)
@app.post("/api/estimate", response_model=DesignEvaluation)
def estimate(request: PanelRequest) -> DesignEvaluation:
    """Estimator-only figures, no field solve."""
    return facade.estimate_manual(request.panel, estimator)


@app.post("/designs", response_model=ProductionResult)
@app.post("/api/designs", response_model=ProductionResult)
async def designs(request: DesignSearchRequest) -> ProductionResult:
    options = search_options
    if request.top_n is not None:
        options = replace(options, top_n=request.top_n)
    if request.tolerance_percent is not None:
        options = replace(options, tolerance_percent=request.tolerance_percent)
    search = CandidateSearch(facade, estimator, options)

    await _acquire_slot()
    try:
        return await _run_with_deadline(build_production_result, search, request.panel)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=504,
            detail=f"Design search timeout (>{settings.api_timeout_seconds:.0f}s). Narrow the search ranges.",
        )
    finally:
        SOLVE_SEMAPHORE.release()


@app.post("/max-achievable", response_model=MaxAchievable)
@app.post("/api/max-achievable", response_model=MaxAchievable)
async def max_achievable(request: PanelRequest) -> MaxAchievable:
    search = CandidateSearch(facade, estimator, search_options)
    await _acquire_slot()
    try:
        return await _run_with_deadline(search.estimate_max_achievable, request.panel)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=504,
            detail=f"Search timeout (>{settings.api_timeout_seconds:.0f}s).",
        )
    finally:
        SOLVE_SEMAPHORE.release()


@app.post("/geometry", response_model=GeometryResponse)
@app.post("/api/geometry", response_model=GeometryResponse)
def geometry(request: PanelRequest) -> GeometryResponse:
    """Ablation segments and clipped cell outlines, identical to what the solver uses."""
    panel = request.panel
    if not panel.is_honeycomb:
        raise HTTPException(status_code=400, detail="Geometry export requires a honeycomb pattern.")

    clip = compute_clip_rect(panel)
    try:
        segments = build_ablation_segments(panel)
        outlines = clipped_cell_outlines(panel)
    except TilingTooLargeError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return GeometryResponse(
        clip=ClipRectModel(xmin=clip.xmin, ymin=clip.ymin, xmax=clip.xmax, ymax=clip.ymax),
        cell_count=len(outlines),
        segments=[list(segment) for segment in segments],
        outlines=[[list(point) for point in outline] for outline in outlines],
    )


@app.get("/cache", response_model=CacheStatsResponse)
@app.get("/api/cache", response_model=CacheStatsResponse)
def cache_stats() -> CacheStatsResponse:
    return CacheStatsResponse(**solve_cache.stats())


@app.delete("/cache", response_model=CacheStatsResponse)
@app.delete("/api/cache", response_model=CacheStatsResponse)
def clear_cache() -> CacheStatsResponse:
    solve_cache.clear()
    logger.info("Solve cache cleared")
    return CacheStatsResponse(**solve_cache.stats())

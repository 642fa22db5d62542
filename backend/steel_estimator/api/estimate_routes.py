"""Estimate routes — live totals, category comparison, Bid Coach."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from steel_estimator.models.estimate_models import EstimateParameters
from steel_estimator.services.aggregation_engine import METRIC_LABOR_HOURS, LineAggregator, active_lines
from steel_estimator.services.benchmark_engine import BenchmarkEngine, compare_categories
from steel_estimator.services.coach_engine import (
    MODE_PROTECT,
    CoachSession,
    CommitError,
    CommitInProgressError,
    EmptySelectionError,
)
from steel_estimator.services.consumables_engine import JOB_STANDARD
from steel_estimator.services.recalc_engine import ParameterizedRecalculator, allowance_lines, recalculate

router = APIRouter(prefix="/api/estimates", tags=["Estimates"])
logger = logging.getLogger("steel-estimator.api")


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class SummaryRequest(BaseModel):
    parameters: Optional[EstimateParameters] = None
    job_type: str = JOB_STANDARD


class ParameterUpdate(BaseModel):
    path: str = Field(..., description="Dotted parameter path, e.g. labor_efficiency.weld")
    value: float
    reason: Optional[str] = None
    user_id: str = "system"
    user_name: str = ""


class CoachApplyRequest(BaseModel):
    mode: str = MODE_PROTECT
    category_keys: Optional[List[str]] = None   # None keeps the session's current selection


# ─── Dependencies ────────────────────────────────────────────────────────────

def get_store(request: Request):
    return request.app.state.store


def _coach_sessions(request: Request) -> Dict[str, CoachSession]:
    return request.app.state.coach_sessions


def _live_sessions(request: Request) -> Dict[str, ParameterizedRecalculator]:
    return request.app.state.live_sessions


async def _benchmarks(store, project_id: str, metric: str, markup):
    line_sets = await store.fleet_line_sets()
    projects = await store.list_projects(include_archived=True)
    return BenchmarkEngine(markup).benchmark(line_sets, projects, metric, current_project_id=project_id)


async def _live_session(request: Request, store, project_id: str) -> ParameterizedRecalculator:
    sessions = _live_sessions(request)
    lines = await store.list_lines(project_id)
    session = sessions.get(project_id)
    if session is None:
        settings = await store.get_company_settings()
        session = ParameterizedRecalculator(
            lines,
            company_settings=settings,
            parameters=EstimateParameters.from_company_settings(settings),
            audit_sink=store,
            project_id=project_id,
        )
        sessions[project_id] = session
    else:
        session.set_lines(lines)
    return session


# ─── Live totals ─────────────────────────────────────────────────────────────

@router.post("/{project_id}/summary")
async def estimate_summary(project_id: str, body: SummaryRequest, store=Depends(get_store)):
    lines = await store.list_lines(project_id)
    settings = await store.get_company_settings()
    parameters = body.parameters or EstimateParameters.from_company_settings(settings)
    totals = recalculate(lines, parameters, settings, body.job_type)
    return {
        "project_id": project_id,
        "line_count": len(active_lines(lines)),
        "parameters": parameters.model_dump(),
        "totals": totals.to_dict(),
        "allowance_lines": [line.to_record() for line in allowance_lines(lines)],
    }


@router.post("/{project_id}/parameters")
async def update_parameter(project_id: str, body: ParameterUpdate, request: Request, store=Depends(get_store)):
    session = await _live_session(request, store, project_id)
    session.user_id = body.user_id
    session.user_name = body.user_name
    try:
        entry = await session.update_parameter(body.path, body.value, body.reason)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "adjustment": entry.to_record(),
        "parameters": session.parameters.model_dump(),
        "totals": session.totals.to_dict(),
    }


@router.post("/{project_id}/parameters/reset")
async def reset_parameters(project_id: str, request: Request, store=Depends(get_store)):
    session = await _live_session(request, store, project_id)
    entry = session.reset_parameters()
    await session.mirror(entry)
    return {
        "adjustment": entry.to_record(),
        "parameters": session.parameters.model_dump(),
        "totals": session.totals.to_dict(),
    }


@router.get("/{project_id}/adjustments")
async def list_adjustments(project_id: str, request: Request, store=Depends(get_store)):
    session = await _live_session(request, store, project_id)
    return {"project_id": project_id, "adjustments": [entry.to_record() for entry in session.history]}


# ─── Category comparison ─────────────────────────────────────────────────────

@router.get("/{project_id}/category-comparison")
async def category_comparison(
    project_id: str,
    metric: str = Query(METRIC_LABOR_HOURS),
    store=Depends(get_store),
):
    settings = await store.get_company_settings()
    markup = settings.markup_settings
    try:
        current = LineAggregator(markup).aggregate(await store.list_lines(project_id), metric)
        benchmarks = await _benchmarks(store, project_id, metric, markup)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    rows = compare_categories(current.per_ton, benchmarks.all, metric)
    return {
        "project_id": project_id,
        "current": current.to_dict(),
        "benchmarks": benchmarks.to_dict(),
        "rows": [row.to_dict() for row in rows],
    }


# ─── Bid Coach ───────────────────────────────────────────────────────────────

def _coach_payload(session: CoachSession) -> Dict[str, Any]:
    benchmarks = session.benchmarks
    return {
        "project_id": session.project_id,
        "mode": session.mode,
        "state": session.state.value,
        "labor_rate": session.labor_rate,
        "won_count": benchmarks.won_count if benchmarks else 0,
        "lost_count": benchmarks.lost_count if benchmarks else 0,
        "recommendations": [rec.to_dict() for rec in session.recommendations],
        "selection": dict(session.selection),
        "status": session.status(),
        "summary": session.summary(),
        "last_error": session.last_error,
    }


async def _refreshed_coach(request: Request, store, project_id: str, mode: str) -> CoachSession:
    sessions = _coach_sessions(request)
    settings = await store.get_company_settings()
    session = sessions.get(project_id)
    if session is None:
        session = CoachSession(project_id, mode=mode, company_settings=settings)
        sessions[project_id] = session
    session.company_settings = settings
    if session.is_applying:
        return session
    benchmarks = await _benchmarks(store, project_id, METRIC_LABOR_HOURS, settings.markup_settings)
    session.refresh(await store.list_lines(project_id), benchmarks, mode)
    return session


@router.get("/{project_id}/coach")
async def coach(
    project_id: str,
    request: Request,
    mode: str = Query(MODE_PROTECT),
    store=Depends(get_store),
):
    try:
        session = await _refreshed_coach(request, store, project_id, mode)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _coach_payload(session)


@router.post("/{project_id}/coach/apply")
async def apply_coach(project_id: str, body: CoachApplyRequest, request: Request, store=Depends(get_store)):
    try:
        session = await _refreshed_coach(request, store, project_id, body.mode)
        if session.is_applying:
            raise CommitInProgressError("A Bid Coach apply is already in progress.")
        if body.category_keys is not None:
            session.set_selection(body.category_keys)
        created = await session.apply(store)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmptySelectionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CommitInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CommitError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"line": created, "coach": _coach_payload(session)}

"""
Run History Routes.

Runs are kept in memory for inspection after they finish.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException
import logging

from flowagent.api.routes.flows import run_record_response
from flowagent.api.schemas import ErrorResponse, RunListResponse, RunRecordResponse
from flowagent.storage.memory import run_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["Runs"])


@router.get("", response_model=RunListResponse)
async def list_runs(flow_id: Optional[str] = None) -> RunListResponse:
    """List all runs, optionally filtered by flow_id."""
    if flow_id:
        runs = await run_storage.list_by_flow(flow_id)
    else:
        runs = await run_storage.list_all()

    records = [run_record_response(r) for r in runs]
    return RunListResponse(runs=records, total=len(records))


@router.get(
    "/{run_id}",
    response_model=RunRecordResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str) -> RunRecordResponse:
    """
    Get a run record.

    Use this to poll the status of async executions.
    """
    stored = await run_storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return run_record_response(stored)

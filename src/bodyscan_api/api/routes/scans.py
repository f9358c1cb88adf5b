"""Daily scan pipeline API routes."""

import logging

from fastapi import APIRouter, Path, Response, status

from bodyscan_api.api.dependencies import ScanPipelineDep
from bodyscan_api.models.pipeline import CancelResponse, PipelineOutcome, ProcessScanRequest
from bodyscan_api.models.scan import SCAN_DATE_PATTERN

router = APIRouter()
logger = logging.getLogger(__name__)

DatePath = Path(..., pattern=SCAN_DATE_PATTERN, description="Scan day (YYYY-MM-DD)")


@router.post("/process", response_model=PipelineOutcome)
async def process_scan(
    request: ProcessScanRequest,
    pipeline: ScanPipelineDep,
    response: Response,
):
    """
    Process (or resume) the daily scan pipeline for a user's day.

    Request body:
    - **scan_id**: Scan whose photos are uploaded
    - **user_id**: Scan owner
    - **date**: Scan day (YYYY-MM-DD)
    - **wait**: Block until finished (default) or return immediately

    Repeated calls for the same user and day never start a second run;
    they attach to the active one or return the stored result.
    """
    outcome = await pipeline.process_scan(
        user_id=request.user_id,
        date=request.date,
        scan_id=request.scan_id,
        wait=request.wait,
    )
    if not outcome.is_finished:
        response.status_code = status.HTTP_202_ACCEPTED
    return outcome


@router.get("/{user_id}/{date}/outcome", response_model=PipelineOutcome)
async def get_outcome(
    pipeline: ScanPipelineDep,
    user_id: str,
    date: str = DatePath,
):
    """
    Get the current pipeline outcome for a user's day.

    Used to poll runs started with `wait=false`.
    """
    return await pipeline.get_outcome(user_id, date)


@router.post("/{user_id}/{date}/cancel", response_model=CancelResponse)
async def cancel_run(
    pipeline: ScanPipelineDep,
    user_id: str,
    date: str = DatePath,
):
    """
    Cancel the active run for a user's day (operator action).

    The scan is marked failed with reason "cancelled by operator" and
    nothing is published. Processing the scan again resumes it.
    """
    logger.info(f"Operator cancel for {user_id}/{date}")
    return await pipeline.cancel(user_id, date)

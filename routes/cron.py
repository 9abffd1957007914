from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from deps.api_key import require_api_key
from fundrelease.workers import payout_scheduler, transfer_scheduler
from fundrelease.workers.batch import BatchStartError


logger = logging.getLogger("fundrelease.cron")

router = APIRouter(prefix="/v1/cron", tags=["cron"], dependencies=[Depends(require_api_key)])


def _run(batch_name: str, runner):
    try:
        summary = runner()
    except BatchStartError as exc:
        logger.error("%s batch failed to start: %s", batch_name, exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": f"{batch_name.upper()}_BATCH_FAILED_TO_START", "details": str(exc)},
        )
    # Per-record failures live in the summary; the run itself succeeded.
    return {"success": True, "summary": summary.to_dict()}


@router.post("/process-expert-transfers")
def process_expert_transfers():
    return _run("transfer", transfer_scheduler.run_transfer_batch)


@router.post("/process-pending-payouts")
def process_pending_payouts():
    return _run("payout", payout_scheduler.run_payout_batch)

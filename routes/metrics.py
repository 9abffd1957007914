from fastapi import APIRouter
from fastapi.responses import Response

from services.metrics import render_prometheus

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def metrics():
    # release_batch_runs_total, transfer/payout attempt counters, http_requests_total
    return Response(content=render_prometheus(), media_type="text/plain; version=0.0.4")

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from alertcore.apps.api.deps import require_token
from alertcore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from alertcore.apps.api.response import SuccessEnvelope, success_response
from alertcore.services.telemetry import counters_snapshot, p95_latency


router = APIRouter(
    prefix="/ops",
    tags=["ops"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(require_token)],
)


class OpsMetricsResponse(BaseModel):
    # Process-local counters; each API replica reports its own.
    counters: dict[str, int]
    ingest_p95_ms: float | None
    window_s: int


@router.get("/metrics", response_model=SuccessEnvelope[OpsMetricsResponse])
async def ops_metrics(request: Request, window_s: int = Query(default=300, ge=1, le=86400)) -> dict:
    payload = OpsMetricsResponse(
        counters=counters_snapshot(),
        ingest_p95_ms=p95_latency(window_s, path_prefix="/v1/alerts/ingest"),
        window_s=window_s,
    )
    return success_response(request=request, data=payload)

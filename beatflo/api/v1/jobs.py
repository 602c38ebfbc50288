"""Job control API: cancel running jobs of any kind."""

from fastapi import APIRouter, Depends, HTTPException

from beatflo.api.v1.deps import get_services
from beatflo.services import Services

router = APIRouter()


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, services: Services = Depends(get_services)):
    """Cancel a job's orchestration and kill its child process.

    The job ends in the error state once the cancellation is delivered.
    Returns ``cancelled: false`` when the job had already finished.
    """
    record = services.registry.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")

    cancelled = services.dispatcher.cancel(job_id)
    return {
        "id": job_id,
        "kind": record.kind.value,
        "cancelled": cancelled,
    }

"""Waveform API: cached, approximate loudness envelopes for the player."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from beatflo.api.v1.deps import get_services
from beatflo.jobs.models import JobKind, JobStatus
from beatflo.pipelines import waveform
from beatflo.services import Services
from beatflo.tools.ytdlp import video_id, youtube_url

router = APIRouter()


class WaveformStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: Optional[str] = None
    video_id: Optional[str] = Field(None, alias="videoId")


@router.post("/waveform")
async def start_waveform(
    request: WaveformStartRequest,
    services: Services = Depends(get_services),
):
    """Return a cached waveform immediately, or start (or join) a job for it."""
    if not request.url and not request.video_id:
        raise HTTPException(status_code=400, detail="url or videoId is required")

    # A watch URL and its bare id share one cache entry
    source_key = request.video_id or video_id(request.url) or request.url
    existing = waveform.lookup(services, source_key)
    if existing is not None:
        if existing.status == JobStatus.COMPLETED:
            return {"waveformId": existing.id, "waveform": existing.result, "cached": True}
        return {"waveformId": existing.id, "message": "Waveform generation in progress"}

    url = request.url or youtube_url(request.video_id)
    job_id = services.registry.create(JobKind.WAVEFORM, source_key=source_key)
    job = waveform.WaveformRequest(url=url, source_key=source_key)
    services.dispatcher.submit(job_id, lambda: waveform.run(services, job_id, job))
    return {"waveformId": job_id, "message": "Waveform generation started"}


@router.get("/waveform-progress/{waveform_id}")
async def get_waveform_progress(waveform_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(waveform_id, JobKind.WAVEFORM)
    if record is None:
        raise HTTPException(status_code=404, detail="Waveform not found")
    services.registry.touch(waveform_id)
    return record.to_progress()


@router.get("/waveform/{waveform_id}")
async def get_waveform(waveform_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(waveform_id, JobKind.WAVEFORM)
    if record is None or record.status != JobStatus.COMPLETED:
        raise HTTPException(status_code=404, detail="Waveform not ready")
    services.registry.touch(waveform_id)
    return record.result

"""Mixset API: crossfaded DJ mix from an ordered track list."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator

from beatflo.api.v1.artifacts import serve_artifact
from beatflo.api.v1.deps import get_services
from beatflo.jobs.models import JobKind
from beatflo.pipelines import mixset
from beatflo.services import Services
from beatflo.utils.filenames import safe_title

router = APIRouter()


class MixsetTrackBody(BaseModel):
    url: str = Field(min_length=1)
    title: str = ""
    artist: str = ""


class MixsetStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tracks: List[MixsetTrackBody]
    crossfade_duration: float = Field(5.0, alias="crossfadeDuration", gt=0)
    mixset_name: str = Field("DJ_Mixset", alias="mixsetName")

    @field_validator("tracks")
    @classmethod
    def at_least_two_tracks(cls, tracks):
        if len(tracks) < mixset.MIN_TRACKS:
            raise ValueError("At least 2 tracks are required")
        return tracks


@router.post("/create-mixset")
async def create_mixset(
    request: MixsetStartRequest,
    services: Services = Depends(get_services),
):
    """Download the tracks in order and join them with a uniform crossfade."""
    max_crossfade = services.settings.max_crossfade_seconds
    if request.crossfade_duration > max_crossfade:
        raise HTTPException(
            status_code=400,
            detail=f"crossfadeDuration must be at most {max_crossfade:g} seconds",
        )

    name = safe_title(
        request.mixset_name,
        fallback="DJ_Mixset",
        max_length=services.settings.title_max_length,
    )
    job_id = services.registry.create(
        JobKind.MIXSET,
        title=name,
        output_format="mp3",
        total=len(request.tracks),
        completed=0,
    )
    job = mixset.MixsetRequest(
        tracks=[mixset.MixsetTrack(url=t.url, title=t.title, artist=t.artist) for t in request.tracks],
        crossfade=request.crossfade_duration,
        name=name,
    )
    services.dispatcher.submit(job_id, lambda: mixset.run(services, job_id, job))
    return {"mixsetId": job_id, "message": "Mixset creation started"}


@router.get("/mixset-progress/{mixset_id}")
async def get_mixset_progress(mixset_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(mixset_id, JobKind.MIXSET)
    if record is None:
        raise HTTPException(status_code=404, detail="Mixset not found")
    return record.to_progress()


@router.get("/mixset-file/{mixset_id}")
async def get_mixset_file(mixset_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(mixset_id, JobKind.MIXSET)
    name = (record.title if record else None) or "DJ_Mixset"
    return serve_artifact(
        services,
        record,
        download_name=f"{name}.mp3",
        artifact_format="mp3",
        grace_seconds=services.settings.mixset_grace_seconds,
        not_ready="Mixset not ready",
        missing="Mixset file not found",
    )

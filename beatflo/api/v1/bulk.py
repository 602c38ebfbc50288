"""Bulk download API: many videos, one zip."""

from typing import List, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from beatflo.api.v1.artifacts import serve_artifact
from beatflo.api.v1.deps import get_services
from beatflo.jobs.models import JobKind
from beatflo.pipelines import bulk
from beatflo.services import Services

router = APIRouter()

ZIP_DOWNLOAD_NAME = "music_downloads.zip"


class BulkVideo(BaseModel):
    url: str = Field(min_length=1)
    title: str = ""


class BulkStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    videos: List[BulkVideo] = Field(min_length=1)
    output_format: Literal["mp3", "mp4", "webm"] = Field("mp3", alias="outputFormat")


@router.post("/bulk-download")
async def start_bulk_download(
    request: BulkStartRequest,
    services: Services = Depends(get_services),
):
    job_id = services.registry.create(
        JobKind.BULK,
        output_format=request.output_format,
        total=len(request.videos),
        completed=0,
    )
    job = bulk.BulkRequest(
        items=[bulk.BulkItem(url=v.url, title=v.title) for v in request.videos],
        output_format=request.output_format,
    )
    services.dispatcher.submit(job_id, lambda: bulk.run(services, job_id, job))
    return {"bulkId": job_id, "message": "Bulk download started"}


@router.get("/bulk-progress/{bulk_id}")
async def get_bulk_progress(bulk_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(bulk_id, JobKind.BULK)
    if record is None:
        raise HTTPException(status_code=404, detail="Bulk download not found")
    return record.to_progress()


@router.get("/bulk-file/{bulk_id}")
async def get_bulk_file(bulk_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(bulk_id, JobKind.BULK)
    return serve_artifact(
        services,
        record,
        download_name=ZIP_DOWNLOAD_NAME,
        artifact_format="zip",
        grace_seconds=services.settings.bulk_grace_seconds,
        not_ready="ZIP file not ready",
        missing="ZIP file not found",
    )

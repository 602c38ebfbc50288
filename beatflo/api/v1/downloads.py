"""Single download API: start and poll jobs, then fetch the file."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from beatflo.api.v1.artifacts import serve_artifact
from beatflo.api.v1.deps import get_services
from beatflo.jobs.models import JobKind
from beatflo.pipelines import download
from beatflo.services import Services
from beatflo.utils.filenames import safe_title

router = APIRouter()


class DownloadStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    format_id: Optional[str] = Field(None, alias="formatId")
    title: Optional[str] = None
    output_format: Literal["mp3", "mp4", "webm"] = Field("mp4", alias="outputFormat")
    custom_filename: Optional[str] = Field(None, alias="customFilename")


@router.post("/download")
async def start_download(
    request: DownloadStartRequest,
    services: Services = Depends(get_services),
):
    """Start a download. Poll /progress/{id}, then fetch /file/{id}."""
    title = safe_title(
        request.custom_filename or request.title,
        fallback="video",
        max_length=services.settings.title_max_length,
    )
    job_id = services.registry.create(
        JobKind.DOWNLOAD, title=title, output_format=request.output_format
    )
    job = download.DownloadRequest(
        url=request.url,
        output_format=request.output_format,
        format_id=request.format_id,
    )
    services.dispatcher.submit(job_id, lambda: download.run(services, job_id, job))
    return {"downloadId": job_id, "message": "Download started"}


@router.get("/progress/{download_id}")
async def get_progress(download_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(download_id, JobKind.DOWNLOAD)
    if record is None:
        raise HTTPException(status_code=404, detail="Download not found")
    return record.to_progress()


@router.get("/file/{download_id}")
async def get_file(download_id: str, services: Services = Depends(get_services)):
    record = services.registry.get(download_id, JobKind.DOWNLOAD)
    output_format = (record.output_format if record else None) or "mp4"
    title = (record.title if record else None) or "video"
    return serve_artifact(
        services,
        record,
        download_name=f"{title}.{output_format}",
        artifact_format=output_format,
        grace_seconds=services.settings.download_grace_seconds,
    )

"""Serving completed artifacts with deferred deletion."""

import logging

from fastapi import HTTPException
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from beatflo.exceptions import ArtifactMissingError, ArtifactNotReadyError
from beatflo.jobs.models import JobRecord
from beatflo.services import Services

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "zip": "application/zip",
}


def serve_artifact(
    services: Services,
    record: JobRecord,
    download_name: str,
    artifact_format: str,
    grace_seconds: float,
    not_ready: str = "File not ready",
    missing: str = "File not found",
) -> FileResponse:
    """Stream a completed job's file, deleting it ``grace_seconds`` after the
    response has been sent. The job entry is dropped together with the file.
    """
    try:
        path = services.store.resolve(record)
    except ArtifactNotReadyError:
        raise HTTPException(status_code=404, detail=not_ready)
    except ArtifactMissingError:
        raise HTTPException(status_code=404, detail=missing)

    job_id = record.id

    async def delete_after_grace():
        services.store.schedule_deletion(
            path, grace_seconds, on_deleted=lambda: services.registry.delete(job_id)
        )

    logger.info("Serving %s for job %s as %r", record.filename, job_id, download_name)
    return FileResponse(
        path,
        media_type=MEDIA_TYPES.get(artifact_format, "application/octet-stream"),
        filename=download_name,
        background=BackgroundTask(delete_after_grace),
    )

"""Bulk download pipeline: sequential downloads packed into one zip."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import List, Tuple

from beatflo.exceptions import (
    PipelineError,
    ToolExecutionError,
    ToolNotInstalledError,
    ToolTimeoutError,
)
from beatflo.jobs.models import JobStatus
from beatflo.pipelines.download import fetch
from beatflo.services import Services
from beatflo.storage.archive import create_zip
from beatflo.utils.filenames import safe_title

logger = logging.getLogger(__name__)


@dataclass
class BulkItem:
    url: str
    title: str = ""


@dataclass
class BulkRequest:
    items: List[BulkItem] = field(default_factory=list)
    output_format: str = "mp3"


async def run(services: Services, job_id: str, request: BulkRequest) -> None:
    """Download items one at a time, then archive whatever succeeded.

    Items run sequentially to bound the number of yt-dlp processes. A failed
    item is logged and skipped; the batch only fails if nothing downloaded
    or the archive cannot be written.
    """
    registry = services.registry
    max_len = services.settings.title_max_length
    work_dir = services.store.work_dir(job_id)
    total = len(request.items)
    downloaded: List[Tuple[str, str]] = []
    succeeded: List[str] = []
    failed: List[str] = []

    registry.update(job_id, status=JobStatus.DOWNLOADING, total=total, completed=0)

    for i, item in enumerate(request.items):
        title = safe_title(item.title, fallback=f"video_{i + 1}", max_length=max_len)
        registry.update(job_id, current=title)

        try:
            path = await fetch(
                services, item.url, work_dir, f"{i + 1:03d}", request.output_format
            )
        except ToolNotInstalledError:
            services.store.remove_dir(work_dir)
            raise
        except (ToolExecutionError, ToolTimeoutError, PipelineError) as e:
            logger.warning("Bulk %s: failed to download %r: %s", job_id, title, e)
            failed.append(title)
        else:
            ext = os.path.splitext(path)[1]
            downloaded.append((path, f"{title}{ext}"))
            succeeded.append(title)

        registry.update(
            job_id,
            completed=i + 1,
            progress=100.0 * (i + 1) / total,
            files=list(succeeded),
            failed=list(failed),
        )

    if not downloaded:
        services.store.remove_dir(work_dir)
        registry.fail(job_id, "No files downloaded successfully")
        return

    registry.update(job_id, status=JobStatus.ZIPPING, current="Creating ZIP file...")
    zip_name = f"{job_id}.zip"
    try:
        await asyncio.to_thread(create_zip, downloaded, services.store.path_for(zip_name))
    except Exception:
        logger.exception("Bulk %s: ZIP creation error", job_id)
        registry.fail(job_id, "Failed to create ZIP file")
        return
    finally:
        services.store.remove_dir(work_dir)

    registry.update(job_id, status=JobStatus.COMPLETED, filename=zip_name, current="")
    logger.info("Bulk %s completed: %d/%d files", job_id, len(downloaded), total)

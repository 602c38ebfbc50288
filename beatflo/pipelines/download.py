"""Single download pipeline: one yt-dlp run, progress parsed from stdout."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from beatflo.exceptions import PipelineError, ToolExecutionError
from beatflo.jobs.models import JobStatus
from beatflo.services import Services
from beatflo.tools import ytdlp

logger = logging.getLogger(__name__)

# Percentages are capped here while downloading; 99 means post-processing
_DOWNLOAD_CEILING = 98.0
_PROCESSING_PROGRESS = 99.0


@dataclass
class DownloadRequest:
    url: str
    output_format: str = "mp4"
    format_id: Optional[str] = None


class ProgressTracker:
    """Turns yt-dlp output lines into monotonic registry updates.

    yt-dlp reports each stream separately (video then audio), so raw
    percentages restart from zero; only the running maximum is published.
    Once a merge/extract marker is seen the job stays at 99% in processing.
    """

    def __init__(self, services: Services, job_id: str):
        self._registry = services.registry
        self._job_id = job_id
        self._progress = 0.0
        self._postprocessing = False

    def __call__(self, stream: str, line: str) -> None:
        if stream == "stderr":
            logger.debug("yt-dlp stderr [%s]: %s", self._job_id, line)
            return
        if self._postprocessing:
            return
        if ytdlp.is_postprocess_marker(line):
            self._postprocessing = True
            self._registry.update(
                self._job_id, status=JobStatus.PROCESSING, progress=_PROCESSING_PROGRESS
            )
            return
        pct = ytdlp.parse_progress(line)
        if pct is None:
            return
        pct = min(pct, _DOWNLOAD_CEILING)
        if pct > self._progress:
            self._progress = pct
            self._registry.update(
                self._job_id, status=JobStatus.DOWNLOADING, progress=self._progress
            )


async def fetch(
    services: Services,
    url: str,
    directory: str,
    stem: str,
    output_format: str,
    format_id: Optional[str] = None,
    on_line=None,
) -> str:
    """Download ``url`` into ``directory`` as ``<stem>.<ext>``; return the path.

    Shared by the bulk and mixset pipelines. Raises ToolExecutionError on a
    non-zero exit and PipelineError when the tool reported success but no
    file with the stem exists.
    """
    template = os.path.join(directory, f"{stem}.%(ext)s")
    args = ytdlp.build_download_args(
        url, template, output_format, format_id=format_id, progress=on_line is not None
    )
    await services.invoker.run(services.settings.ytdlp_bin, args, on_line=on_line, check=True)

    filename = services.store.find_by_prefix(stem, directory)
    if filename is None:
        raise PipelineError("File not found after download")
    return os.path.join(directory, filename)


async def run(services: Services, job_id: str, request: DownloadRequest) -> None:
    registry = services.registry
    tracker = ProgressTracker(services, job_id)
    registry.update(job_id, status=JobStatus.DOWNLOADING)

    try:
        path = await fetch(
            services,
            request.url,
            services.store.base_dir,
            job_id,
            request.output_format,
            format_id=request.format_id,
            on_line=tracker,
        )
    except ToolExecutionError as e:
        logger.error("Download %s failed: %s\n%s", job_id, e, e.stderr)
        registry.fail(job_id, "Download failed")
        return
    except PipelineError as e:
        logger.error("Download %s: %s", job_id, e)
        registry.fail(job_id, str(e))
        return

    registry.update(
        job_id,
        status=JobStatus.COMPLETED,
        progress=100.0,
        filename=os.path.basename(path),
    )
    logger.info("Download %s completed: %s", job_id, os.path.basename(path))

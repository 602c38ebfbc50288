"""Crossfade mixset pipeline: download tracks as mp3, join them with ffmpeg."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from beatflo.exceptions import (
    PipelineError,
    ToolError,
    ToolExecutionError,
    ToolNotInstalledError,
    ToolTimeoutError,
)
from beatflo.jobs.models import JobStatus
from beatflo.pipelines.download import fetch
from beatflo.services import Services
from beatflo.tools import ffmpeg
from beatflo.utils.filenames import safe_title

logger = logging.getLogger(__name__)

MIN_TRACKS = 2


@dataclass
class MixsetTrack:
    url: str
    title: str = ""
    artist: str = ""

    @property
    def label(self) -> str:
        if self.artist:
            return f"{self.artist} - {self.title}"
        return self.title


@dataclass
class MixsetRequest:
    tracks: List[MixsetTrack] = field(default_factory=list)
    crossfade: float = 5.0
    name: str = "DJ_Mixset"


def output_filename(job_id: str, name: str, max_length: int = 100) -> str:
    return f"{job_id}_{safe_title(name, fallback='DJ_Mixset', max_length=max_length)}.mp3"


async def run(services: Services, job_id: str, request: MixsetRequest) -> None:
    """Two phases: sequential mp3 extraction, then one ffmpeg crossfade pass.

    Track files are numbered ``01_``, ``02_``... (padded to the track count)
    and passed to ffmpeg in request order. The working directory is kept when
    too few tracks downloaded; it is removed once the mix is written or the
    mix step fails.
    """
    registry = services.registry
    work_dir = services.store.work_dir(job_id)
    total = len(request.tracks)
    width = max(2, len(str(total)))
    track_paths: List[str] = []
    succeeded: List[str] = []
    failed: List[str] = []

    registry.update(
        job_id,
        status=JobStatus.DOWNLOADING,
        total=total,
        completed=0,
        phase="Downloading tracks...",
    )

    for i, track in enumerate(request.tracks):
        prefix = str(i + 1).zfill(width)
        title = safe_title(track.title, fallback=f"track_{i + 1}", max_length=50)
        registry.update(
            job_id,
            current=track.label,
            phase=f"Downloading track {i + 1}/{total}...",
        )

        try:
            path = await fetch(services, track.url, work_dir, f"{prefix}_{title}", "mp3")
        except ToolNotInstalledError:
            services.store.remove_dir(work_dir)
            raise
        except (ToolExecutionError, ToolTimeoutError, PipelineError) as e:
            logger.warning("Mixset %s: failed to download %r: %s", job_id, track.label, e)
            failed.append(track.label)
        else:
            track_paths.append(path)
            succeeded.append(track.label)

        registry.update(
            job_id,
            completed=i + 1,
            progress=90.0 * (i + 1) / total,
            files=list(succeeded),
            failed=list(failed),
        )

    if len(track_paths) < MIN_TRACKS:
        logger.error(
            "Mixset %s: only %d track(s) downloaded, keeping %s",
            job_id, len(track_paths), work_dir,
        )
        registry.fail(job_id, "Not enough tracks downloaded successfully")
        return

    registry.update(
        job_id,
        phase="Creating mixset with crossfade...",
        current="Mixing tracks together",
    )

    durations = [await _probe_duration(services, p) for p in track_paths]
    expected = None
    if all(d is not None for d in durations):
        expected = round(ffmpeg.expected_mix_duration(durations, request.crossfade), 2)

    filename = output_filename(job_id, request.name, services.settings.title_max_length)
    output_path = services.store.path_for(filename)
    args = ffmpeg.build_mixset_args(track_paths, output_path, request.crossfade)

    try:
        result = await services.invoker.run(services.settings.ffmpeg_bin, args)
    except BaseException:
        _discard(services, output_path, work_dir)
        raise
    if not result.ok:
        _discard(services, output_path, work_dir)
        registry.fail(job_id, f"Failed to create mixset: ffmpeg exited with code {result.exit_code}")
        return

    duration = await _probe_duration(services, output_path)
    services.store.remove_dir(work_dir)

    registry.update(
        job_id,
        status=JobStatus.COMPLETED,
        progress=100.0,
        phase="Mixset ready!",
        current="",
        filename=filename,
        track_count=len(track_paths),
        crossfade=request.crossfade,
        result={"duration": duration, "expected_duration": expected},
    )
    logger.info(
        "Mixset %s completed: %d tracks, %ss (expected %ss)",
        job_id, len(track_paths), duration, expected,
    )


async def _probe_duration(services: Services, path: str) -> Optional[float]:
    """Duration of an audio file, or None if ffprobe cannot tell."""
    try:
        result = await services.invoker.run(
            services.settings.ffprobe_bin, ffmpeg.build_probe_args(path)
        )
    except ToolError as e:
        logger.warning("Could not probe %s: %s", path, e)
        return None
    if not result.ok:
        return None
    return ffmpeg.parse_duration(result.stdout)


def _discard(services: Services, output_path: str, work_dir: str) -> None:
    """Drop a partial mix and the downloaded tracks after a failed mix step."""
    services.store.remove_file(output_path)
    services.store.remove_dir(work_dir)

"""Waveform pipeline: display-only loudness envelopes for the player.

This is a UX approximation, not audio analysis. The best tier buckets
ffmpeg's per-frame RMS levels; when those are unavailable the envelope is
synthesized from overall loudness, and when probing fails entirely it is
synthesized from defaults and flagged as a fallback.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from beatflo.exceptions import ToolError
from beatflo.jobs.models import JobKind, JobRecord, JobStatus
from beatflo.processing.envelope import bucket_levels, synthesize_envelope
from beatflo.services import Services
from beatflo.tools import ffmpeg, ytdlp

logger = logging.getLogger(__name__)

DEFAULT_DURATION = 180.0
DEFAULT_MEAN_DB = -20.0
DEFAULT_MAX_DB = -3.0


@dataclass
class WaveformRequest:
    url: str
    source_key: str


def lookup(services: Services, source_key: str) -> Optional[JobRecord]:
    """Existing job for a source that is completed or still in flight.

    Errored jobs for the key are ignored; a completed one wins over one that
    is still running.
    """
    candidates = [
        record
        for record in services.registry.find_all(JobKind.WAVEFORM, source_key=source_key)
        if record.status != JobStatus.ERROR
    ]
    if not candidates:
        return None
    completed = [r for r in candidates if r.status == JobStatus.COMPLETED]
    record = (completed or candidates)[-1]
    services.registry.touch(record.id)
    return record


def build_result(
    samples: int,
    levels_db: List[float],
    volume: Dict[str, float],
    duration: Optional[float],
) -> Dict[str, Any]:
    """Pick the best available tier for the measured data."""
    if levels_db:
        peaks = bucket_levels(levels_db, samples)
        if peaks:
            return {
                "peaks": peaks,
                "duration": duration or DEFAULT_DURATION,
                "method": "rms",
                "fallback": False,
            }

    if volume:
        duration = duration or DEFAULT_DURATION
        mean_db = volume.get("mean", DEFAULT_MEAN_DB)
        return {
            "peaks": synthesize_envelope(
                samples,
                duration=duration,
                mean_db=mean_db,
                max_db=volume.get("max", mean_db),
            ),
            "duration": duration,
            "method": "envelope",
            "fallback": False,
        }

    return fallback_result(samples)


def fallback_result(samples: int) -> Dict[str, Any]:
    return {
        "peaks": synthesize_envelope(
            samples,
            duration=DEFAULT_DURATION,
            mean_db=DEFAULT_MEAN_DB,
            max_db=DEFAULT_MAX_DB,
        ),
        "duration": DEFAULT_DURATION,
        "method": "fallback",
        "fallback": True,
    }


async def run(services: Services, job_id: str, request: WaveformRequest) -> None:
    registry = services.registry
    settings = services.settings
    samples = settings.waveform_samples
    work_dir = services.store.work_dir(job_id)

    registry.update(job_id, status=JobStatus.DOWNLOADING, progress=10.0, phase="Downloading audio...")

    try:
        audio_path = await _download_audio(services, request.url, work_dir, job_id)
        if audio_path is None:
            result = fallback_result(samples)
        else:
            registry.update(
                job_id, status=JobStatus.ANALYZING, progress=50.0, phase="Measuring levels..."
            )
            duration = await _probe(services, audio_path)
            levels, volume = await _measure(services, audio_path)
            result = build_result(samples, levels, volume, duration)
    finally:
        services.store.remove_dir(work_dir)

    registry.update(
        job_id,
        status=JobStatus.COMPLETED,
        progress=100.0,
        phase="",
        result=result,
    )
    logger.info("Waveform %s completed (%s)", job_id, result["method"])


async def _download_audio(services: Services, url: str, work_dir: str, stem: str) -> Optional[str]:
    args = ytdlp.build_waveform_args(url, os.path.join(work_dir, f"{stem}.%(ext)s"))
    try:
        result = await services.invoker.run(services.settings.ytdlp_bin, args)
    except ToolError as e:
        logger.warning("Waveform audio download failed: %s", e)
        return None
    if not result.ok:
        return None
    filename = services.store.find_by_prefix(stem, work_dir)
    return os.path.join(work_dir, filename) if filename else None


async def _probe(services: Services, path: str) -> Optional[float]:
    try:
        result = await services.invoker.run(
            services.settings.ffprobe_bin, ffmpeg.build_probe_args(path)
        )
    except ToolError as e:
        logger.warning("ffprobe failed: %s", e)
        return None
    return ffmpeg.parse_duration(result.stdout) if result.ok else None


async def _measure(services: Services, path: str):
    """Per-frame RMS levels and aggregate volume, both possibly empty."""
    try:
        result = await services.invoker.run(
            services.settings.ffmpeg_bin, ffmpeg.build_levels_args(path)
        )
    except ToolError as e:
        logger.warning("Level measurement failed: %s", e)
        return [], {}
    if not result.ok:
        return [], {}
    lines = result.stderr.splitlines() + result.stdout.splitlines()
    return ffmpeg.parse_rms_levels(lines), ffmpeg.parse_volume_stats(lines)

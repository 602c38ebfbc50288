"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
import platform
import sys

from beatflo.api.v1.deps import get_services
from beatflo.jobs.models import JobKind
from beatflo.services import Services

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Service health, external tool availability and job counts."""
    settings = services.settings
    invoker = services.invoker
    tools = {
        "yt-dlp": invoker.is_available(settings.ytdlp_bin),
        "ffmpeg": invoker.is_available(settings.ffmpeg_bin),
        "ffprobe": invoker.is_available(settings.ffprobe_bin),
    }

    return {
        "status": "ok" if all(tools.values()) else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "tools": tools,
        "jobs": {kind.value: services.registry.count(kind) for kind in JobKind},
        "running": services.dispatcher.active_count(),
        "python_version": sys.version,
        "platform": platform.platform(),
    }

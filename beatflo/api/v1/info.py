"""Video info endpoint: title, thumbnail and selectable formats."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from beatflo.api.v1.deps import get_services
from beatflo.exceptions import ToolNotInstalledError, ToolTimeoutError
from beatflo.services import Services
from beatflo.tools import ytdlp

logger = logging.getLogger(__name__)

router = APIRouter()

# Metadata lookups should be quick; downloads get the full tool timeout
INFO_TIMEOUT_SECONDS = 60.0


class InfoRequest(BaseModel):
    url: str = Field(min_length=1)


@router.post("/info")
async def get_info(request: InfoRequest, services: Services = Depends(get_services)):
    if not ytdlp.is_supported_url(request.url):
        raise HTTPException(status_code=400, detail="Invalid YouTube URL")

    try:
        result = await services.invoker.run(
            services.settings.ytdlp_bin,
            ytdlp.build_info_args(request.url),
            timeout=INFO_TIMEOUT_SECONDS,
        )
    except ToolNotInstalledError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ToolTimeoutError:
        raise HTTPException(status_code=500, detail="Timed out fetching video info")

    if not result.ok:
        raise HTTPException(status_code=500, detail="Failed to get video info")

    try:
        info = json.loads(result.stdout)
    except json.JSONDecodeError:
        logger.error("Could not parse yt-dlp info for %s", request.url)
        raise HTTPException(status_code=500, detail="Failed to parse video info")

    return ytdlp.summarize_info(info)

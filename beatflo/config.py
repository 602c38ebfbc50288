"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Server
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: List[str] = [
        "http://localhost:8080",
        "http://127.0.0.1:8080",
        "http://localhost:5173",
    ]
    cors_origin_regex: str = r"https://.*\.vercel\.app"

    # Storage
    downloads_dir: str = "downloads"
    title_max_length: int = 100

    # External tools
    ytdlp_bin: str = "yt-dlp"
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    tool_timeout_seconds: float = 1800.0

    # Job processing
    max_concurrent_jobs: int = 4
    job_timeout_seconds: float = 3600.0
    artifact_ttl_hours: int = 2

    # Grace windows before a served artifact is deleted
    download_grace_seconds: float = 60.0
    bulk_grace_seconds: float = 120.0
    mixset_grace_seconds: float = 300.0

    # Mixsets
    max_crossfade_seconds: float = 30.0

    # Waveform cache
    waveform_samples: int = 200
    waveform_cache_ttl_minutes: int = 30
    waveform_sweep_interval_minutes: int = 10

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "BEATFLO_"}


settings = Settings()

"""yt-dlp argument builders and output parsers."""

import re
from typing import Any, Dict, List, Optional

OUTPUT_FORMATS = ("mp3", "mp4", "webm")

_PROGRESS_RE = re.compile(r"(\d+(?:\.\d+)?)%")
_POSTPROCESS_MARKERS = ("[Merger]", "Merging", "[ExtractAudio]")
_YOUTUBE_RE = re.compile(
    r"^(https?://)?(www\.|m\.|music\.)?"
    r"(youtube\.com/(watch\?v=|embed/|v/|shorts/)|youtu\.be/)(?P<id>[\w-]+)"
)


def build_download_args(
    url: str,
    output_template: str,
    output_format: str = "mp4",
    format_id: Optional[str] = None,
    progress: bool = True,
) -> List[str]:
    """Arguments for downloading ``url`` as mp3, webm or mp4.

    ``output_template`` is a yt-dlp template; the real extension is only known
    once the tool writes the file, so callers pass ``<stem>.%(ext)s``.
    """
    if format_id == "best":
        format_id = None

    if output_format == "mp3":
        args = ["-x", "--audio-format", "mp3", "--audio-quality", "0"]
    elif output_format == "webm":
        selector = f"{format_id}+bestaudio/best" if format_id else "bestvideo+bestaudio/best"
        args = ["-f", selector, "--merge-output-format", "webm"]
    else:
        selector = (
            f"{format_id}+bestaudio/best" if format_id
            else "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
        )
        args = ["-f", selector, "--merge-output-format", "mp4"]

    args += ["-o", output_template, "--no-playlist", "--no-mtime"]
    if progress:
        args.append("--newline")
    args.append(url)
    return args


def build_waveform_args(url: str, output_template: str) -> List[str]:
    """Smallest audio stream available; only loudness matters."""
    return [
        "-f", "worstaudio/worst",
        "-o", output_template,
        "--no-playlist",
        "--no-mtime",
        url,
    ]


def build_info_args(url: str) -> List[str]:
    return ["--dump-json", "--no-playlist", url]


def parse_progress(line: str) -> Optional[float]:
    """Percentage reported on a progress line, if any."""
    match = _PROGRESS_RE.search(line)
    if not match:
        return None
    value = float(match.group(1))
    return min(value, 100.0)


def is_postprocess_marker(line: str) -> bool:
    """True once yt-dlp starts merging streams or extracting audio."""
    return any(marker in line for marker in _POSTPROCESS_MARKERS)


def is_supported_url(url: str) -> bool:
    return bool(_YOUTUBE_RE.match(url or ""))


def video_id(url: str) -> Optional[str]:
    """The video id of a supported YouTube URL, or None."""
    match = _YOUTUBE_RE.match(url or "")
    if match is None:
        return None
    return match.group("id")


def youtube_url(vid: str) -> str:
    return f"https://www.youtube.com/watch?v={vid}"


def summarize_info(info: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a ``--dump-json`` document to what the UI shows."""
    formats = []
    for f in info.get("formats") or []:
        if f.get("ext") != "mp4" or f.get("vcodec") in (None, "none"):
            continue
        resolution = f.get("resolution") or f"{f.get('width')}x{f.get('height')}"
        formats.append({
            "formatId": f.get("format_id"),
            "quality": f.get("format_note") or f.get("resolution") or "Unknown",
            "resolution": resolution,
            "filesize": f.get("filesize") or f.get("filesize_approx"),
            "hasAudio": f.get("acodec") not in (None, "none"),
            "fps": f.get("fps"),
        })
    formats.sort(key=lambda f: _resolution_width(f["resolution"]), reverse=True)

    if not formats:
        formats = [{"formatId": "best", "quality": "Best Available", "resolution": "Auto"}]

    return {
        "title": info.get("title"),
        "thumbnail": info.get("thumbnail"),
        "duration": info.get("duration"),
        "uploader": info.get("uploader"),
        "viewCount": info.get("view_count"),
        "formats": formats,
    }


def _resolution_width(resolution: str) -> int:
    match = re.match(r"\d+", resolution or "")
    return int(match.group(0)) if match else 0

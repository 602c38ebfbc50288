"""Filename helpers for user-supplied titles."""

from pathvalidate import sanitize_filename


def safe_title(title: str, fallback: str = "video", max_length: int = 100) -> str:
    """Title usable as a file name on any platform, truncated to ``max_length``."""
    cleaned = sanitize_filename((title or "").strip(), replacement_text="_")
    cleaned = cleaned[:max_length].strip()
    return cleaned or fallback

"""Zip archives for bulk downloads."""

import logging
import os
import zipfile
from typing import Iterable, List, Tuple

logger = logging.getLogger(__name__)


def unique_names(names: Iterable[str]) -> List[str]:
    """Suffix repeated names with `` (2)``, `` (3)``... before the extension."""
    used = set()
    result = []
    for name in names:
        stem, ext = os.path.splitext(name)
        candidate = name
        n = 2
        while candidate.lower() in used:
            candidate = f"{stem} ({n}){ext}"
            n += 1
        used.add(candidate.lower())
        result.append(candidate)
    return result


def create_zip(entries: List[Tuple[str, str]], zip_path: str) -> int:
    """Write ``(source_path, archive_name)`` entries with maximum compression.

    Blocking; run it in a worker thread from async code. Returns the size of
    the archive in bytes. A partially written archive is removed on failure.
    """
    names = unique_names(name for _, name in entries)
    try:
        with zipfile.ZipFile(
            zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as zf:
            for (source, _), name in zip(entries, names):
                zf.write(source, arcname=name)
    except Exception:
        if os.path.exists(zip_path):
            os.remove(zip_path)
        raise
    size = os.path.getsize(zip_path)
    logger.info("ZIP created: %s (%d bytes, %d files)", os.path.basename(zip_path), size, len(entries))
    return size

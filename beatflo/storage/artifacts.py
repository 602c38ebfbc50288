"""Artifact storage under the downloads root, with deferred deletion."""

import asyncio
import logging
import os
import shutil
import time
from typing import Callable, Iterable, Optional, Set

from beatflo.exceptions import ArtifactMissingError, ArtifactNotReadyError
from beatflo.jobs.models import JobRecord, JobStatus

logger = logging.getLogger(__name__)

# Files yt-dlp is still writing
_PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp")


class ArtifactStore:
    """Manages job working directories and final artifacts.

    Served artifacts are deleted after a grace window; anything abandoned
    is swept by ``cleanup_expired``.
    """

    def __init__(self, base_dir: str):
        self._base_dir = os.path.abspath(base_dir)
        os.makedirs(self._base_dir, exist_ok=True)
        self._pending: Set[asyncio.Task] = set()

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def path_for(self, filename: str) -> str:
        return os.path.join(self._base_dir, filename)

    def work_dir(self, name: str) -> str:
        """Get or create a working directory below the root."""
        path = os.path.join(self._base_dir, name)
        os.makedirs(path, exist_ok=True)
        return path

    def find_by_prefix(self, prefix: str, directory: Optional[str] = None) -> Optional[str]:
        """Name of the first finished file in ``directory`` starting with ``prefix``.

        Tools pick the final extension at write time, so the file is located
        by its stem rather than a predicted name.
        """
        directory = directory or self._base_dir
        try:
            names = sorted(os.listdir(directory))
        except FileNotFoundError:
            return None
        for name in names:
            if not name.startswith(prefix) or name.endswith(_PARTIAL_SUFFIXES):
                continue
            if os.path.isfile(os.path.join(directory, name)):
                return name
        return None

    def resolve(self, record: Optional[JobRecord]) -> str:
        """Path of a completed job's artifact."""
        if record is None or record.status != JobStatus.COMPLETED or not record.filename:
            raise ArtifactNotReadyError("File not ready")
        path = self.path_for(record.filename)
        if not os.path.isfile(path):
            raise ArtifactMissingError("File not found")
        return path

    def remove_file(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Cleanup error for %s: %s", path, e)
            return False

    def remove_dir(self, path: str) -> None:
        if not os.path.isdir(path):
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.error("Cleanup error for %s: %s", path, e)

    def schedule_deletion(
        self,
        path: str,
        delay: float,
        on_deleted: Optional[Callable[[], None]] = None,
    ) -> asyncio.Task:
        """Delete ``path`` after ``delay`` seconds without blocking the caller."""

        async def delete_later():
            await asyncio.sleep(delay)
            self.remove_file(path)
            logger.info("Deleted served artifact %s", os.path.basename(path))
            if on_deleted is not None:
                on_deleted()

        task = asyncio.create_task(delete_later())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def cleanup_expired(self, max_age_seconds: float, keep: Iterable[str] = ()) -> int:
        """Remove files and directories older than the limit. Returns the count.

        Entries whose name starts with one of the ``keep`` prefixes (ids of
        jobs still in the registry) are left alone whatever their mtime.
        """
        keep = tuple(keep)
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            if keep and entry.startswith(keep):
                continue
            path = os.path.join(self._base_dir, entry)
            try:
                mtime = os.path.getmtime(path)
            except OSError:
                continue
            if now - mtime <= max_age_seconds:
                continue
            if os.path.isdir(path):
                self.remove_dir(path)
            else:
                self.remove_file(path)
            removed += 1
        if removed:
            logger.info("Removed %d expired artifact(s)", removed)
        return removed

    async def shutdown(self) -> None:
        """Cancel pending deletions."""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

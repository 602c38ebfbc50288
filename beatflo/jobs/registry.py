"""In-memory job registry with per-kind namespaces and guarded updates."""

import logging
import threading
from datetime import timedelta
from typing import Dict, List, Optional

from beatflo.exceptions import JobStateError
from beatflo.jobs.models import JobKind, JobRecord, JobStatus, utcnow

logger = logging.getLogger(__name__)


class JobRegistry:
    """Stores job snapshots keyed by id.

    - One orchestration task owns each id and is the only writer for it
    - Every update is a read-merge-write under a lock, so it stays atomic
      even when callers run on different threads
    - Records are replaced on update; readers never see a half-applied patch
    """

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def create(self, kind: JobKind, **initial) -> str:
        """Insert a new job in the starting state and return its id."""
        record = JobRecord(kind=kind, **initial)
        with self._lock:
            self._jobs[record.id] = record
        logger.debug("Created %s job %s", kind.value, record.id)
        return record.id

    def get(self, job_id: str, kind: Optional[JobKind] = None) -> Optional[JobRecord]:
        with self._lock:
            record = self._jobs.get(job_id)
        if record is None or (kind is not None and record.kind != kind):
            return None
        return record

    def update(self, job_id: str, **patch) -> Optional[JobRecord]:
        """Merge ``patch`` into the job, keeping fields not mentioned.

        Returns the new snapshot, or None when the job does not exist.
        Raises JobStateError when the patch would regress the job.
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            _check_transition(current, patch)

            now = utcnow()
            patch.setdefault("updated_at", now)
            if patch.get("status") is not None:
                patch["status"] = JobStatus(patch["status"])
                if patch["status"].is_terminal:
                    patch.setdefault("completed_at", now)
            updated = current.model_copy(update=patch)
            self._jobs[job_id] = updated
        return updated

    def fail(self, job_id: str, message: str) -> Optional[JobRecord]:
        """Mark a job as errored unless it already reached a terminal state."""
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None or current.is_terminal():
                return None
            now = utcnow()
            updated = current.model_copy(update={
                "status": JobStatus.ERROR,
                "error": message,
                "updated_at": now,
                "completed_at": now,
            })
            self._jobs[job_id] = updated
        logger.info("Job %s failed: %s", job_id, message)
        return updated

    def touch(self, job_id: str) -> None:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is not None:
                self._jobs[job_id] = current.model_copy(update={"last_accessed": utcnow()})

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def find_all(self, kind: JobKind, **fields) -> List[JobRecord]:
        """Every job of ``kind`` whose attributes equal ``fields``, oldest first."""
        with self._lock:
            records = list(self._jobs.values())
        return [
            record for record in records
            if record.kind == kind
            and all(getattr(record, k) == v for k, v in fields.items())
        ]

    def find(self, kind: JobKind, **fields) -> Optional[JobRecord]:
        """Return the first job of ``kind`` whose attributes equal ``fields``."""
        matches = self.find_all(kind, **fields)
        return matches[0] if matches else None

    def records(self) -> List[JobRecord]:
        with self._lock:
            return list(self._jobs.values())

    def evict_stale(self, kind: JobKind, max_idle_seconds: float) -> List[JobRecord]:
        """Remove terminal jobs of ``kind`` idle for longer than the limit."""
        cutoff = utcnow() - timedelta(seconds=max_idle_seconds)
        evicted = []
        with self._lock:
            for job_id, record in list(self._jobs.items()):
                if record.kind != kind or not record.is_terminal():
                    continue
                last_seen = max(record.last_accessed, record.updated_at)
                if last_seen < cutoff:
                    evicted.append(self._jobs.pop(job_id))
        if evicted:
            logger.info("Evicted %d stale %s job(s)", len(evicted), kind.value)
        return evicted

    def count(self, kind: Optional[JobKind] = None) -> int:
        with self._lock:
            if kind is None:
                return len(self._jobs)
            return sum(1 for r in self._jobs.values() if r.kind == kind)


def _check_transition(current: JobRecord, patch: dict) -> None:
    if current.is_terminal():
        raise JobStateError(
            f"Job {current.id} is already {current.status.value}"
        )

    new_status = patch.get("status")
    if new_status is not None:
        new_status = JobStatus(new_status)
        if new_status.rank < current.status.rank:
            raise JobStateError(
                f"Job {current.id} cannot move from "
                f"{current.status.value} to {new_status.value}"
            )

    total = patch.get("total", current.total)
    completed = patch.get("completed")
    if completed is not None:
        if current.completed is not None and completed < current.completed:
            raise JobStateError(
                f"Job {current.id} completed count cannot decrease "
                f"({current.completed} -> {completed})"
            )
        if total is not None and completed > total:
            raise JobStateError(
                f"Job {current.id} completed count {completed} exceeds total {total}"
            )

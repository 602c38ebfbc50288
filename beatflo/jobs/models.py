"""Job record data model for async media processing."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobKind(str, Enum):
    DOWNLOAD = "download"
    BULK = "bulk"
    MIXSET = "mixset"
    WAVEFORM = "waveform"


class JobStatus(str, Enum):
    STARTING = "starting"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    ANALYZING = "analyzing"
    ZIPPING = "zipping"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


# Statuses only ever move to an equal or higher rank.
_STATUS_RANK = {
    JobStatus.STARTING: 0,
    JobStatus.DOWNLOADING: 1,
    JobStatus.PROCESSING: 2,
    JobStatus.ANALYZING: 2,
    JobStatus.ZIPPING: 3,
    JobStatus.COMPLETED: 4,
    JobStatus.ERROR: 4,
}


class JobRecord(BaseModel):
    """Snapshot of one job's state. The registry replaces, never mutates, it."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: JobKind
    status: JobStatus = JobStatus.STARTING
    progress: float = 0.0
    completed: Optional[int] = None
    total: Optional[int] = None
    current: str = ""
    phase: str = ""
    title: Optional[str] = None
    output_format: Optional[str] = None
    filename: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    source_key: Optional[str] = None
    track_count: Optional[int] = None
    crossfade: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    last_accessed: datetime = Field(default_factory=utcnow)

    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_progress(self) -> Dict[str, Any]:
        """Client-facing progress payload, in the legacy camelCase shape."""
        response: Dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "progress": round(self.progress, 1),
        }

        if self.kind == JobKind.DOWNLOAD:
            response["title"] = self.title
            response["outputFormat"] = self.output_format
            if self.filename:
                response["filename"] = self.filename

        elif self.kind in (JobKind.BULK, JobKind.MIXSET):
            response["total"] = self.total
            response["completed"] = self.completed
            response["current"] = self.current
            response["files"] = list(self.files)
            response["failed"] = list(self.failed)
            if self.kind == JobKind.BULK:
                response["outputFormat"] = self.output_format
                if self.filename:
                    response["zipFile"] = self.filename
            else:
                response["phase"] = self.phase
                if self.filename:
                    response["filename"] = self.filename
                    response["trackCount"] = self.track_count
                    response["crossfade"] = self.crossfade
                if self.result:
                    response["duration"] = self.result.get("duration")

        elif self.kind == JobKind.WAVEFORM:
            response["phase"] = self.phase
            if self.status == JobStatus.COMPLETED and self.result:
                response["waveform"] = self.result

        if self.status == JobStatus.ERROR:
            response["error"] = self.error or "Processing failed"

        return response

from dataclasses import dataclass
from typing import Any, Optional

BATCH_STATUSES = ("uploading", "ready", "processing", "completed", "error")
UPLOAD_STATUSES = ("pending", "uploading", "completed", "error")
ANALYSIS_STATUSES = ("pending", "processing", "completed", "error")
EVENT_TYPES = (
    "uap",
    "satellite",
    "airplane",
    "meteor",
    "star",
    "cloud",
    "unknown",
)
TERMINAL_ANALYSIS_STATUSES = ("completed", "error")


@dataclass
class Batch:
    """Group of videos uploaded and analyzed together."""

    batch_id: str
    status: str
    video_count: int
    created_at: str
    total_duration_minutes: int = 0
    total_events: int = 0
    process_folder: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class Video:
    """Uploaded media file and its upload/analysis state."""

    video_id: str
    batch_id: str
    filename: str
    file_size: int
    upload_status: str
    analysis_status: str
    created_at: str
    updated_at: str
    event_count: int = 0
    duration_seconds: Optional[float] = None
    storage_path: Optional[str] = None


@dataclass
class BoundingBox:
    """Event region in percent-of-frame units."""

    x: float
    y: float
    width: float
    height: float


@dataclass
class Event:
    """Detected interval within a video timeline."""

    event_id: str
    video_id: str
    start_time: float
    end_time: float
    event_type: str
    confidence: float
    created_at: str
    bbox: Optional[BoundingBox] = None
    metadata: Optional[dict[str, Any]] = None

    def is_active_at(self, ts_sec: float) -> bool:
        return self.start_time <= ts_sec <= self.end_time

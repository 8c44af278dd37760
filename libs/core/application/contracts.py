from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol, TypedDict

from libs.core.domain.entities import BoundingBox, Batch, Event, Video


class BatchChanges(TypedDict, total=False):
    """Batch fields that may be updated in place."""

    status: str
    total_duration_minutes: int
    total_events: int
    process_folder: Optional[str]
    completed_at: Optional[str]


class VideoChanges(TypedDict, total=False):
    """Video fields that may be updated in place."""

    upload_status: str
    analysis_status: str
    event_count: int
    duration_seconds: Optional[float]
    updated_at: str


@dataclass
class SignedUpload:
    """Pre-authorized destination for a direct client upload."""

    upload_url: str
    token: str
    path: str


@dataclass
class DetectedEvent:
    """Event produced by an analysis provider before persistence."""

    start_time: float
    end_time: float
    event_type: str
    confidence: float
    bbox: BoundingBox | None = None
    metadata: dict[str, object] | None = None


class BatchRepository(Protocol):
    """Batch persistence contract."""

    def create(self, batch: Batch) -> None: ...

    def get(self, batch_id: str) -> Batch | None: ...

    def update(self, batch_id: str, changes: BatchChanges) -> Batch | None: ...

    def transition_status(self, batch_id: str, expected: str, status: str) -> bool: ...

    def list_by_status(self, statuses: Iterable[str]) -> list[Batch]: ...

    def delete(self, batch_id: str) -> bool: ...


class VideoRepository(Protocol):
    """Video persistence contract."""

    def create(self, video: Video) -> None: ...

    def get(self, video_id: str) -> Video | None: ...

    def list_by_batch(self, batch_id: str) -> list[Video]: ...

    def update(self, video_id: str, changes: VideoChanges) -> Video | None: ...


class EventRepository(Protocol):
    """Event persistence contract."""

    def replace_for_video(self, video_id: str, events: list[Event]) -> None: ...

    def list_by_video(self, video_id: str) -> list[Event]: ...

    def list_by_videos(self, video_ids: list[str]) -> list[Event]: ...


class BlobStore(Protocol):
    """Object storage contract for raw video bytes."""

    def create_signed_upload(self, path: str) -> SignedUpload: ...

    def public_url(self, path: str) -> str: ...

    def delete(self, path: str) -> None: ...


class AnalysisProvider(Protocol):
    """Turns an uploaded video into detected events."""

    def probe_duration(self, video: Video) -> float: ...

    def analyze(self, video: Video) -> list[DetectedEvent]: ...


class TaskContext(Protocol):
    """Handle given to a running background task."""

    def wait(self, seconds: float) -> None: ...


class TaskScheduler(Protocol):
    """Runs keyed background tasks."""

    def schedule(self, key: str, job: Callable[[TaskContext], None]) -> None: ...

    def is_active(self, key: str) -> bool: ...


class WatchedFolderScanner(Protocol):
    """Directory-polling job feeding new files into batches."""

    def scan(self) -> list[str]: ...

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from libs.core.application.contracts import (
    AnalysisProvider,
    BatchRepository,
    BlobStore,
    DetectedEvent,
    EventRepository,
    SignedUpload,
    TaskContext,
    TaskScheduler,
    VideoChanges,
    VideoRepository,
)
from libs.core.application.errors import (
    AnalysisError,
    BatchStateConflict,
    NotFound,
    PreconditionFailed,
    TaskCancelled,
    UpstreamStoreError,
    ValidationError,
)
from libs.core.domain.entities import (
    ANALYSIS_STATUSES,
    EVENT_TYPES,
    TERMINAL_ANALYSIS_STATUSES,
    UPLOAD_STATUSES,
    Batch,
    Event,
    Video,
)

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_DELAY_SEC = 15.0
PROCESS_FOLDER_URL_TEMPLATE = "/download/process-folder/{batch_id}"
RESUMABLE_BATCH_STATUSES = ("ready", "processing")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class UploadFileSpec:
    """File announced by a client before uploading it."""

    filename: str
    size: int


@dataclass
class UploadTicket:
    """Batch created for an upload request with per-file destinations."""

    batch: Batch
    videos: list[Video]
    uploads: list[SignedUpload]


@dataclass
class BatchSummary:
    """Batch state with its videos and event statistics."""

    batch: Batch
    videos: list[Video]
    total_events: int
    event_breakdown: dict[str, int]
    process_folder_url: str | None = None


@dataclass
class ProcessFolderManifest:
    """Analysis output of a completed batch."""

    batch: Batch
    videos: list[Video]
    events_by_video: dict[str, list[Event]] = field(default_factory=dict)


class BatchService:
    """Application service owning the batch/video/event lifecycle."""

    def __init__(
        self,
        batch_repository: BatchRepository,
        video_repository: VideoRepository,
        event_repository: EventRepository,
        blob_store: BlobStore,
        analysis_provider: AnalysisProvider,
        scheduler: TaskScheduler,
        analysis_delay_sec: float = DEFAULT_ANALYSIS_DELAY_SEC,
    ) -> None:
        self._batches = batch_repository
        self._videos = video_repository
        self._events = event_repository
        self._blobs = blob_store
        self._provider = analysis_provider
        self._scheduler = scheduler
        self._analysis_delay_sec = analysis_delay_sec

    def request_upload(self, files: list[UploadFileSpec]) -> UploadTicket:
        _validate_upload_files(files)

        now = _utc_now_iso()
        batch = Batch(
            batch_id=str(uuid4()),
            status="uploading",
            video_count=len(files),
            created_at=now,
        )
        self._batches.create(batch)

        videos: list[Video] = []
        uploads: list[SignedUpload] = []
        for item in files:
            video_id = str(uuid4())
            storage_path = (
                f"videos/{batch.batch_id}/{video_id}-{_safe_object_name(item.filename)}"
            )
            video = Video(
                video_id=video_id,
                batch_id=batch.batch_id,
                filename=item.filename,
                file_size=item.size,
                upload_status="pending",
                analysis_status="pending",
                created_at=_utc_now_iso(),
                updated_at=_utc_now_iso(),
                storage_path=storage_path,
            )
            self._videos.create(video)
            videos.append(video)
            uploads.append(self._blobs.create_signed_upload(storage_path))

        logger.info(f"Batch {batch.batch_id} created with {len(videos)} videos")
        return UploadTicket(batch=batch, videos=videos, uploads=uploads)

    def get_video(self, video_id: str) -> Video:
        video = self._videos.get(video_id)
        if video is None:
            raise NotFound("Video not found")
        return video

    def get_batch(self, batch_id: str) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFound("Batch not found")
        return batch

    def update_video_status(
        self,
        video_id: str,
        upload_status: str | None = None,
        analysis_status: str | None = None,
    ) -> Video:
        if upload_status is not None and upload_status not in UPLOAD_STATUSES:
            raise ValidationError(f"Invalid upload_status: {upload_status}")
        if analysis_status is not None and analysis_status not in ANALYSIS_STATUSES:
            raise ValidationError(f"Invalid analysis_status: {analysis_status}")

        changes: VideoChanges = {"updated_at": _utc_now_iso()}
        if upload_status is not None:
            changes["upload_status"] = upload_status
        if analysis_status is not None:
            changes["analysis_status"] = analysis_status

        video = self._videos.update(video_id, changes)
        if video is None:
            raise NotFound("Video not found")
        return video

    def commit_batch(self, batch_id: str) -> Batch:
        self.get_batch(batch_id)
        videos = self._videos.list_by_batch(batch_id)
        if any(video.upload_status != "completed" for video in videos):
            raise PreconditionFailed("Not all files in batch are uploaded")

        if not self._batches.transition_status(batch_id, "uploading", "ready"):
            raise BatchStateConflict("Batch already committed")
        logger.info(f"Batch {batch_id} committed, scheduling analysis")

        self._schedule_analysis(batch_id)
        return self.get_batch(batch_id)

    def run_analysis(self, batch_id: str, context: TaskContext) -> Batch:
        """Background body of the analysis stage for one batch.

        Moves the batch to processing, probes durations, waits for the
        analysis turnaround, stores events per video and finalizes. Any
        failure degrades the batch to error; rows already written stay.
        """
        try:
            self._begin_processing(batch_id)
            context.wait(self._analysis_delay_sec)
            self._analyze_videos(batch_id)
            return self.finalize_batch(batch_id)
        except TaskCancelled:
            logger.warning(f"Analysis of batch {batch_id} cancelled")
            self._mark_batch_error(batch_id)
            raise
        except Exception as error:
            logger.error(f"Analysis of batch {batch_id} failed: {error}")
            self._mark_batch_error(batch_id)
            raise

    def finalize_batch(self, batch_id: str) -> Batch:
        batch = self.get_batch(batch_id)
        if batch.status in ("completed", "error"):
            return batch
        if batch.status != "processing":
            raise BatchStateConflict(
                f"Batch cannot be finalized from status {batch.status}"
            )

        videos = self._videos.list_by_batch(batch_id)
        if any(
            video.analysis_status not in TERMINAL_ANALYSIS_STATUSES for video in videos
        ):
            raise PreconditionFailed("Not all videos in batch are analyzed")

        total_events = sum(
            video.event_count for video in videos if video.analysis_status == "completed"
        )
        total_seconds = sum(video.duration_seconds or 0.0 for video in videos)
        total_minutes = math.floor(total_seconds / 60)
        failed = any(video.analysis_status == "error" for video in videos)
        now = datetime.now(timezone.utc)

        finalized = self._batches.update(
            batch_id,
            {
                "status": "error" if failed else "completed",
                "total_events": total_events,
                "total_duration_minutes": total_minutes,
                "process_folder": None
                if failed
                else _build_process_folder(
                    completed_at=now,
                    batch_id=batch_id,
                    video_count=len(videos),
                    total_minutes=total_minutes,
                    total_events=total_events,
                ),
                "completed_at": now.isoformat(),
            },
        )
        if finalized is None:
            raise NotFound("Batch not found")
        logger.info(
            f"Batch {batch_id} finalized as {finalized.status}: "
            f"{total_events} events over {total_minutes} min"
        )
        return finalized

    def get_batch_summary(self, batch_id: str) -> BatchSummary:
        batch = self.get_batch(batch_id)
        videos = self._videos.list_by_batch(batch_id)
        events = self._events.list_by_videos([video.video_id for video in videos])
        breakdown = Counter(event.event_type for event in events)

        process_folder_url = None
        if batch.status == "completed" and batch.process_folder:
            process_folder_url = PROCESS_FOLDER_URL_TEMPLATE.format(batch_id=batch_id)

        return BatchSummary(
            batch=batch,
            videos=videos,
            total_events=len(events),
            event_breakdown=dict(breakdown),
            process_folder_url=process_folder_url,
        )

    def list_video_events(self, video_id: str, at: float | None = None) -> list[Event]:
        self.get_video(video_id)
        events = sorted(
            self._events.list_by_video(video_id),
            key=lambda item: item.start_time,
        )
        if at is None:
            return events
        return [event for event in events if event.is_active_at(at)]

    def get_playback_url(self, video_id: str) -> str:
        video = self.get_video(video_id)
        if not video.storage_path:
            raise NotFound("Video has no stored media")
        return self._blobs.public_url(video.storage_path)

    def get_process_folder_manifest(self, batch_id: str) -> ProcessFolderManifest:
        batch = self.get_batch(batch_id)
        if batch.status != "completed" or not batch.process_folder:
            raise PreconditionFailed("Batch analysis is not completed")

        videos = self._videos.list_by_batch(batch_id)
        return ProcessFolderManifest(
            batch=batch,
            videos=videos,
            events_by_video={
                video.video_id: self.list_video_events(video.video_id)
                for video in videos
            },
        )

    def delete_batch(self, batch_id: str, delete_originals: bool = False) -> None:
        self.get_batch(batch_id)
        if self._scheduler.is_active(batch_id):
            raise BatchStateConflict("Batch analysis is still running")

        if delete_originals:
            for video in self._videos.list_by_batch(batch_id):
                if video.storage_path:
                    self._blobs.delete(video.storage_path)

        if not self._batches.delete(batch_id):
            raise NotFound("Batch not found")
        logger.info(f"Batch {batch_id} deleted (originals removed: {delete_originals})")

    def resume_pending_batches(self) -> list[str]:
        resumed: list[str] = []
        for batch in self._batches.list_by_status(RESUMABLE_BATCH_STATUSES):
            if self._scheduler.is_active(batch.batch_id):
                continue
            self._schedule_analysis(batch.batch_id)
            resumed.append(batch.batch_id)
        if resumed:
            logger.info(f"Resumed analysis for {len(resumed)} batches")
        return resumed

    def _schedule_analysis(self, batch_id: str) -> None:
        try:
            self._scheduler.schedule(
                batch_id,
                lambda context: self.run_analysis(batch_id, context),
            )
        except ValueError as error:
            raise BatchStateConflict(str(error)) from error

    def _begin_processing(self, batch_id: str) -> None:
        batch = self.get_batch(batch_id)
        if batch.status == "ready":
            if not self._batches.transition_status(batch_id, "ready", "processing"):
                raise BatchStateConflict("Batch analysis already started")
        elif batch.status != "processing":
            raise BatchStateConflict(
                f"Batch cannot start analysis from status {batch.status}"
            )
        logger.info(f"Batch {batch_id} processing")

        for video in self._videos.list_by_batch(batch_id):
            if video.analysis_status in TERMINAL_ANALYSIS_STATUSES:
                continue
            try:
                duration = (
                    video.duration_seconds
                    if video.duration_seconds is not None
                    else self._provider.probe_duration(video)
                )
            except AnalysisError as error:
                logger.warning(f"Duration probe failed for video {video.video_id}: {error}")
                self._set_video_analysis_error(video.video_id)
                continue

            self._videos.update(
                video.video_id,
                {
                    "analysis_status": "processing",
                    "duration_seconds": duration,
                    "updated_at": _utc_now_iso(),
                },
            )

    def _analyze_videos(self, batch_id: str) -> None:
        for video in self._videos.list_by_batch(batch_id):
            if video.analysis_status in TERMINAL_ANALYSIS_STATUSES:
                continue
            try:
                detected = self._provider.analyze(video)
                events = [_build_event(video, item) for item in detected]
            except AnalysisError as error:
                logger.warning(f"Analysis failed for video {video.video_id}: {error}")
                self._set_video_analysis_error(video.video_id)
                continue

            self._events.replace_for_video(video.video_id, events)
            self._videos.update(
                video.video_id,
                {
                    "analysis_status": "completed",
                    "event_count": len(events),
                    "updated_at": _utc_now_iso(),
                },
            )
            logger.info(f"Video {video.video_id} analyzed: {len(events)} events")

    def _set_video_analysis_error(self, video_id: str) -> None:
        self._videos.update(
            video_id,
            {"analysis_status": "error", "updated_at": _utc_now_iso()},
        )

    def _mark_batch_error(self, batch_id: str) -> None:
        try:
            for expected in RESUMABLE_BATCH_STATUSES:
                if self._batches.transition_status(batch_id, expected, "error"):
                    return
        except UpstreamStoreError as error:
            logger.error(f"Could not mark batch {batch_id} as error: {error}")


def _validate_upload_files(files: list[UploadFileSpec]) -> None:
    if not files:
        raise ValidationError("Files array is required")
    for item in files:
        if not item.filename or not item.filename.strip():
            raise ValidationError("Every file needs a filename")
        if item.size < 0:
            raise ValidationError(f"Invalid size for {item.filename}")


def _safe_object_name(filename: str) -> str:
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name).strip("._")
    return cleaned or "video"


def _build_event(video: Video, detected: DetectedEvent) -> Event:
    duration = video.duration_seconds
    end_time = detected.end_time
    if duration is not None:
        end_time = min(end_time, duration)

    if detected.start_time < 0 or detected.start_time >= end_time:
        raise AnalysisError(
            f"Invalid event span {detected.start_time}-{detected.end_time}"
        )
    if not 0.0 <= detected.confidence <= 1.0:
        raise AnalysisError(f"Invalid confidence {detected.confidence}")

    return Event(
        event_id=str(uuid4()),
        video_id=video.video_id,
        start_time=detected.start_time,
        end_time=end_time,
        event_type=detected.event_type
        if detected.event_type in EVENT_TYPES
        else "unknown",
        confidence=detected.confidence,
        created_at=_utc_now_iso(),
        bbox=detected.bbox,
        metadata=detected.metadata,
    )


def _build_process_folder(
    completed_at: datetime,
    batch_id: str,
    video_count: int,
    total_minutes: int,
    total_events: int,
) -> str:
    timestamp = completed_at.strftime("%Y%m%d_%H%M")
    return (
        f"{timestamp}_batch-{batch_id[:8]}__videos-{video_count}"
        f"__duration-{total_minutes}__events-{total_events}"
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")

"""SQLAlchemy implementations of the persistence contracts."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from libs.core.application.contracts import (
    BatchChanges,
    BatchRepository,
    EventRepository,
    VideoChanges,
    VideoRepository,
)
from libs.core.application.errors import UpstreamStoreError
from libs.core.domain.entities import Batch, BoundingBox, Event, Video
from libs.infra.sql.models import BatchRow, EventRow, VideoRow

logger = logging.getLogger(__name__)

_TIMESTAMP_FIELDS = ("created_at", "updated_at", "completed_at")


@contextmanager
def _transaction(session_factory: sessionmaker, action: str) -> Iterator[Session]:
    try:
        with session_factory.begin() as session:
            yield session
    except SQLAlchemyError as error:
        logger.error(f"Database error while {action}: {error}")
        raise UpstreamStoreError(f"Failed to {action}") from error


class SqlBatchRepository(BatchRepository):
    """SQL implementation of batch repository."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def create(self, batch: Batch) -> None:
        with _transaction(self._sessions, "create batch") as session:
            session.add(
                BatchRow(
                    id=batch.batch_id,
                    status=batch.status,
                    video_count=batch.video_count,
                    total_duration_minutes=batch.total_duration_minutes,
                    total_events=batch.total_events,
                    process_folder=batch.process_folder,
                    created_at=_parse_ts(batch.created_at),
                    completed_at=_parse_ts(batch.completed_at),
                )
            )

    def get(self, batch_id: str) -> Batch | None:
        with _transaction(self._sessions, "fetch batch") as session:
            row = session.get(BatchRow, batch_id)
            return _batch_from_row(row) if row is not None else None

    def update(self, batch_id: str, changes: BatchChanges) -> Batch | None:
        with _transaction(self._sessions, "update batch") as session:
            row = session.get(BatchRow, batch_id)
            if row is None:
                return None
            _apply_changes(row, changes)
            session.flush()
            return _batch_from_row(row)

    def transition_status(self, batch_id: str, expected: str, status: str) -> bool:
        with _transaction(self._sessions, "transition batch status") as session:
            result = session.execute(
                update(BatchRow)
                .where(BatchRow.id == batch_id, BatchRow.status == expected)
                .values(status=status)
            )
            return result.rowcount == 1

    def list_by_status(self, statuses: Iterable[str]) -> list[Batch]:
        with _transaction(self._sessions, "list batches") as session:
            rows = session.scalars(
                select(BatchRow)
                .where(BatchRow.status.in_(list(statuses)))
                .order_by(BatchRow.created_at)
            )
            return [_batch_from_row(row) for row in rows]

    def delete(self, batch_id: str) -> bool:
        with _transaction(self._sessions, "delete batch") as session:
            row = session.get(BatchRow, batch_id)
            if row is None:
                return False
            session.delete(row)
            return True


class SqlVideoRepository(VideoRepository):
    """SQL implementation of video repository."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def create(self, video: Video) -> None:
        with _transaction(self._sessions, "create video") as session:
            session.add(
                VideoRow(
                    id=video.video_id,
                    batch_id=video.batch_id,
                    filename=video.filename,
                    file_size=video.file_size,
                    duration_seconds=video.duration_seconds,
                    upload_status=video.upload_status,
                    analysis_status=video.analysis_status,
                    event_count=video.event_count,
                    storage_path=video.storage_path,
                    created_at=_parse_ts(video.created_at),
                    updated_at=_parse_ts(video.updated_at),
                )
            )

    def get(self, video_id: str) -> Video | None:
        with _transaction(self._sessions, "fetch video") as session:
            row = session.get(VideoRow, video_id)
            return _video_from_row(row) if row is not None else None

    def list_by_batch(self, batch_id: str) -> list[Video]:
        with _transaction(self._sessions, "list videos") as session:
            rows = session.scalars(
                select(VideoRow)
                .where(VideoRow.batch_id == batch_id)
                .order_by(VideoRow.created_at)
            )
            return [_video_from_row(row) for row in rows]

    def update(self, video_id: str, changes: VideoChanges) -> Video | None:
        with _transaction(self._sessions, "update video") as session:
            row = session.get(VideoRow, video_id)
            if row is None:
                return None
            _apply_changes(row, changes)
            session.flush()
            return _video_from_row(row)


class SqlEventRepository(EventRepository):
    """SQL implementation of event repository."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def replace_for_video(self, video_id: str, events: list[Event]) -> None:
        with _transaction(self._sessions, "store events") as session:
            session.execute(delete(EventRow).where(EventRow.video_id == video_id))
            session.add_all([_row_from_event(event) for event in events])

    def list_by_video(self, video_id: str) -> list[Event]:
        with _transaction(self._sessions, "list events") as session:
            rows = session.scalars(
                select(EventRow)
                .where(EventRow.video_id == video_id)
                .order_by(EventRow.start_time)
            )
            return [_event_from_row(row) for row in rows]

    def list_by_videos(self, video_ids: list[str]) -> list[Event]:
        if not video_ids:
            return []
        with _transaction(self._sessions, "list events") as session:
            rows = session.scalars(
                select(EventRow).where(EventRow.video_id.in_(video_ids))
            )
            return [_event_from_row(row) for row in rows]


def _apply_changes(row: Any, changes: dict[str, Any]) -> None:
    for key, value in changes.items():
        if key in _TIMESTAMP_FIELDS:
            value = _parse_ts(value)
        setattr(row, key, value)


def _batch_from_row(row: BatchRow) -> Batch:
    return Batch(
        batch_id=row.id,
        status=row.status,
        video_count=row.video_count,
        created_at=_format_ts(row.created_at),
        total_duration_minutes=row.total_duration_minutes,
        total_events=row.total_events,
        process_folder=row.process_folder,
        completed_at=_format_ts(row.completed_at) if row.completed_at else None,
    )


def _video_from_row(row: VideoRow) -> Video:
    return Video(
        video_id=row.id,
        batch_id=row.batch_id,
        filename=row.filename,
        file_size=row.file_size,
        upload_status=row.upload_status,
        analysis_status=row.analysis_status,
        created_at=_format_ts(row.created_at),
        updated_at=_format_ts(row.updated_at),
        event_count=row.event_count,
        duration_seconds=row.duration_seconds,
        storage_path=row.storage_path,
    )


def _row_from_event(event: Event) -> EventRow:
    bbox = event.bbox
    return EventRow(
        id=event.event_id,
        video_id=event.video_id,
        start_time=event.start_time,
        end_time=event.end_time,
        event_type=event.event_type,
        confidence=event.confidence,
        bbox_x=bbox.x if bbox else None,
        bbox_y=bbox.y if bbox else None,
        bbox_width=bbox.width if bbox else None,
        bbox_height=bbox.height if bbox else None,
        extra=event.metadata,
        created_at=_parse_ts(event.created_at),
    )


def _event_from_row(row: EventRow) -> Event:
    bbox = None
    if None not in (row.bbox_x, row.bbox_y, row.bbox_width, row.bbox_height):
        bbox = BoundingBox(
            x=row.bbox_x,
            y=row.bbox_y,
            width=row.bbox_width,
            height=row.bbox_height,
        )
    return Event(
        event_id=row.id,
        video_id=row.video_id,
        start_time=row.start_time,
        end_time=row.end_time,
        event_type=row.event_type,
        confidence=row.confidence,
        created_at=_format_ts(row.created_at),
        bbox=bbox,
        metadata=row.extra,
    )


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")

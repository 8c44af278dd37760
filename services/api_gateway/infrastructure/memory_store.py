"""In-memory storage for batches, videos and events."""

import threading
from copy import deepcopy
from dataclasses import replace
from typing import Iterable

from libs.core.application.contracts import BatchChanges, VideoChanges
from libs.core.domain.entities import Batch, Event, Video


class InMemoryDatabase:
    """Shared tables behind the in-memory repositories."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.batches: dict[str, Batch] = {}
        self.videos: dict[str, Video] = {}
        self.events: dict[str, Event] = {}

    def clear(self) -> None:
        with self.lock:
            self.batches.clear()
            self.videos.clear()
            self.events.clear()


class InMemoryBatchRepository:
    """Batch repository backed by process memory."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def create(self, batch: Batch) -> None:
        with self._db.lock:
            self._db.batches[batch.batch_id] = deepcopy(batch)

    def get(self, batch_id: str) -> Batch | None:
        with self._db.lock:
            batch = self._db.batches.get(batch_id)
            return deepcopy(batch) if batch is not None else None

    def update(self, batch_id: str, changes: BatchChanges) -> Batch | None:
        with self._db.lock:
            batch = self._db.batches.get(batch_id)
            if batch is None:
                return None
            updated = replace(batch, **deepcopy(changes))
            self._db.batches[batch_id] = updated
            return deepcopy(updated)

    def transition_status(self, batch_id: str, expected: str, status: str) -> bool:
        with self._db.lock:
            batch = self._db.batches.get(batch_id)
            if batch is None or batch.status != expected:
                return False
            self._db.batches[batch_id] = replace(batch, status=status)
            return True

    def list_by_status(self, statuses: Iterable[str]) -> list[Batch]:
        wanted = set(statuses)
        with self._db.lock:
            return [
                deepcopy(batch)
                for batch in self._db.batches.values()
                if batch.status in wanted
            ]

    def delete(self, batch_id: str) -> bool:
        with self._db.lock:
            if self._db.batches.pop(batch_id, None) is None:
                return False
            video_ids = {
                video_id
                for video_id, video in self._db.videos.items()
                if video.batch_id == batch_id
            }
            for video_id in video_ids:
                del self._db.videos[video_id]
            for event_id in [
                event_id
                for event_id, event in self._db.events.items()
                if event.video_id in video_ids
            ]:
                del self._db.events[event_id]
            return True


class InMemoryVideoRepository:
    """Video repository backed by process memory."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def create(self, video: Video) -> None:
        with self._db.lock:
            self._db.videos[video.video_id] = deepcopy(video)

    def get(self, video_id: str) -> Video | None:
        with self._db.lock:
            video = self._db.videos.get(video_id)
            return deepcopy(video) if video is not None else None

    def list_by_batch(self, batch_id: str) -> list[Video]:
        with self._db.lock:
            videos = [
                deepcopy(video)
                for video in self._db.videos.values()
                if video.batch_id == batch_id
            ]
        return sorted(videos, key=lambda item: item.created_at)

    def update(self, video_id: str, changes: VideoChanges) -> Video | None:
        with self._db.lock:
            video = self._db.videos.get(video_id)
            if video is None:
                return None
            updated = replace(video, **deepcopy(changes))
            self._db.videos[video_id] = updated
            return deepcopy(updated)


class InMemoryEventRepository:
    """Event repository backed by process memory."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def replace_for_video(self, video_id: str, events: list[Event]) -> None:
        with self._db.lock:
            for event_id in [
                event_id
                for event_id, event in self._db.events.items()
                if event.video_id == video_id
            ]:
                del self._db.events[event_id]
            for event in events:
                self._db.events[event.event_id] = deepcopy(event)

    def list_by_video(self, video_id: str) -> list[Event]:
        return self.list_by_videos([video_id])

    def list_by_videos(self, video_ids: list[str]) -> list[Event]:
        wanted = set(video_ids)
        with self._db.lock:
            return [
                deepcopy(event)
                for event in self._db.events.values()
                if event.video_id in wanted
            ]

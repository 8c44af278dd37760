"""Repository contract tests for the in-memory and SQLAlchemy stores."""

import pytest

from libs.core.domain.entities import Batch, BoundingBox, Event, Video
from libs.infra.sql.repositories import (
    SqlBatchRepository,
    SqlEventRepository,
    SqlVideoRepository,
)
from libs.infra.sql.session import build_engine, build_session_factory, init_db
from services.api_gateway.infrastructure.memory_store import (
    InMemoryBatchRepository,
    InMemoryDatabase,
    InMemoryEventRepository,
    InMemoryVideoRepository,
)

CREATED_AT = "2026-03-01T21:00:00.000000+00:00"


@pytest.fixture(params=["memory", "sql"])
def repos(request):
    if request.param == "memory":
        db = InMemoryDatabase()
        return (
            InMemoryBatchRepository(db),
            InMemoryVideoRepository(db),
            InMemoryEventRepository(db),
        )

    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    sessions = build_session_factory(engine)
    return (
        SqlBatchRepository(sessions),
        SqlVideoRepository(sessions),
        SqlEventRepository(sessions),
    )


def _batch(batch_id: str = "batch-1", status: str = "uploading") -> Batch:
    return Batch(batch_id=batch_id, status=status, video_count=1, created_at=CREATED_AT)


def _video(video_id: str = "video-1", batch_id: str = "batch-1") -> Video:
    return Video(
        video_id=video_id,
        batch_id=batch_id,
        filename=f"{video_id}.mp4",
        file_size=2048,
        upload_status="pending",
        analysis_status="pending",
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
        storage_path=f"videos/{batch_id}/{video_id}.mp4",
    )


def _event(event_id: str, video_id: str = "video-1", start: float = 1.0) -> Event:
    return Event(
        event_id=event_id,
        video_id=video_id,
        start_time=start,
        end_time=start + 2.5,
        event_type="meteor",
        confidence=0.75,
        created_at=CREATED_AT,
        bbox=BoundingBox(x=10.0, y=20.5, width=8.0, height=6.25),
        metadata={"source": "simulated"},
    )


def test_batch_roundtrip_and_update(repos) -> None:
    batches, _, _ = repos
    batches.create(_batch())

    updated = batches.update(
        "batch-1",
        {"total_events": 4, "total_duration_minutes": 3, "completed_at": CREATED_AT},
    )

    assert updated is not None
    assert updated.total_events == 4
    assert updated.completed_at == CREATED_AT
    assert batches.get("batch-1") == updated
    assert batches.get("missing") is None
    assert batches.update("missing", {"total_events": 1}) is None


def test_transition_status_is_compare_and_swap(repos) -> None:
    batches, _, _ = repos
    batches.create(_batch())

    assert batches.transition_status("batch-1", "uploading", "ready") is True
    assert batches.transition_status("batch-1", "uploading", "ready") is False
    assert batches.transition_status("missing", "uploading", "ready") is False
    assert batches.get("batch-1").status == "ready"


def test_list_by_status(repos) -> None:
    batches, _, _ = repos
    batches.create(_batch("batch-1", status="ready"))
    batches.create(_batch("batch-2", status="completed"))
    batches.create(_batch("batch-3", status="processing"))

    found = batches.list_by_status(("ready", "processing"))

    assert sorted(batch.batch_id for batch in found) == ["batch-1", "batch-3"]


def test_video_update_and_listing(repos) -> None:
    batches, videos, _ = repos
    batches.create(_batch())
    videos.create(_video("video-1"))
    videos.create(_video("video-2"))

    updated = videos.update(
        "video-2", {"analysis_status": "completed", "event_count": 3, "duration_seconds": 95.0}
    )

    assert updated is not None
    assert updated.event_count == 3
    assert updated.duration_seconds == 95.0
    assert {video.video_id for video in videos.list_by_batch("batch-1")} == {
        "video-1",
        "video-2",
    }
    assert videos.list_by_batch("batch-2") == []
    assert videos.update("missing", {"event_count": 1}) is None


def test_replace_for_video_keeps_a_single_set(repos) -> None:
    batches, videos, events = repos
    batches.create(_batch())
    videos.create(_video())
    events.replace_for_video("video-1", [_event("e-1"), _event("e-2", start=5.0)])

    events.replace_for_video("video-1", [_event("e-3", start=9.0)])

    stored = events.list_by_video("video-1")
    assert [event.event_id for event in stored] == ["e-3"]
    assert stored[0].bbox == BoundingBox(x=10.0, y=20.5, width=8.0, height=6.25)
    assert stored[0].metadata == {"source": "simulated"}
    assert events.list_by_videos([]) == []


def test_delete_batch_cascades(repos) -> None:
    batches, videos, events = repos
    batches.create(_batch())
    videos.create(_video())
    events.replace_for_video("video-1", [_event("e-1")])

    assert batches.delete("batch-1") is True
    assert batches.delete("batch-1") is False

    assert batches.get("batch-1") is None
    assert videos.get("video-1") is None
    assert events.list_by_video("video-1") == []


def test_returned_events_do_not_alias_stored_rows(repos) -> None:
    batches, videos, events = repos
    batches.create(_batch())
    videos.create(_video())
    written = _event("e-1")
    events.replace_for_video("video-1", [written])
    written.metadata["source"] = "edited before read"

    fetched = events.list_by_video("video-1")[0]
    fetched.metadata["source"] = "edited after read"
    fetched.bbox.x = 99.0

    stored = events.list_by_video("video-1")[0]
    assert stored.metadata == {"source": "simulated"}
    assert stored.bbox == BoundingBox(x=10.0, y=20.5, width=8.0, height=6.25)
